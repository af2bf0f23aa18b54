"""
domainlink application entry point.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.domains import router as domains_router
from .config import Settings, get_settings
from .domains.orchestrator import DomainOrchestrator
from .domains.proxy import NginxProxyManager, ProxyConfigurator
from .domains.reconciler import DomainReconciler, build_scheduler, scheduler_status
from .domains.registry import DomainRegistry
from .domains.ssl import CertbotClient, CertificateManager
from .domains.verification import DNSVerifier

logger = logging.getLogger("domainlink")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_orchestrator(settings: Settings) -> DomainOrchestrator:
    """Wire the production collaborators from settings."""
    registry = DomainRegistry(
        redis_url=settings.redis_url or None,
        key_prefix=settings.key_prefix,
    )
    verifier = DNSVerifier(settings.server_ip, timeout=settings.dns_timeout)
    proxy = ProxyConfigurator(
        NginxProxyManager(
            sites_available=settings.nginx_sites_available,
            sites_enabled=settings.nginx_sites_enabled,
            nginx_bin=settings.nginx_bin,
            use_sudo=settings.use_sudo,
            timeout=settings.command_timeout,
        ),
        app_port=settings.app_port,
        content_root=settings.content_root,
    )
    certificates = CertificateManager(
        CertbotClient(
            certbot_bin=settings.certbot_bin,
            use_sudo=settings.use_sudo,
            timeout=settings.certbot_timeout,
            query_timeout=settings.command_timeout,
        ),
        email=settings.acme_email,
    )
    return DomainOrchestrator(
        registry=registry,
        verifier=verifier,
        proxy=proxy,
        certificates=certificates,
        reserved_names=settings.reserved_names,
        max_retries=settings.max_retries,
        expiry_warning_days=settings.expiry_warning_days,
        item_timeout=settings.reconcile_item_timeout,
    )


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[DomainOrchestrator] = None,
) -> FastAPI:
    settings = settings or get_settings()
    orchestrator = orchestrator or build_orchestrator(settings)
    reconciler = DomainReconciler(
        orchestrator,
        stale_after_days=settings.stale_after_days,
        expiry_warning_days=settings.expiry_warning_days,
        item_timeout=settings.reconcile_item_timeout,
    )
    scheduler = build_scheduler(
        reconciler,
        pending_interval=settings.pending_check_interval,
        expiry_audit_interval=settings.expiry_audit_interval,
        renewal_interval=settings.renewal_interval,
        cleanup_interval=settings.cleanup_interval,
        startup_delay=settings.startup_delay,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.scheduler_enabled:
            scheduler.start()
            logger.info("Domain reconciliation scheduler started")
        try:
            yield
        finally:
            if scheduler.running:
                scheduler.shutdown(wait=False)
                logger.info("Domain reconciliation scheduler stopped")
            await orchestrator.registry.close()

    app = FastAPI(
        title="domainlink",
        description="Connect custom domains to hosted sites",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.reconciler = reconciler
    app.state.scheduler = scheduler

    app.include_router(domains_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "ok", "scheduler": scheduler_status(scheduler)}

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
