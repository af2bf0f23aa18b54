"""
Domain lifecycle orchestration.

Drives a custom domain from "just added" to "serving over TLS":
DNS verification -> proxy configuration -> certificate issuance. Progress is
persisted after every step, so a failure later in the chain never loses
what was already achieved.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from .errors import DomainError, DomainNotFoundError, ProxyConfigError
from .models import (
    MAX_RETRIES,
    DomainRecord,
    normalize_domain,
    validate_domain,
    validate_target_id,
)
from .proxy import ProxyConfigurator
from .registry import DomainRegistry
from .ssl import CertificateManager, CertificateOutcome
from .verification import DNSVerifier

logger = logging.getLogger("domainlink.domains.orchestrator")


@dataclass
class OperationResult:
    """Structured outcome of an orchestrator operation."""

    success: bool
    message: str = ""
    record: Optional[DomainRecord] = None
    records: List[DomainRecord] = field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None
    data: dict = field(default_factory=dict)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str = "error",
        record: Optional[DomainRecord] = None,
        **data,
    ) -> "OperationResult":
        return cls(
            success=False,
            message=error,
            record=record,
            error=error,
            error_code=error_code,
            data=data,
        )

    @classmethod
    def from_exception(cls, exc: DomainError) -> "OperationResult":
        return cls.failure(str(exc), exc.code)

    def to_dict(self) -> dict:
        resp = {"success": self.success, "message": self.message}
        if self.record is not None:
            resp["domain"] = self.record.to_api_response()
        if self.records:
            resp["domains"] = [r.to_api_response() for r in self.records]
        if self.error is not None:
            resp["error"] = self.error
            resp["error_code"] = self.error_code
        resp.update(self.data)
        return resp


class DomainOrchestrator:
    """Request-driven custom domain operations."""

    def __init__(
        self,
        registry: DomainRegistry,
        verifier: DNSVerifier,
        proxy: ProxyConfigurator,
        certificates: CertificateManager,
        reserved_names: Iterable[str] = (),
        max_retries: int = MAX_RETRIES,
        expiry_warning_days: int = 30,
        item_timeout: float = 600.0,
    ):
        self.registry = registry
        self.verifier = verifier
        self.proxy = proxy
        self.certificates = certificates
        self.reserved_names = frozenset(name.lower() for name in reserved_names)
        self.max_retries = max_retries
        self.expiry_warning_days = expiry_warning_days
        self.item_timeout = item_timeout
        # Serializes configure/issue per domain between requests and the scheduler
        self._domain_locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, domain: str) -> asyncio.Lock:
        return self._domain_locks.setdefault(domain, asyncio.Lock())

    async def _require(self, domain: str) -> DomainRecord:
        record = await self.registry.get(domain)
        if record is None:
            raise DomainNotFoundError(normalize_domain(domain))
        return record

    # ── Step chain ───────────────────────────────────────────────────

    async def _converge(self, record: DomainRecord) -> Optional[str]:
        """
        Run the remaining configure -> issue steps for a DNS-verified record.

        Persists after each successful step. Returns the failing step's
        error message, or None when the record is fully connected.
        """
        domain = record.domain

        if not record.proxy_configured:
            try:
                configured = await self.proxy.configure(domain, record.target_id)
            except ProxyConfigError as e:
                return str(e)
            if not configured:
                return f"Proxy configuration failed for {domain}"
            record.proxy_configured = True
            await self.registry.update(record)

        if not record.certificate_issued:
            if not await self.certificates.issue(domain):
                return f"SSL certificate issuance failed for {domain}"
            record.certificate_issued = True
            record.certificate_expiry = await self.certificates.get_expiry(domain)
            await self.registry.update(record)

        return None

    async def _teardown(self, record: DomainRecord) -> None:
        """Best-effort removal of proxy config and certificate."""
        domain = record.domain
        if record.proxy_configured or await self.proxy.is_configured(domain):
            await self.proxy.unconfigure(domain)
        await self.certificates.remove(domain)

    async def purge(self, record: DomainRecord) -> bool:
        """Tear down external configuration, then delete the record regardless."""
        async with self._lock_for(record.domain):
            try:
                await self._teardown(record)
            except Exception as e:
                logger.warning(f"Teardown incomplete for {record.domain}: {e}")
            deleted = await self.registry.delete(record.domain)
        self._domain_locks.pop(record.domain, None)
        return deleted

    async def refresh_expiry(self, domain: str) -> Optional[datetime]:
        """Re-read a domain's certificate expiry and store it if known."""
        expiry = await self.certificates.get_expiry(domain)
        if expiry is None:
            return None
        record = await self.registry.get(domain)
        if record is None or not record.certificate_issued:
            return expiry
        record.certificate_expiry = expiry
        await self.registry.update(record)
        return expiry

    # ── Operations ───────────────────────────────────────────────────

    async def add_domain(self, domain: str, target_id: str) -> OperationResult:
        """Add a domain and drive it as far towards connected as possible now."""
        try:
            normalized = validate_domain(domain, self.reserved_names)
            target_id = validate_target_id(target_id)
            logger.info(f"Adding domain: {normalized} -> {target_id}")

            record = await self.registry.create(
                DomainRecord(domain=normalized, target_id=target_id)
            )

            async with self._lock_for(normalized):
                record.dns_verified = await self.verifier.verify(normalized)
                record.mark_checked()
                await self.registry.update(record)

                error = None
                if record.dns_verified:
                    error = await self._converge(record)
                    record.last_error = error
                    await self.registry.update(record)
        except DomainError as e:
            logger.warning(f"Add domain rejected for {domain}: {e}")
            return OperationResult.from_exception(e)

        if record.connected:
            message = "Domain added and configured successfully"
        elif not record.dns_verified:
            message = "Domain added, DNS verification pending"
        else:
            message = f"Domain added, setup incomplete: {error}"

        return OperationResult(
            success=True,
            message=message,
            record=record,
            data={"instructions": self.verifier.verification_instructions(normalized)},
        )

    async def list_domains(self) -> OperationResult:
        records = await self.registry.list_all()
        return OperationResult(
            success=True,
            message=f"{len(records)} domains",
            records=records,
            data={"count": len(records)},
        )

    async def get_domain(self, domain: str, live: bool = False) -> OperationResult:
        """Return the stored record, plus a fresh live check when ``live`` is set."""
        try:
            record = await self._require(domain)
        except DomainError as e:
            return OperationResult.from_exception(e)

        data = {}
        if live:
            data["live_status"] = await self.live_status(record.domain)
        return OperationResult(
            success=True, message=record.status.value, record=record, data=data
        )

    async def live_status(self, domain: str) -> dict:
        """
        Probe DNS, the enabled proxy entry and the certificate store right now.

        Read-only: nothing is persisted, and every probe failure reads as False.
        """
        domain = normalize_domain(domain)
        status = {
            "domain": domain,
            "dns": await self.verifier.verify(domain),
            "proxy": False,
            "ssl": False,
            "ssl_expiry": None,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            status["proxy"] = await self.proxy.is_configured(domain)
        except OSError as e:
            logger.warning(f"Proxy status check failed for {domain}: {e}")

        expiry = await self.certificates.get_expiry(domain)
        if expiry is not None:
            status["ssl"] = True
            status["ssl_expiry"] = expiry.isoformat()

        return status

    async def verify_domain(self, domain: str) -> OperationResult:
        """
        Re-check DNS; continue setup once DNS points at this server.

        A failed check on an already connected domain is recorded in
        last_error but does not clear dns_verified, so a transient DNS
        failure never pulls a working domain back into retry and cleanup.
        """
        try:
            await self._require(domain)
            normalized = normalize_domain(domain)
            logger.info(f"Manually verifying DNS for {normalized}")

            async with self._lock_for(normalized):
                record = await self._require(normalized)
                resolves = await self.verifier.verify(normalized)
                record.mark_checked()

                if resolves:
                    record.dns_verified = True
                    if record.connected:
                        record.last_error = None
                elif record.connected:
                    record.last_error = (
                        f"DNS for {normalized} no longer points to {self.verifier.server_ip}"
                    )
                    logger.warning(record.last_error)
                else:
                    record.dns_verified = False
                await self.registry.update(record)

                if record.dns_verified and not record.connected:
                    record.last_error = await self._converge(record)
                    await self.registry.update(record)
        except DomainError as e:
            return OperationResult.from_exception(e)

        if not resolves:
            message = "DNS verification failed"
        elif record.connected:
            message = "DNS verified and domain configured"
        else:
            message = f"DNS verified, setup incomplete: {record.last_error}"

        return OperationResult(
            success=True,
            message=message,
            record=record,
            data={"dns_verified": record.dns_verified, "dns_resolves": resolves},
        )

    async def remove_domain(self, domain: str) -> OperationResult:
        """Remove a domain; teardown is best-effort, deletion always happens."""
        try:
            record = await self._require(domain)
        except DomainError as e:
            return OperationResult.from_exception(e)

        logger.info(f"Removing domain: {record.domain}")
        await self.purge(record)
        return OperationResult(
            success=True,
            message=f"Domain {record.domain} removed successfully",
        )

    async def renew_certificate(self, domain: str) -> OperationResult:
        try:
            record = await self._require(domain)
        except DomainError as e:
            return OperationResult.from_exception(e)

        if not record.certificate_issued:
            return OperationResult.failure(
                f"No SSL certificate issued for {record.domain}",
                "no_certificate",
                record=record,
            )

        outcome = await self.certificates.renew(record.domain)

        if outcome is CertificateOutcome.FAILED:
            record.last_error = f"SSL certificate renewal failed for {record.domain}"
            try:
                await self.registry.update(record)
            except DomainNotFoundError:
                pass
            return OperationResult.failure(
                record.last_error, "certificate", record=record, outcome=outcome.value
            )

        if outcome is CertificateOutcome.ISSUED:
            expiry = await self.refresh_expiry(record.domain)
            if expiry is not None:
                record.certificate_expiry = expiry
            message = "SSL certificate renewed successfully"
        else:
            message = "SSL certificate not yet due for renewal"

        return OperationResult(
            success=True,
            message=message,
            record=record,
            data={"outcome": outcome.value},
        )

    async def check_pending_domains(self) -> OperationResult:
        """
        Reconcile every unconnected record still under the retry cap.

        Each domain is processed independently and bounded by item_timeout.
        """
        records = await self.registry.find_pending(self.max_retries)
        results = {"checked": 0, "connected": 0, "failed": 0, "skipped": 0, "details": []}

        if not records:
            logger.info("No pending domains to check")

        for record in records:
            results["checked"] += 1
            try:
                detail = await asyncio.wait_for(
                    self._reconcile(record.domain), timeout=self.item_timeout
                )
            except asyncio.TimeoutError:
                detail = await self._record_timeout(record.domain)
            except Exception as e:
                logger.error(f"Check failed for {record.domain}: {e}")
                detail = {"domain": record.domain, "status": "error", "error": str(e)}

            if detail.get("status") == "skipped":
                results["skipped"] += 1
            elif detail.get("connected"):
                results["connected"] += 1
            elif detail.get("error"):
                results["failed"] += 1
            results["details"].append(detail)

        message = (
            f"Checked {results['checked']} domains: "
            f"{results['connected']} connected, {results['failed']} failed, "
            f"{results['skipped']} skipped"
        )
        logger.info(message)
        return OperationResult(success=True, message=message, data={"results": results})

    async def _reconcile(self, domain: str) -> dict:
        lock = self._lock_for(domain)
        if lock.locked():
            return {"domain": domain, "status": "skipped", "message": "Operation in progress"}

        async with lock:
            record = await self.registry.get(domain)
            if record is None or record.connected or record.retry_count >= self.max_retries:
                return {"domain": domain, "status": "skipped", "message": "No longer pending"}

            record.dns_verified = await self.verifier.verify(domain)
            record.mark_checked()

            if record.dns_verified:
                await self.registry.update(record)
                error = await self._converge(record)
            else:
                error = f"DNS for {domain} does not point to {self.verifier.server_ip}"

            if error:
                record.record_failure(error)
            else:
                record.last_error = None
            await self.registry.update(record)

        if record.connected:
            logger.info(f"Domain {domain} connected successfully")
        else:
            logger.info(f"Domain {domain} still pending: {error}")

        return {
            "domain": domain,
            "status": record.status.value,
            "connected": record.connected,
            "retry_count": record.retry_count,
            "error": error,
        }

    async def _record_timeout(self, domain: str) -> dict:
        error = f"Reconciliation timed out after {self.item_timeout}s"
        logger.error(f"{error} for {domain}")
        record = await self.registry.get(domain)
        if record is not None:
            record.record_failure(error)
            record.mark_checked()
            try:
                await self.registry.update(record)
            except DomainNotFoundError:
                pass
        return {"domain": domain, "status": "timeout", "error": error}

    async def status_summary(self) -> OperationResult:
        records = await self.registry.list_all()
        cutoff = datetime.now(timezone.utc) + timedelta(days=self.expiry_warning_days)
        expiring = await self.registry.find_expiring(cutoff)

        summary = {
            "total": len(records),
            "connected": sum(1 for r in records if r.connected),
            "pending": sum(1 for r in records if not r.connected),
            "certificates": sum(1 for r in records if r.certificate_issued),
            "expiring_soon": len(expiring),
            "expiring": [
                {"domain": r.domain, "expiry": r.certificate_expiry.isoformat()}
                for r in expiring
            ],
        }
        return OperationResult(success=True, message="Status summary", data={"summary": summary})
