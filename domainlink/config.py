"""
Configuration management for domainlink.
"""

import logging
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Deployment identity (REQUIRED)
    server_ip: str = ""  # public address custom domains must point at
    acme_email: str = ""  # contact address for certificate registration

    # Network
    host: str = "0.0.0.0"
    port: int = 8000

    # Proxied application
    app_port: int = 3000
    content_root: str = "/srv/domainlink/sites"

    # Path segments used by the surrounding app; never accepted as domains
    reserved_names: List[str] = ["api", "admin", "editor", "health", "sites", "static"]

    # Redis (empty disables Redis and keeps records in memory)
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "domainlink:"

    # Nginx
    nginx_sites_available: str = "/etc/nginx/sites-available"
    nginx_sites_enabled: str = "/etc/nginx/sites-enabled"
    nginx_bin: str = "nginx"
    use_sudo: bool = False

    # Certbot
    certbot_bin: str = "certbot"

    # Timeouts (seconds)
    dns_timeout: float = 10.0
    command_timeout: float = 30.0
    certbot_timeout: float = 300.0
    reconcile_item_timeout: float = 600.0

    # Reconciliation
    scheduler_enabled: bool = True
    pending_check_interval: int = 1800  # 30 minutes
    expiry_audit_interval: int = 86400  # daily
    renewal_interval: int = 604800  # weekly
    cleanup_interval: int = 604800  # weekly
    startup_delay: float = 5.0
    max_retries: int = 10
    stale_after_days: int = 7
    expiry_warning_days: int = 30

    # Logging
    log_level: str = "INFO"

    # Debug mode
    debug: bool = False

    model_config = {
        "env_prefix": "DOMAINLINK_",
        "env_file": ".env",
        "extra": "ignore"
    }

    def validate_required(self) -> bool:
        """Validate that required settings are configured."""
        if not self.server_ip:
            raise ValueError(
                "DOMAINLINK_SERVER_IP is required: the public IPv4 address "
                "custom domains must point their A record at"
            )
        if not self.acme_email:
            raise ValueError(
                "DOMAINLINK_ACME_EMAIL is required for certificate registration"
            )
        return True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    # In production, validate required fields
    if not settings.debug:
        try:
            settings.validate_required()
        except ValueError as e:
            logging.warning(f"Configuration warning: {e}")
    return settings
