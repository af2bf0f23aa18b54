"""
Reverse-proxy configuration for custom domains.

The configurator renders an nginx server block per domain and hands it to a
ProxyManager, which owns the files and the nginx process. Validation and
reload of the shared nginx process are serialized across all domains.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Tuple

from .errors import ProxyConfigError
from .models import is_apex_domain
from .process import build_command, run_command

logger = logging.getLogger("domainlink.domains.proxy")

BACKUP_EXTENSIONS = ("bak", "backup", "old", "orig", "original", "tmp")


class ProxyManager(ABC):
    """Capability interface over the reverse-proxy server."""

    @abstractmethod
    async def install(self, domain: str, content: str) -> None:
        """Write and activate the config for a domain, replacing any existing one."""

    @abstractmethod
    async def uninstall(self, domain: str) -> None:
        """Deactivate and delete the config for a domain. Missing files are ignored."""

    @abstractmethod
    async def is_installed(self, domain: str) -> bool:
        ...

    @abstractmethod
    async def validate(self) -> Tuple[bool, str]:
        """
        Validate the entire proxy configuration.

        Returns (valid, message). Raises asyncio.TimeoutError or OSError
        when validation could not be run at all.
        """

    @abstractmethod
    async def reload(self) -> Tuple[bool, str]:
        """Reload the live proxy process. Returns (success, message)."""


class NginxProxyManager(ProxyManager):
    """Manages nginx sites-available/sites-enabled entries and the nginx process."""

    def __init__(
        self,
        sites_available: str = "/etc/nginx/sites-available",
        sites_enabled: str = "/etc/nginx/sites-enabled",
        nginx_bin: str = "nginx",
        use_sudo: bool = False,
        timeout: float = 30.0,
    ):
        self.sites_available = Path(sites_available)
        self.sites_enabled = Path(sites_enabled)
        self.nginx_bin = nginx_bin
        self.use_sudo = use_sudo
        self.timeout = timeout

    def config_path(self, domain: str) -> Path:
        return self.sites_available / domain

    def enabled_path(self, domain: str) -> Path:
        return self.sites_enabled / domain

    async def install(self, domain: str, content: str) -> None:
        config_path = self.config_path(domain)
        enabled_path = self.enabled_path(domain)

        config_path.write_text(content, encoding="utf-8")
        logger.info(f"Nginx config written to {config_path}")

        # Remove then recreate so re-configuring a domain is idempotent
        if enabled_path.is_symlink() or enabled_path.exists():
            enabled_path.unlink()
        os.symlink(config_path, enabled_path)
        logger.info(f"Symlink created: {enabled_path} -> {config_path}")

    async def uninstall(self, domain: str) -> None:
        for path in (self.enabled_path(domain), self.config_path(domain)):
            if path.is_symlink() or path.exists():
                path.unlink()
                logger.info(f"Removed {path}")

    async def is_installed(self, domain: str) -> bool:
        return self.enabled_path(domain).exists()

    async def validate(self) -> Tuple[bool, str]:
        cmd = build_command([self.nginx_bin, "-t"], self.use_sudo)
        result = await run_command(cmd, self.timeout)
        if result.timed_out:
            raise asyncio.TimeoutError(f"nginx -t timed out after {self.timeout}s")
        if result.ok:
            return True, "Nginx configuration test passed"
        return False, result.error_message

    async def reload(self) -> Tuple[bool, str]:
        cmd = build_command([self.nginx_bin, "-s", "reload"], self.use_sudo)
        try:
            result = await run_command(cmd, self.timeout)
        except FileNotFoundError:
            return False, f"Nginx not found at {self.nginx_bin}"
        if result.ok:
            if result.stderr:
                logger.warning(f"Nginx reload warning: {result.stderr}")
            return True, "Nginx reloaded"
        return False, result.error_message


class ProxyConfigurator:
    """Renders, installs, validates and activates proxy config per domain."""

    def __init__(
        self,
        manager: ProxyManager,
        app_port: int = 3000,
        content_root: str = "/srv/domainlink",
    ):
        self.manager = manager
        self.app_port = app_port
        self.content_root = content_root.rstrip("/")
        # nginx is one shared process: one install/validate/reload at a time
        self._reload_lock = asyncio.Lock()

    def server_names(self, domain: str) -> str:
        if is_apex_domain(domain):
            return f"{domain} www.{domain}"
        return domain

    def render_config(self, domain: str, target_id: str) -> str:
        """Render the nginx server block for a domain. Output is deterministic."""
        backup_ext = "|".join(BACKUP_EXTENSIONS)
        return f"""# Auto-generated nginx config for {domain}
# Target: {target_id}

server {{
    listen 80;
    server_name {self.server_names(domain)};

    # Security headers
    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-XSS-Protection "1; mode=block" always;
    add_header X-Content-Type-Options "nosniff" always;
    add_header Referrer-Policy "no-referrer-when-downgrade" always;
    add_header Content-Security-Policy "default-src 'self' http: https: data: blob: 'unsafe-inline'" always;

    location / {{
        proxy_pass http://127.0.0.1:{self.app_port}/;
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_set_header X-Forwarded-Host $host;
        proxy_set_header X-Forwarded-Port $server_port;

        proxy_connect_timeout 60s;
        proxy_send_timeout 60s;
        proxy_read_timeout 60s;

        proxy_buffering on;
        proxy_buffer_size 4k;
        proxy_buffers 8 4k;
        proxy_busy_buffers_size 8k;
    }}

    # Static assets of the target site
    location /sites/{target_id}/ {{
        alias {self.content_root}/{target_id}/;
        expires 1y;
        add_header Cache-Control "public, immutable";
    }}

    location /health {{
        access_log off;
        add_header Content-Type text/plain;
        return 200 "healthy\\n";
    }}

    # Deny access to dotfiles
    location ~ /\\. {{
        deny all;
        access_log off;
        log_not_found off;
    }}

    # Deny access to backup files
    location ~* \\.({backup_ext})$ {{
        deny all;
        access_log off;
        log_not_found off;
    }}
}}
"""

    async def configure(self, domain: str, target_id: str) -> bool:
        """
        Install and activate the proxy config for a domain.

        Raises ProxyConfigError if the resulting configuration fails
        validation; the broken entry is deactivated and nginx is not
        reloaded, so already-working domains are unaffected. Returns False
        on I/O errors, timeouts or a failed reload.
        """
        content = self.render_config(domain, target_id)
        logger.info(f"Configuring proxy for {domain} -> {target_id}")

        async with self._reload_lock:
            try:
                await self.manager.install(domain, content)
            except OSError as e:
                logger.error(f"Failed to install proxy config for {domain}: {e}")
                return False

            try:
                return await self._validate_and_reload(domain)
            except ProxyConfigError:
                raise
            except BaseException:
                # Includes cancellation by a caller's timeout
                logger.warning(f"Proxy configuration interrupted for {domain}, deactivating")
                await self._deactivate(domain)
                raise

    async def _validate_and_reload(self, domain: str) -> bool:
        try:
            valid, message = await self.manager.validate()
        except (asyncio.TimeoutError, OSError) as e:
            logger.error(f"Proxy validation could not run for {domain}: {e}")
            await self._deactivate(domain)
            return False

        if not valid:
            logger.error(f"Proxy configuration invalid for {domain}: {message}")
            await self._deactivate(domain)
            raise ProxyConfigError(
                f"Proxy configuration test failed for {domain}: {message}"
            )

        reloaded, message = await self.manager.reload()
        if not reloaded:
            logger.error(f"Proxy reload failed for {domain}: {message}")
            return False

        logger.info(f"Proxy configuration completed for {domain}")
        return True

    async def unconfigure(self, domain: str) -> bool:
        """Best-effort teardown of a domain's proxy config. Never raises."""
        async with self._reload_lock:
            try:
                await self.manager.uninstall(domain)
                valid, message = await self.manager.validate()
                if not valid:
                    logger.warning(
                        f"Proxy config invalid after removing {domain}, skipping reload: {message}"
                    )
                    return False
                reloaded, message = await self.manager.reload()
                if not reloaded:
                    logger.warning(f"Proxy reload failed after removing {domain}: {message}")
                    return False
            except Exception as e:
                logger.warning(f"Proxy teardown incomplete for {domain}: {e}")
                return False

        logger.info(f"Proxy configuration removed for {domain}")
        return True

    async def is_configured(self, domain: str) -> bool:
        return await self.manager.is_installed(domain)

    async def _deactivate(self, domain: str) -> None:
        try:
            await self.manager.uninstall(domain)
        except OSError as e:
            logger.warning(f"Could not deactivate proxy config for {domain}: {e}")
