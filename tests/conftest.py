"""
Pytest configuration for domainlink tests.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment variables
os.environ["DOMAINLINK_SERVER_IP"] = "203.0.113.10"
os.environ["DOMAINLINK_ACME_EMAIL"] = "ops@example.org"
os.environ["DOMAINLINK_DEBUG"] = "true"
os.environ["DOMAINLINK_REDIS_URL"] = ""

from domainlink.domains.orchestrator import DomainOrchestrator  # noqa: E402
from domainlink.domains.proxy import ProxyConfigurator, ProxyManager  # noqa: E402
from domainlink.domains.registry import DomainRegistry  # noqa: E402
from domainlink.domains.ssl import (  # noqa: E402
    CertificateAuthorityClient,
    CertificateManager,
    CertificateOutcome,
)

SERVER_IP = "203.0.113.10"


# ── In-memory fakes ──────────────────────────────────────────────────


class FakeVerifier:
    """DNS verifier whose answers are set per domain."""

    def __init__(self, server_ip: str = SERVER_IP):
        self.server_ip = server_ip
        self.resolving: Set[str] = set()
        self.calls: List[str] = []

    async def verify(self, domain: str) -> bool:
        self.calls.append(domain)
        return domain in self.resolving

    def verification_instructions(self, domain: str) -> dict:
        return {"record_type": "A", "record_name": domain, "record_value": self.server_ip}


class FakeProxyManager(ProxyManager):
    """Proxy manager keeping configs in a dict."""

    def __init__(self):
        self.configs: Dict[str, str] = {}
        self.invalid_domains: Set[str] = set()
        self.reloads = 0
        self.calls: List[Tuple[str, Optional[str]]] = []

    async def install(self, domain: str, content: str) -> None:
        self.calls.append(("install", domain))
        self.configs[domain] = content

    async def uninstall(self, domain: str) -> None:
        self.calls.append(("uninstall", domain))
        self.configs.pop(domain, None)

    async def is_installed(self, domain: str) -> bool:
        return domain in self.configs

    async def validate(self) -> Tuple[bool, str]:
        self.calls.append(("validate", None))
        broken = sorted(self.invalid_domains & set(self.configs))
        if broken:
            return False, f"invalid server block for {', '.join(broken)}"
        return True, "ok"

    async def reload(self) -> Tuple[bool, str]:
        self.calls.append(("reload", None))
        self.reloads += 1
        return True, "reloaded"


class FakeCertificateClient(CertificateAuthorityClient):
    """ACME client that issues certificates into a dict."""

    def __init__(self, lifetime_days: int = 90):
        self.lifetime_days = lifetime_days
        self.certificates: Dict[str, datetime] = {}
        self.failing: Set[str] = set()
        self.renew_outcomes: Dict[str, CertificateOutcome] = {}
        self.calls: List[Tuple[str, str]] = []

    async def obtain(self, names: Sequence[str], email: str) -> CertificateOutcome:
        domain = names[0]
        self.calls.append(("obtain", domain))
        if domain in self.failing:
            return CertificateOutcome.FAILED
        if domain in self.certificates:
            return CertificateOutcome.NOT_DUE
        self.certificates[domain] = datetime.now(timezone.utc) + timedelta(days=self.lifetime_days)
        return CertificateOutcome.ISSUED

    async def renew(self, domain: str) -> CertificateOutcome:
        self.calls.append(("renew", domain))
        outcome = self.renew_outcomes.get(domain, CertificateOutcome.NOT_DUE)
        if outcome is CertificateOutcome.ISSUED:
            self.certificates[domain] = datetime.now(timezone.utc) + timedelta(days=self.lifetime_days)
        return outcome

    async def expiry(self, domain: str) -> Optional[datetime]:
        self.calls.append(("expiry", domain))
        return self.certificates.get(domain)

    async def delete(self, domain: str) -> bool:
        self.calls.append(("delete", domain))
        return self.certificates.pop(domain, None) is not None


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def test_settings():
    """Provide test settings."""
    from domainlink.config import Settings
    return Settings()


@pytest.fixture
def registry():
    """In-memory domain registry (no Redis)."""
    return DomainRegistry(redis_url=None)


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def proxy_manager():
    return FakeProxyManager()


@pytest.fixture
def cert_client():
    return FakeCertificateClient()


@pytest.fixture
def orchestrator(registry, verifier, proxy_manager, cert_client):
    return DomainOrchestrator(
        registry=registry,
        verifier=verifier,
        proxy=ProxyConfigurator(proxy_manager, app_port=3000, content_root="/srv/sites"),
        certificates=CertificateManager(cert_client, email="ops@example.org"),
        reserved_names=["api", "editor"],
    )
