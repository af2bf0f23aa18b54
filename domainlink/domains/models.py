"""
Custom domain connection record for domainlink.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from .errors import InvalidDomainError

# Records at or above this many failed attempts are no longer retried
MAX_RETRIES = 10

# Valid domain pattern: allows subdomains of any depth
_DOMAIN_RE = re.compile(
    r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+"
    r"[a-z]{2,}$"
)

_TARGET_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class DomainStatus(str, Enum):
    """Derived connection status. Computed from a record, never persisted."""

    PENDING = "pending"
    DNS_VERIFIED = "dns-verified"
    CONNECTED_NO_SSL = "connected-no-ssl"
    ACTIVE = "active"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def normalize_domain(domain: str) -> str:
    """Lowercase, trim and strip a trailing dot and any leading ``www.``."""
    domain = domain.strip().lower().rstrip(".")
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def validate_domain(domain: str, reserved_names: Iterable[str] = ()) -> str:
    """
    Normalize and validate a domain name.

    Raises InvalidDomainError for malformed or reserved names.
    """
    if not domain or not domain.strip():
        raise InvalidDomainError("Domain is required")

    normalized = normalize_domain(domain)
    reserved = {name.lower() for name in reserved_names}
    if normalized in reserved:
        raise InvalidDomainError(f"Domain {normalized} uses a reserved name")

    if len(normalized) > 253 or not _DOMAIN_RE.match(normalized):
        raise InvalidDomainError(f"Invalid domain format: {domain}")

    return normalized


def validate_target_id(target_id: str) -> str:
    """Validate the hosted content identifier a domain points at."""
    target_id = (target_id or "").strip()
    if not target_id:
        raise InvalidDomainError("Target id is required")
    if not _TARGET_RE.match(target_id):
        raise InvalidDomainError(
            "Target id must contain only alphanumeric characters, "
            "underscores, and hyphens"
        )
    return target_id


def is_apex_domain(domain: str) -> bool:
    """
    Two-label domains (example.com) are treated as apex domains.

    Multi-part public suffixes such as example.co.uk are misclassified.
    """
    return len(domain.split(".")) == 2


@dataclass
class DomainRecord:
    """A custom domain pointed at hosted content."""

    domain: str
    target_id: str
    dns_verified: bool = False
    proxy_configured: bool = False
    certificate_issued: bool = False
    certificate_expiry: Optional[datetime] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    last_checked_at: Optional[datetime] = None

    @property
    def connected(self) -> bool:
        return self.dns_verified and self.proxy_configured and self.certificate_issued

    @property
    def status(self) -> DomainStatus:
        return derive_status(self)

    @property
    def is_failed(self) -> bool:
        return self.retry_count >= MAX_RETRIES

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def mark_checked(self) -> None:
        self.last_checked_at = _utcnow()

    def record_failure(self, message: str) -> None:
        """Store a failed reconciliation attempt."""
        self.last_error = message
        self.retry_count += 1

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization. Derived fields are omitted."""
        return {
            "domain": self.domain,
            "target_id": self.target_id,
            "dns_verified": self.dns_verified,
            "proxy_configured": self.proxy_configured,
            "certificate_issued": self.certificate_issued,
            "certificate_expiry": (
                _iso(self.certificate_expiry) if self.certificate_issued else None
            ),
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_checked_at": _iso(self.last_checked_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DomainRecord":
        """Create from dictionary."""
        certificate_issued = data.get("certificate_issued", False)
        return cls(
            domain=data["domain"],
            target_id=data["target_id"],
            dns_verified=data.get("dns_verified", False),
            proxy_configured=data.get("proxy_configured", False),
            certificate_issued=certificate_issued,
            certificate_expiry=(
                _parse_dt(data.get("certificate_expiry")) if certificate_issued else None
            ),
            retry_count=data.get("retry_count", 0),
            last_error=data.get("last_error"),
            created_at=_parse_dt(data.get("created_at")) or _utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or _utcnow(),
            last_checked_at=_parse_dt(data.get("last_checked_at")),
        )

    def to_api_response(self) -> dict:
        """Convert to API response, including derived fields."""
        resp = self.to_dict()
        resp["connected"] = self.connected
        resp["status"] = self.status.value
        return resp


def derive_status(record: DomainRecord) -> DomainStatus:
    """Classify a record from its step flags and retry count."""
    if record.connected:
        return DomainStatus.ACTIVE
    if record.is_failed:
        return DomainStatus.FAILED
    if record.dns_verified and record.proxy_configured:
        return DomainStatus.CONNECTED_NO_SSL
    if record.dns_verified:
        return DomainStatus.DNS_VERIFIED
    return DomainStatus.PENDING
