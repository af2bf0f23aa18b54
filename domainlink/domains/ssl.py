"""
TLS certificate management for custom domains via an ACME client (certbot).
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from .models import is_apex_domain
from .process import build_command, run_command

logger = logging.getLogger("domainlink.domains.ssl")

_EXPIRY_RE = re.compile(r"Expiry Date:\s*(.+?)(?:\s+\(.*\))?\s*$", re.MULTILINE)

_DEPLOYED_MARKERS = (
    "Successfully deployed certificate",
    "Successfully received certificate",
    "Congratulations",
)
_NOT_DUE_MARKERS = ("not yet due for renewal",)


class CertificateOutcome(str, Enum):
    ISSUED = "issued"
    NOT_DUE = "not_due"
    FAILED = "failed"


def classify_certbot_output(output: str) -> CertificateOutcome:
    """Map certbot output to an outcome. Only meaningful for a zero exit code."""
    if any(marker in output for marker in _NOT_DUE_MARKERS):
        return CertificateOutcome.NOT_DUE
    if any(marker in output for marker in _DEPLOYED_MARKERS):
        return CertificateOutcome.ISSUED
    return CertificateOutcome.FAILED


def parse_expiry(output: str) -> Optional[datetime]:
    """Parse the first ``Expiry Date:`` line of ``certbot certificates`` output."""
    match = _EXPIRY_RE.search(output)
    if not match:
        return None
    try:
        expiry = datetime.fromisoformat(match.group(1).strip())
    except ValueError:
        return None
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry


class CertificateAuthorityClient(ABC):
    """Capability interface over a non-interactive ACME client."""

    @abstractmethod
    async def obtain(self, names: Sequence[str], email: str) -> CertificateOutcome:
        """Request a certificate covering all names; the first is the cert name."""

    @abstractmethod
    async def renew(self, domain: str) -> CertificateOutcome:
        ...

    @abstractmethod
    async def expiry(self, domain: str) -> Optional[datetime]:
        """Expiry of the domain's certificate, or None if unknown."""

    @abstractmethod
    async def delete(self, domain: str) -> bool:
        ...


class CertbotClient(CertificateAuthorityClient):
    """Runs certbot with the nginx installer."""

    def __init__(
        self,
        certbot_bin: str = "certbot",
        use_sudo: bool = False,
        timeout: float = 300.0,
        query_timeout: float = 30.0,
    ):
        self.certbot_bin = certbot_bin
        self.use_sudo = use_sudo
        self.timeout = timeout
        self.query_timeout = query_timeout

    def _cmd(self, *args: str) -> List[str]:
        return build_command([self.certbot_bin, *args], self.use_sudo)

    async def obtain(self, names: Sequence[str], email: str) -> CertificateOutcome:
        cmd = self._cmd("--nginx", "--redirect")
        for name in names:
            cmd.extend(["-d", name])
        cmd.extend(["--non-interactive", "--agree-tos", "--expand"])
        if email:
            cmd.extend(["-m", email])
        else:
            cmd.append("--register-unsafely-without-email")

        result = await run_command(cmd, self.timeout)
        if not result.ok:
            logger.error(f"Certbot failed for {names[0]}: {result.error_message}")
            return CertificateOutcome.FAILED
        if result.stderr:
            logger.warning(f"Certbot warnings for {names[0]}: {result.stderr}")
        return classify_certbot_output(result.output)

    async def renew(self, domain: str) -> CertificateOutcome:
        cmd = self._cmd("renew", "--cert-name", domain, "--non-interactive")
        result = await run_command(cmd, self.timeout)
        if not result.ok:
            logger.error(f"Certbot renew failed for {domain}: {result.error_message}")
            return CertificateOutcome.FAILED
        return classify_certbot_output(result.output)

    async def expiry(self, domain: str) -> Optional[datetime]:
        cmd = self._cmd("certificates", "--cert-name", domain)
        result = await run_command(cmd, self.query_timeout)
        if not result.ok:
            return None
        return parse_expiry(result.stdout)

    async def delete(self, domain: str) -> bool:
        cmd = self._cmd("delete", "--cert-name", domain, "--non-interactive")
        result = await run_command(cmd, self.timeout)
        if not result.ok:
            logger.warning(f"Certbot delete failed for {domain}: {result.error_message}")
        return result.ok


@dataclass
class RenewalResult:
    """Partition of a renewal batch. Each domain is in exactly one list."""

    renewed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "renewed": list(self.renewed),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
        }


class CertificateManager:
    """Issues, queries, renews and removes certificates for custom domains."""

    def __init__(self, client: CertificateAuthorityClient, email: str = ""):
        self.client = client
        self.email = email

    def certificate_names(self, domain: str) -> List[str]:
        if is_apex_domain(domain):
            return [domain, f"www.{domain}"]
        return [domain]

    async def issue(self, domain: str) -> bool:
        """
        Obtain a certificate for a domain.

        A newly deployed certificate and an existing one not yet due for
        renewal both mean the domain has valid TLS.
        """
        logger.info(f"Issuing SSL certificate for {domain}")
        try:
            outcome = await self.client.obtain(self.certificate_names(domain), self.email)
        except FileNotFoundError:
            logger.error(f"ACME client binary not found while issuing for {domain}")
            return False
        except Exception as e:
            logger.error(f"SSL certificate issuance error for {domain}: {e}")
            return False

        if outcome in (CertificateOutcome.ISSUED, CertificateOutcome.NOT_DUE):
            logger.info(f"SSL certificate ready for {domain} ({outcome.value})")
            return True

        logger.error(f"SSL certificate issuance failed for {domain}")
        return False

    async def get_expiry(self, domain: str) -> Optional[datetime]:
        try:
            return await self.client.expiry(domain)
        except Exception as e:
            logger.warning(f"Could not get certificate expiry for {domain}: {e}")
            return None

    async def renew(self, domain: str) -> CertificateOutcome:
        logger.info(f"Renewing SSL certificate for {domain}")
        try:
            return await self.client.renew(domain)
        except Exception as e:
            logger.error(f"SSL renewal error for {domain}: {e}")
            return CertificateOutcome.FAILED

    async def renew_batch(self, domains: Iterable[str]) -> RenewalResult:
        """Renew each domain independently. Duplicate inputs are renewed once."""
        result = RenewalResult()
        for domain in dict.fromkeys(domains):
            outcome = await self.renew(domain)
            if outcome is CertificateOutcome.ISSUED:
                result.renewed.append(domain)
            elif outcome is CertificateOutcome.NOT_DUE:
                result.skipped.append(domain)
            else:
                result.failed.append(domain)

        logger.info(
            f"SSL renewal: {len(result.renewed)} renewed, "
            f"{len(result.skipped)} skipped, {len(result.failed)} failed"
        )
        return result

    async def remove(self, domain: str) -> bool:
        """Best-effort certificate deletion. Failures are logged, never raised."""
        try:
            removed = await self.client.delete(domain)
        except Exception as e:
            logger.warning(f"SSL removal warning for {domain}: {e}")
            return False
        if removed:
            logger.info(f"SSL certificate removed for {domain}")
        else:
            logger.warning(f"SSL certificate removal incomplete for {domain}")
        return removed
