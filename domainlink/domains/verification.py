"""
DNS verification for custom domains.
"""

import asyncio
import logging
from typing import Set

import dns.asyncresolver
import dns.exception
import dns.resolver

logger = logging.getLogger("domainlink.domains.verification")


def bare_domain(domain: str) -> str:
    domain = domain.lower().rstrip(".")
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


class DNSVerifier:
    """Verifies that a domain's A records point at this deployment."""

    def __init__(self, server_ip: str, timeout: float = 10.0):
        self.server_ip = server_ip.strip()
        self.timeout = timeout

    def _get_resolver(self) -> "dns.asyncresolver.Resolver":
        resolver = dns.asyncresolver.Resolver()
        resolver.timeout = self.timeout
        resolver.lifetime = self.timeout
        return resolver

    async def resolve_addresses(self, domain: str) -> Set[str]:
        """
        Resolve A records for the bare form of a domain.

        Raises dnspython errors or asyncio.TimeoutError on failure.
        """
        resolver = self._get_resolver()
        answers = await asyncio.wait_for(
            resolver.resolve(bare_domain(domain), "A"),
            # Outer bound in case the resolver ignores its own lifetime
            timeout=self.timeout + 1,
        )
        return {str(rdata) for rdata in answers}

    async def verify(self, domain: str) -> bool:
        """
        Return True iff the server address is among the domain's A records.

        Resolution failures of any kind count as a negative result.
        """
        domain = bare_domain(domain)
        logger.info(f"Checking DNS for {domain}")

        try:
            addresses = await self.resolve_addresses(domain)
        except dns.resolver.NXDOMAIN:
            logger.info(f"DNS verification failed for {domain}: NXDOMAIN")
            return False
        except dns.resolver.NoAnswer:
            logger.info(f"DNS verification failed for {domain}: no A records")
            return False
        except (dns.exception.Timeout, asyncio.TimeoutError):
            logger.warning(f"DNS lookup timed out for {domain}")
            return False
        except Exception as e:
            logger.warning(f"DNS verification failed for {domain}: {e}")
            return False

        if self.server_ip in addresses:
            logger.info(f"DNS verified for {domain} -> {self.server_ip}")
            return True

        logger.info(
            f"DNS mismatch for {domain}. Expected: {self.server_ip}, "
            f"got: {', '.join(sorted(addresses))}"
        )
        return False

    def verification_instructions(self, domain: str) -> dict:
        """Return human-readable DNS instructions for connecting a domain."""
        domain = bare_domain(domain)
        return {
            "instructions": (
                f"Add an A record for {domain} pointing to {self.server_ip}"
            ),
            "record_type": "A",
            "record_name": domain,
            "record_value": self.server_ip,
        }
