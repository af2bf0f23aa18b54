"""
Exceptions raised by the custom domain subsystem.
"""


class DomainError(Exception):
    """Base class for custom domain errors."""

    code = "error"


class InvalidDomainError(DomainError, ValueError):
    """Malformed domain name, target identifier or reserved name."""

    code = "invalid"


class DuplicateDomainError(DomainError, ValueError):
    """Domain already has a connection record."""

    code = "duplicate"

    def __init__(self, domain: str):
        super().__init__(f"Domain {domain} is already registered")
        self.domain = domain


class DomainNotFoundError(DomainError, LookupError):
    """No connection record exists for the domain."""

    code = "not_found"

    def __init__(self, domain: str):
        super().__init__(f"Domain {domain} not found")
        self.domain = domain


class ProxyConfigError(DomainError):
    """Proxy configuration failed validation; the proxy was not reloaded."""

    code = "proxy_config"
