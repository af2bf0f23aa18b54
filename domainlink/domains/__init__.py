"""Custom domain connection management for domainlink."""

from .errors import (
    DomainError,
    DomainNotFoundError,
    DuplicateDomainError,
    InvalidDomainError,
    ProxyConfigError,
)
from .models import DomainRecord, DomainStatus, derive_status, normalize_domain
from .orchestrator import DomainOrchestrator, OperationResult
from .proxy import NginxProxyManager, ProxyConfigurator, ProxyManager
from .reconciler import DomainReconciler, build_scheduler, run_job_now, scheduler_status
from .registry import DomainRegistry
from .ssl import (
    CertbotClient,
    CertificateAuthorityClient,
    CertificateManager,
    CertificateOutcome,
    RenewalResult,
)
from .verification import DNSVerifier

__all__ = [
    "CertbotClient",
    "CertificateAuthorityClient",
    "CertificateManager",
    "CertificateOutcome",
    "DNSVerifier",
    "DomainError",
    "DomainNotFoundError",
    "DomainOrchestrator",
    "DomainReconciler",
    "DomainRecord",
    "DomainRegistry",
    "DomainStatus",
    "DuplicateDomainError",
    "InvalidDomainError",
    "NginxProxyManager",
    "OperationResult",
    "ProxyConfigError",
    "ProxyConfigurator",
    "ProxyManager",
    "RenewalResult",
    "build_scheduler",
    "derive_status",
    "normalize_domain",
    "run_job_now",
    "scheduler_status",
]
