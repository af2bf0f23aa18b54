"""
REST API for custom domain management.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ..domains.orchestrator import DomainOrchestrator, OperationResult

logger = logging.getLogger("domainlink.api.domains")

router = APIRouter(prefix="/api/domains", tags=["domains"])

_STATUS_CODES = {
    "invalid": 400,
    "not_found": 404,
    "duplicate": 409,
}


# ── Request models ───────────────────────────────────────────────────

class DomainAddRequest(BaseModel):
    domain: str
    target_id: str


# ── Helpers ──────────────────────────────────────────────────────────

def _orchestrator(request: Request) -> DomainOrchestrator:
    return request.app.state.orchestrator


def _respond(result: OperationResult) -> dict:
    """Return the result body, or raise for caller errors."""
    status_code = _STATUS_CODES.get(result.error_code)
    if not result.success and status_code:
        raise HTTPException(status_code=status_code, detail=result.error)
    return result.to_dict()


# ── Routes ───────────────────────────────────────────────────────────

@router.post("")
async def add_domain(body: DomainAddRequest, request: Request):
    """Add a custom domain and start connecting it."""
    return _respond(await _orchestrator(request).add_domain(body.domain, body.target_id))


@router.get("")
async def list_domains(request: Request):
    """List all custom domains."""
    return _respond(await _orchestrator(request).list_domains())


@router.get("/status/summary")
async def status_summary(request: Request):
    return _respond(await _orchestrator(request).status_summary())


@router.post("/pending/check")
async def check_pending_domains(request: Request):
    """Reconcile all pending domains now."""
    return _respond(await _orchestrator(request).check_pending_domains())


@router.get("/{domain}")
async def get_domain(domain: str, request: Request, live: bool = True):
    """Stored record plus a live DNS, proxy and certificate check."""
    return _respond(await _orchestrator(request).get_domain(domain, live=live))


@router.post("/{domain}/verify")
async def verify_domain(domain: str, request: Request):
    """Re-check DNS and continue setup for a domain."""
    return _respond(await _orchestrator(request).verify_domain(domain))


@router.post("/{domain}/renew")
async def renew_certificate(domain: str, request: Request):
    return _respond(await _orchestrator(request).renew_certificate(domain))


@router.delete("/{domain}")
async def remove_domain(domain: str, request: Request):
    """Remove a custom domain and its proxy/certificate configuration."""
    return _respond(await _orchestrator(request).remove_domain(domain))
