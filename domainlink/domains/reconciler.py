"""
Background reconciliation jobs for custom domains.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .orchestrator import DomainOrchestrator

logger = logging.getLogger("domainlink.domains.reconciler")

PENDING_CHECK = "pending_check"
EXPIRY_AUDIT = "expiry_audit"
CERTIFICATE_RENEWAL = "certificate_renewal"
STALE_CLEANUP = "stale_cleanup"
STARTUP_SUFFIX = "_startup"


class DomainReconciler:
    """
    Periodic jobs that keep domain records converging.

    Every job processes its batch item by item: a failure or timeout on one
    domain is logged and the batch moves on.
    """

    def __init__(
        self,
        orchestrator: DomainOrchestrator,
        stale_after_days: int = 7,
        expiry_warning_days: int = 30,
        item_timeout: float = 600.0,
    ):
        self.orchestrator = orchestrator
        self.registry = orchestrator.registry
        self.certificates = orchestrator.certificates
        self.stale_after_days = stale_after_days
        self.expiry_warning_days = expiry_warning_days
        self.item_timeout = item_timeout

    async def check_pending_domains(self) -> dict:
        result = await self.orchestrator.check_pending_domains()
        return result.data["results"]

    async def audit_certificate_expiry(self) -> dict:
        """Refresh stored expiry for certificates expiring within the warning window."""
        cutoff = datetime.now(timezone.utc) + timedelta(days=self.expiry_warning_days)
        expiring = await self.registry.find_expiring(cutoff)

        if not expiring:
            logger.info("No SSL certificates expiring soon")
            return {"checked": 0, "updated": 0}

        logger.info(f"Found {len(expiring)} SSL certificates expiring soon")
        updated = 0
        for record in expiring:
            logger.warning(
                f"SSL certificate for {record.domain} expires on "
                f"{record.certificate_expiry.isoformat()}"
            )
            try:
                expiry = await asyncio.wait_for(
                    self.orchestrator.refresh_expiry(record.domain),
                    timeout=self.item_timeout,
                )
            except asyncio.TimeoutError:
                logger.error(f"Expiry refresh timed out for {record.domain}")
                continue
            except Exception as e:
                logger.error(f"Could not update expiry for {record.domain}: {e}")
                continue
            if expiry is not None and expiry != record.certificate_expiry:
                updated += 1

        return {"checked": len(expiring), "updated": updated}

    async def renew_certificates(self) -> dict:
        """Attempt renewal of every issued certificate, then refresh renewed expiries."""
        records = await self.registry.find_with_certificate()

        if not records:
            logger.info("No SSL certificates to renew")
            return {"renewed": [], "skipped": [], "failed": []}

        logger.info(f"Found {len(records)} SSL certificates to check for renewal")
        result = await self.certificates.renew_batch([r.domain for r in records])

        for domain in result.renewed:
            try:
                expiry = await self.orchestrator.refresh_expiry(domain)
                if expiry:
                    logger.info(f"Updated expiry date for {domain}: {expiry.isoformat()}")
            except Exception as e:
                logger.error(f"Could not update expiry for {domain}: {e}")

        return result.to_dict()

    async def cleanup_stale_domains(self) -> dict:
        """Delete records that exhausted their retries and are older than the stale window."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.stale_after_days)
        stale = await self.registry.find_failed(
            created_before=cutoff, min_retries=self.orchestrator.max_retries
        )

        if not stale:
            logger.info("No old failed domains to clean up")
            return {"removed": []}

        logger.info(f"Found {len(stale)} old failed domains to clean up")
        removed = []
        for record in stale:
            try:
                await asyncio.wait_for(
                    self.orchestrator.purge(record), timeout=self.item_timeout
                )
            except asyncio.TimeoutError:
                logger.error(f"Cleanup timed out for {record.domain}")
                continue
            except Exception as e:
                logger.error(f"Could not remove domain {record.domain}: {e}")
                continue
            removed.append(record.domain)
            logger.info(f"Removed old failed domain: {record.domain}")

        return {"removed": removed}


def build_scheduler(
    reconciler: DomainReconciler,
    pending_interval: float = 30 * 60,
    expiry_audit_interval: float = 24 * 60 * 60,
    renewal_interval: float = 7 * 24 * 60 * 60,
    cleanup_interval: float = 7 * 24 * 60 * 60,
    startup_delay: float = 5.0,
) -> AsyncIOScheduler:
    """
    Register the four reconciliation jobs on a new AsyncIOScheduler.

    Interval jobs never overlap themselves and coalesce missed runs. The
    pending check and expiry audit also get a one-shot run ``startup_delay``
    seconds after the scheduler is built.
    """
    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    jobs = [
        (PENDING_CHECK, "Pending domain check", reconciler.check_pending_domains, pending_interval, True),
        (EXPIRY_AUDIT, "Certificate expiry audit", reconciler.audit_certificate_expiry, expiry_audit_interval, True),
        (CERTIFICATE_RENEWAL, "Certificate renewal", reconciler.renew_certificates, renewal_interval, False),
        (STALE_CLEANUP, "Stale domain cleanup", reconciler.cleanup_stale_domains, cleanup_interval, False),
    ]
    startup_at = datetime.now(timezone.utc) + timedelta(seconds=startup_delay)

    for job_id, name, func, interval, run_on_startup in jobs:
        if interval <= 0:
            raise ValueError(f"Job {job_id} needs a positive interval")
        scheduler.add_job(
            func,
            "interval",
            seconds=interval,
            id=job_id,
            name=name,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if run_on_startup:
            scheduler.add_job(
                func,
                "date",
                run_date=startup_at,
                id=f"{job_id}{STARTUP_SUFFIX}",
                name=f"{name} (startup)",
                misfire_grace_time=None,
                replace_existing=True,
            )
        logger.info(f"Scheduled: {name} every {interval}s")

    return scheduler


def run_job_now(scheduler: AsyncIOScheduler, job_id: str) -> None:
    """Move a job's next run to now; the scheduler runs it on its next wakeup."""
    job = scheduler.get_job(job_id)
    if job is None:
        raise KeyError(f"Unknown job: {job_id}")
    job.modify(next_run_time=datetime.now(timezone.utc))
    logger.info(f"Triggered job: {job_id}")


def scheduler_status(scheduler: AsyncIOScheduler) -> dict:
    jobs = []
    for job in scheduler.get_jobs():
        # Jobs added before start() have no next_run_time yet
        next_run = getattr(job, "next_run_time", None)
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": next_run.isoformat() if next_run else None,
        })
    return {"running": scheduler.running, "jobs": jobs}
