"""
Scheduled tasks for the sync engine.

Jobs run inside the FastAPI process:
- a staleness pass, enqueued as a `sync-all` job on the SYNC_SCHEDULE cron
  (only when SYNC_SCHEDULE_ENABLED is true)
- a queue drain every SYNC_QUEUE_POLL_SECONDS that runs whatever is due
- a token expiration monitor every TOKEN_MONITOR_INTERVAL_MINUTES that
  refreshes tokens about to expire and flags accounts that cannot be
  refreshed (only when TOKEN_MONITOR_ENABLED is true)
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from listing_sync.core.config import Settings, get_settings
from listing_sync.services.credential_service import CredentialService
from listing_sync.services.listing_sync_service import ListingSyncService
from listing_sync.services.sync_job_queue import enqueue_sync_all
from listing_sync.services.worker import SyncWorker

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def enqueue_staleness_pass_task(sync_service: ListingSyncService):
    """Put a sync-all job on the queue; the drain job picks it up"""
    try:
        async with sync_service.session_factory() as db:
            job = await enqueue_sync_all(db)
            await db.commit()
        logger.info(f"=== SCHEDULED STALENESS PASS QUEUED (job {job.id}) ===")
    except Exception as e:
        logger.exception(f"Error queueing scheduled staleness pass: {str(e)}")


async def drain_queue_task(worker: SyncWorker, max_jobs: Optional[int] = None):
    try:
        await worker.drain(max_jobs=max_jobs)
    except Exception as e:
        logger.exception(f"Error draining sync queue: {str(e)}")


async def token_monitor_task(credential_service: CredentialService):
    try:
        report = await credential_service.refresh_expiring_accounts()
        if report.checked:
            logger.info(f"=== TOKEN MONITOR: {report.summary()} ===")
    except Exception as e:
        logger.exception(f"Error running token expiration monitor: {str(e)}")


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.debug(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler(
    sync_service: ListingSyncService,
    settings: Optional[Settings] = None,
    credential_service: Optional[CredentialService] = None,
) -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    settings = settings or get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    worker = SyncWorker(sync_service)
    scheduler.add_job(
        drain_queue_task,
        IntervalTrigger(seconds=settings.SYNC_QUEUE_POLL_SECONDS),
        args=[worker],
        id="drain_sync_queue",
        name="Drain Sync Queue",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    if settings.SYNC_SCHEDULE_ENABLED:
        scheduler.add_job(
            enqueue_staleness_pass_task,
            CronTrigger.from_crontab(settings.SYNC_SCHEDULE),
            args=[sync_service],
            id="staleness_pass",
            name="Staleness Pass",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=3600,
        )
        logger.info(f"Scheduled staleness pass added with schedule: {settings.SYNC_SCHEDULE}")
    else:
        logger.info("Scheduled staleness pass is disabled. Set SYNC_SCHEDULE_ENABLED=true to enable")

    if settings.TOKEN_MONITOR_ENABLED:
        if credential_service is None:
            # Share refresh locks with the adapters the sync service builds
            provider = sync_service.adapter_provider
            credential_service = provider if isinstance(provider, CredentialService) else CredentialService(
                session_factory=sync_service.session_factory, settings=settings
            )
        scheduler.add_job(
            token_monitor_task,
            IntervalTrigger(minutes=settings.TOKEN_MONITOR_INTERVAL_MINUTES),
            args=[credential_service],
            id="token_monitor",
            name="Token Expiration Monitor",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    return scheduler


async def start_scheduler(
    sync_service: ListingSyncService,
    settings: Optional[Settings] = None,
    credential_service: Optional[CredentialService] = None,
):
    """Start the scheduler"""
    global scheduler

    if scheduler is None:
        scheduler = create_scheduler(sync_service, settings, credential_service)

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started successfully")
        for job in scheduler.get_jobs():
            logger.info(f"  - {job.name}: {job.trigger}")


async def stop_scheduler():
    """Stop the scheduler gracefully"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped successfully")
    scheduler = None


def get_scheduler_status():
    """Get current scheduler status and job information"""
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs_info = []
    for job in scheduler.get_jobs():
        # Unset until the scheduler has started
        next_run = getattr(job, "next_run_time", None)
        jobs_info.append({
            "id": job.id,
            "name": job.name,
            "next_run": next_run.isoformat() if next_run else None,
            "trigger": str(job.trigger),
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs_info,
    }
