"""
Queue consumer for sync jobs.

Delivery is at-least-once: a job whose attempt crashes goes back on the queue
with backoff, and a job whose worker died mid-attempt is reclaimed once its
claim is older than SYNC_JOB_STALE_CLAIM_MINUTES. Both job kinds are written
to be safe to run twice.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from listing_sync.core.exceptions import JobPayloadError
from listing_sync.models import SyncJob
from listing_sync.services.listing_sync_service import ListingSyncService
from listing_sync.services.sync_job_queue import (
    SyncAllJob,
    SyncListingJob,
    fetch_next_queued_job,
    mark_job_completed,
    mark_job_failed,
    mark_job_in_progress,
    parse_job_payload,
    reclaim_stale_jobs,
)

logger = logging.getLogger(__name__)


class SyncWorker:
    def __init__(
        self,
        sync_service: ListingSyncService,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.sync_service = sync_service
        self.session_factory = session_factory or sync_service.session_factory
        self.stale_claim_after = timedelta(minutes=sync_service.settings.SYNC_JOB_STALE_CLAIM_MINUTES)

    async def process_job(self, job: SyncJob) -> Dict[str, Any]:
        """Run one job and return what gets stored as its result."""
        payload = parse_job_payload(job)

        if isinstance(payload, SyncListingJob):
            result = await self.sync_service.sync_listing(payload.listing_id, payload.account_id)
            return result.to_dict()

        if isinstance(payload, SyncAllJob):
            report = await self.sync_service.sync_stale_listings(
                org_id=payload.org_id,
                stale_after_minutes=payload.stale_after_minutes,
            )
            return report.summary()

        raise JobPayloadError(f"No handler for job type {job.job_type}")

    async def run_once(self) -> Optional[SyncJob]:
        """Claim and run the next due job. Returns the job, or None when the queue is empty."""
        async with self.session_factory() as session:
            if await reclaim_stale_jobs(session, self.stale_claim_after):
                await session.commit()

            job = await fetch_next_queued_job(session)
            if job is None:
                return None

            await mark_job_in_progress(session, job)
            await session.commit()
            logger.info(f"Processing {job.job_type} job {job.id} (attempt {job.attempts}/{job.max_attempts})")

            try:
                result = await self.process_job(job)
            except JobPayloadError as exc:
                # A bad payload will not get better on retry
                await mark_job_failed(session, job, str(exc), retry=False)
                await session.commit()
                return job
            except Exception as exc:
                logger.error(f"Job {job.id} crashed: {str(exc)}", exc_info=True)
                await mark_job_failed(session, job, str(exc))
                await session.commit()
                return job

            await mark_job_completed(session, job, result)
            await session.commit()
            logger.info(f"{job.job_type} job {job.id} completed")
            return job

    async def drain(self, max_jobs: Optional[int] = None) -> int:
        """Run due jobs until the queue is empty or `max_jobs` have run."""
        processed = 0
        while max_jobs is None or processed < max_jobs:
            job = await self.run_once()
            if job is None:
                break
            processed += 1
        if processed:
            logger.info(f"Drained {processed} sync jobs")
        return processed
