"""Helpers for enqueuing and managing sync jobs."""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from listing_sync.core.config import get_settings
from listing_sync.core.enums import SyncJobStatus, SyncJobType
from listing_sync.core.exceptions import JobPayloadError
from listing_sync.core.utils import utcnow
from listing_sync.models import SyncJob

logger = logging.getLogger(__name__)


class SyncListingJob(BaseModel):
    listing_id: int
    account_id: int


class SyncAllJob(BaseModel):
    org_id: Optional[str] = None
    stale_after_minutes: Optional[int] = Field(default=None, gt=0)


JOB_PAYLOADS = {
    SyncJobType.SYNC_LISTING: SyncListingJob,
    SyncJobType.SYNC_ALL: SyncAllJob,
}


def parse_job_payload(job: SyncJob) -> Union[SyncListingJob, SyncAllJob]:
    try:
        model = JOB_PAYLOADS[SyncJobType(job.job_type)]
    except ValueError:
        raise JobPayloadError(f"Unknown job type {job.job_type!r} on job {job.id}")
    try:
        return model.model_validate(job.payload or {})
    except ValidationError as e:
        raise JobPayloadError(f"Invalid {job.job_type} payload on job {job.id}: {str(e)}")


def retry_delay(attempts: int, base_seconds: Optional[int] = None) -> timedelta:
    """Exponential backoff: base, 2*base, 4*base..."""
    if base_seconds is None:
        base_seconds = get_settings().SYNC_JOB_RETRY_BASE_SECONDS
    return timedelta(seconds=base_seconds * 2 ** max(attempts - 1, 0))


async def enqueue_sync_job(
    db: AsyncSession,
    job_type: SyncJobType,
    payload: BaseModel,
    *,
    max_attempts: Optional[int] = None,
) -> SyncJob:
    """
    Create a queued job. An identical job still waiting in the queue is
    returned instead of adding a duplicate.
    """
    payload_data = payload.model_dump()

    existing = await _find_queued_job(db, job_type, payload_data)
    if existing is not None:
        logger.debug(f"Reusing queued {job_type.value} job {existing.id}")
        return existing

    job = SyncJob(
        job_type=job_type.value,
        payload=payload_data,
        status=SyncJobStatus.QUEUED.value,
        attempts=0,
        max_attempts=max_attempts or get_settings().SYNC_JOB_MAX_ATTEMPTS,
        available_at=utcnow(),
    )
    db.add(job)
    await db.flush()
    await db.refresh(job)
    logger.info(f"Enqueued {job_type.value} job {job.id}: {payload_data}")
    return job


async def enqueue_sync_listing(db: AsyncSession, listing_id: int, account_id: int) -> SyncJob:
    return await enqueue_sync_job(
        db, SyncJobType.SYNC_LISTING, SyncListingJob(listing_id=listing_id, account_id=account_id)
    )


async def enqueue_sync_all(
    db: AsyncSession,
    org_id: Optional[str] = None,
    stale_after_minutes: Optional[int] = None,
) -> SyncJob:
    return await enqueue_sync_job(
        db, SyncJobType.SYNC_ALL, SyncAllJob(org_id=org_id, stale_after_minutes=stale_after_minutes)
    )


async def _find_queued_job(db: AsyncSession, job_type: SyncJobType, payload: Dict[str, Any]) -> Optional[SyncJob]:
    stmt = (
        select(SyncJob)
        .where(SyncJob.status == SyncJobStatus.QUEUED.value, SyncJob.job_type == job_type.value)
        .order_by(SyncJob.id.asc())
    )
    for job in (await db.execute(stmt)).scalars():
        if job.payload == payload:
            return job
    return None


async def get_job(db: AsyncSession, job_id: int) -> Optional[SyncJob]:
    return await db.get(SyncJob, job_id)


async def fetch_next_queued_job(db: AsyncSession, now: Optional[datetime] = None) -> Optional[SyncJob]:
    """Fetch the next due job (using SKIP LOCKED to avoid contention between workers)."""
    stmt = (
        select(SyncJob)
        .where(
            SyncJob.status == SyncJobStatus.QUEUED.value,
            SyncJob.available_at <= (now or utcnow()),
        )
        .order_by(SyncJob.available_at.asc(), SyncJob.id.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def reclaim_stale_jobs(
    db: AsyncSession,
    stale_after: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Put in-progress jobs whose claim is older than `stale_after` back on the
    queue; their worker died mid-attempt. Jobs that already used up their
    attempts are failed instead. Returns how many jobs were touched.
    """
    if stale_after is None:
        stale_after = timedelta(minutes=get_settings().SYNC_JOB_STALE_CLAIM_MINUTES)
    now = now or utcnow()
    abandoned = (
        SyncJob.status == SyncJobStatus.IN_PROGRESS.value,
        SyncJob.last_attempt_at < now - stale_after,
    )

    failed = await db.execute(
        update(SyncJob)
        .where(*abandoned, SyncJob.attempts >= SyncJob.max_attempts)
        .values(status=SyncJobStatus.FAILED.value, error_message="Worker lost the job on its final attempt")
        .execution_options(synchronize_session=False)
    )
    requeued = await db.execute(
        update(SyncJob)
        .where(*abandoned)
        .values(status=SyncJobStatus.QUEUED.value, available_at=now, error_message="Worker lost the job, requeued")
        .execution_options(synchronize_session=False)
    )

    touched = failed.rowcount + requeued.rowcount
    if touched:
        logger.warning(f"Reclaimed {touched} abandoned jobs ({failed.rowcount} failed, {requeued.rowcount} requeued)")
    return touched


async def mark_job_in_progress(db: AsyncSession, job: SyncJob) -> None:
    job.status = SyncJobStatus.IN_PROGRESS.value
    job.last_attempt_at = utcnow()
    job.attempts += 1
    await db.flush()


async def mark_job_completed(db: AsyncSession, job: SyncJob, result: Optional[Dict[str, Any]] = None) -> None:
    job.status = SyncJobStatus.COMPLETED.value
    job.error_message = None
    job.result = result
    await db.flush()


async def mark_job_failed(
    db: AsyncSession,
    job: SyncJob,
    error_message: str,
    *,
    retry: bool = True,
    base_seconds: Optional[int] = None,
) -> None:
    """
    Record a failed attempt. The job goes back on the queue with exponential
    backoff until it has used up `max_attempts`, then stays failed.
    """
    job.error_message = error_message[:2000]
    if retry and job.attempts < job.max_attempts:
        delay = retry_delay(job.attempts, base_seconds)
        job.status = SyncJobStatus.QUEUED.value
        job.available_at = utcnow() + delay
        logger.warning(
            f"Job {job.id} attempt {job.attempts}/{job.max_attempts} failed, retrying in {int(delay.total_seconds())}s: "
            f"{error_message}"
        )
    else:
        job.status = SyncJobStatus.FAILED.value
        logger.error(f"Job {job.id} failed after {job.attempts} attempts: {error_message}")
    await db.flush()


async def peek_queue_count(db: AsyncSession) -> int:
    """Check how many jobs are still queued (without locking)."""
    stmt = select(func.count(SyncJob.id)).where(SyncJob.status == SyncJobStatus.QUEUED.value)
    result = await db.execute(stmt)
    return result.scalar() or 0
