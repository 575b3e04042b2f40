# listing_sync/routes/sync.py
"""
Sync triggers.

Both triggers enqueue a job and return immediately; callers poll
`GET /api/sync/jobs/{job_id}`. `wait=true` on the single-listing trigger runs
the sync inline instead, for operators debugging one listing.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from listing_sync.database import get_session
from listing_sync.dependencies import get_sync_service
from listing_sync.models import MarketplaceListing, SyncJob
from listing_sync.services.listing_sync_service import ListingSyncService
from listing_sync.services.sync_job_queue import enqueue_sync_all, enqueue_sync_listing, get_job

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sync", tags=["sync"])


def _job_to_dict(job: SyncJob) -> Dict[str, Any]:
    return {
        "job_id": job.id,
        "job_type": job.job_type,
        "status": job.status,
        "payload": job.payload,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "available_at": job.available_at.isoformat() if job.available_at else None,
        "error_message": job.error_message,
        "result": job.result,
    }


@router.post("/listings/{listing_id}")
async def sync_listing(
    listing_id: int,
    wait: bool = False,
    db: AsyncSession = Depends(get_session),
    sync_service: ListingSyncService = Depends(get_sync_service),
):
    listing = await db.get(MarketplaceListing, listing_id)
    if listing is None:
        raise HTTPException(status_code=404, detail=f"Listing {listing_id} not found")
    account_id = listing.marketplace_account_id

    if wait:
        result = await sync_service.sync_listing(listing_id, account_id)
        return result.to_dict()

    job = await enqueue_sync_listing(db, listing_id, account_id)
    await db.commit()
    return {"status": "queued", "job_id": job.id}


@router.post("/all")
async def sync_all(
    org_id: Optional[str] = None,
    stale_after_minutes: Optional[int] = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_session),
):
    """Queue a staleness pass without blocking the request."""
    job = await enqueue_sync_all(db, org_id=org_id, stale_after_minutes=stale_after_minutes)
    await db.commit()
    logger.info(f"Queued staleness pass job {job.id} (org={org_id or 'all'})")
    return {"status": "queued", "job_id": job.id}


@router.get("/jobs/{job_id}")
async def get_sync_job(job_id: int, db: AsyncSession = Depends(get_session)):
    job = await get_job(db, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Unknown sync job id")
    return _job_to_dict(job)
