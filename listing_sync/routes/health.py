from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from listing_sync.database import get_session
from listing_sync.scheduler import get_scheduler_status
from listing_sync.services.sync_job_queue import peek_queue_count

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "Listing Sync", "scheduler": get_scheduler_status()}


@router.get("/health/db")
async def database_health(db: AsyncSession = Depends(get_session)):
    """Check database connectivity and queue depth"""
    try:
        await db.execute(text("SELECT 1"))
        queued = await peek_queue_count(db)
        return {"status": "healthy", "database": "connected", "queued_jobs": queued}
    except Exception as e:
        return {"status": "unhealthy", "database": "error", "error": str(e)}
