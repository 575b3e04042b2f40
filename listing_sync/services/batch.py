"""
Bounded-concurrency batch runner for listing syncs.

One listing's failure never aborts the batch; an optional deadline stops new
syncs from starting while letting in-flight ones finish.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from listing_sync.core.enums import ItemStatus, ListingStatus, SyncOutcome
from listing_sync.core.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    listing_id: int
    outcome: SyncOutcome
    previous_status: Optional[ListingStatus] = None
    new_status: Optional[ListingStatus] = None
    item_status: Optional[ItemStatus] = None
    detail: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == SyncOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "listing_id": self.listing_id,
            "outcome": self.outcome.value,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value if self.new_status else None,
            "item_status": self.item_status.value if self.item_status else None,
            "detail": self.detail,
        }


@dataclass
class BatchSyncReport:
    sync_run_id: str
    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    deferred: int = 0
    results: List[SyncResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    def add(self, result: SyncResult) -> None:
        self.results.append(result)
        self.attempted += 1
        if result.outcome == SyncOutcome.SUCCESS:
            self.succeeded += 1
        elif result.outcome == SyncOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    def summary(self) -> Dict[str, Any]:
        return {
            "sync_run_id": self.sync_run_id,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "deferred": self.deferred,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


SyncOne = Callable[[Any], Awaitable[SyncResult]]


async def run_batch(
    candidates: Sequence[Any],
    sync_one: SyncOne,
    max_concurrent: int = 4,
    deadline: Optional[float] = None,
    sync_run_id: Optional[str] = None,
) -> BatchSyncReport:
    """
    Run `sync_one` for every candidate, at most `max_concurrent` at a time.

    `candidates` need a `listing_id` attribute. `deadline` is in seconds from
    the start of the batch; candidates that have not started by then are
    counted as deferred and left for the next pass.
    """
    report = BatchSyncReport(sync_run_id=sync_run_id or str(uuid.uuid4()))
    semaphore = asyncio.Semaphore(max(1, max_concurrent))
    loop = asyncio.get_running_loop()
    stop_at = loop.time() + deadline if deadline is not None else None

    async def _run(candidate) -> Optional[SyncResult]:
        async with semaphore:
            if stop_at is not None and loop.time() >= stop_at:
                return None
            try:
                return await sync_one(candidate)
            except Exception as e:
                logger.error(f"Sync of listing {candidate.listing_id} crashed: {str(e)}", exc_info=True)
                return SyncResult(
                    listing_id=candidate.listing_id,
                    outcome=SyncOutcome.ERROR,
                    detail=f"unexpected error: {str(e)}",
                )

    outcomes = await asyncio.gather(*(_run(candidate) for candidate in candidates))

    for result in outcomes:
        if result is None:
            report.deferred += 1
        else:
            report.add(result)
    report.finished_at = utcnow()

    logger.info(
        f"Sync run {report.sync_run_id}: attempted {report.attempted}, succeeded {report.succeeded}, "
        f"skipped {report.skipped}, failed {report.failed}, deferred {report.deferred}"
    )
    return report
