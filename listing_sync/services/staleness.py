"""Selects the listings a staleness pass should re-check."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from listing_sync.core.enums import AccountStatus, SELECTABLE_LISTING_STATUSES
from listing_sync.core.utils import utcnow
from listing_sync.models import MarketplaceAccount, MarketplaceListing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StaleListing:
    listing_id: int
    account_id: int


async def select_stale_listings(
    session: AsyncSession,
    stale_after: timedelta,
    org_id: Optional[str] = None,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> List[StaleListing]:
    """
    Listings that are selectable (live, pending or error), published, owned by
    an active account and not synced within `stale_after`. Never-synced rows
    come first, then the oldest.
    """
    cutoff = (now or utcnow()) - stale_after

    stmt = (
        select(MarketplaceListing.id, MarketplaceListing.marketplace_account_id)
        .join(MarketplaceAccount, MarketplaceAccount.id == MarketplaceListing.marketplace_account_id)
        .where(
            and_(
                MarketplaceListing.status.in_([s.value for s in SELECTABLE_LISTING_STATUSES]),
                MarketplaceListing.remote_listing_id.isnot(None),
                MarketplaceListing.remote_listing_id != "",
                MarketplaceAccount.status == AccountStatus.ACTIVE.value,
                or_(
                    MarketplaceListing.last_synced_at.is_(None),
                    MarketplaceListing.last_synced_at < cutoff,
                ),
            )
        )
        .order_by(
            MarketplaceListing.last_synced_at.is_(None).desc(),
            MarketplaceListing.last_synced_at.asc(),
            MarketplaceListing.id.asc(),
        )
    )
    if org_id is not None:
        stmt = stmt.where(MarketplaceAccount.org_id == org_id)
    if limit:
        stmt = stmt.limit(limit)

    rows = (await session.execute(stmt)).all()
    logger.info(f"Staleness selector found {len(rows)} listings older than {stale_after} (org={org_id or 'all'})")
    return [StaleListing(listing_id=row[0], account_id=row[1]) for row in rows]
