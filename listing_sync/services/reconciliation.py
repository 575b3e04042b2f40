"""
Item status reconciliation.

An inventory item's status is derived from the statuses of all of its
marketplace listings:

    any listing sold                 -> item sold
    every listing sold or ended      -> item archived
    otherwise (including no listings) -> item keeps its current status

The reconciler only ever reads persisted listing state, so running it twice,
or concurrently from two listings of the same item, converges on the same
answer.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from listing_sync.core.enums import ItemStatus, ListingStatus, TERMINAL_LISTING_STATUSES
from listing_sync.models import InventoryItem, MarketplaceListing, MetaListing, SyncEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationResult:
    item_id: int
    previous: ItemStatus
    current: ItemStatus
    changed: bool


def derive_item_status(
    listing_statuses: Iterable[Union[ListingStatus, str]],
    current: Union[ItemStatus, str],
) -> ItemStatus:
    statuses = {ListingStatus(status) for status in listing_statuses}
    current = ItemStatus(current)

    if ListingStatus.SOLD in statuses:
        return ItemStatus.SOLD
    if statuses and statuses <= TERMINAL_LISTING_STATUSES:
        return ItemStatus.ARCHIVED
    return current


class ItemReconciler:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def reconcile(
        self,
        item_id: int,
        sync_run_id: Optional[str] = None,
        source: str = "poll",
    ) -> Optional[ReconciliationResult]:
        """
        Recompute and persist the status of one item.

        Flushes but does not commit; the caller owns the transaction. Returns
        None when the item or its meta-listing no longer exists.
        """
        item = (await self.db.execute(
            select(InventoryItem).where(InventoryItem.id == item_id).with_for_update()
        )).scalar_one_or_none()
        if item is None:
            logger.warning(f"Reconcile skipped: inventory item {item_id} not found")
            return None

        meta_listing_id = (await self.db.execute(
            select(MetaListing.id).where(MetaListing.item_id == item_id)
        )).scalar_one_or_none()
        if meta_listing_id is None:
            logger.warning(f"Reconcile skipped: item {item_id} has no meta-listing")
            return None

        listing_statuses = (await self.db.execute(
            select(MarketplaceListing.status).where(MarketplaceListing.meta_listing_id == meta_listing_id)
        )).scalars().all()

        previous = ItemStatus(item.status)
        current = derive_item_status(listing_statuses, previous)

        if current == previous:
            logger.debug(f"Item {item_id} stays {previous.value} ({len(listing_statuses)} listings)")
            return ReconciliationResult(item_id=item_id, previous=previous, current=current, changed=False)

        item.status = current.value
        self.db.add(SyncEvent(
            sync_run_id=sync_run_id,
            source=source,
            item_id=item_id,
            change_type="item_status",
            change_data={
                "old": previous.value,
                "new": current.value,
                "listing_statuses": sorted(listing_statuses),
            },
        ))
        await self.db.flush()

        logger.info(f"Item {item_id} status {previous.value} -> {current.value}")
        return ReconciliationResult(item_id=item_id, previous=previous, current=current, changed=True)
