# tests/unit/services/test_reconciliation.py
import pytest
from sqlalchemy import select

from listing_sync.core.enums import ItemStatus, ListingStatus, MarketplaceType
from listing_sync.models import InventoryItem, SyncEvent
from listing_sync.services.reconciliation import ItemReconciler, derive_item_status

L = ListingStatus


"""
1. Derivation rule
"""

@pytest.mark.parametrize("statuses, current, expected", [
    ([L.SOLD], ItemStatus.ACTIVE, ItemStatus.SOLD),
    ([L.SOLD, L.LIVE, L.ERROR], ItemStatus.ACTIVE, ItemStatus.SOLD),
    ([L.SOLD, L.ENDED], ItemStatus.ACTIVE, ItemStatus.SOLD),
    ([L.ENDED, L.ENDED], ItemStatus.ACTIVE, ItemStatus.ARCHIVED),
    ([L.ENDED], ItemStatus.DRAFT, ItemStatus.ARCHIVED),
    ([L.ENDED, L.LIVE], ItemStatus.ACTIVE, ItemStatus.ACTIVE),
    ([L.ENDED, L.ERROR], ItemStatus.ACTIVE, ItemStatus.ACTIVE),
    ([L.LIVE, L.PENDING, L.LISTING_PENDING], ItemStatus.DRAFT, ItemStatus.DRAFT),
    ([], ItemStatus.ACTIVE, ItemStatus.ACTIVE),
    ([], ItemStatus.SOLD, ItemStatus.SOLD),
])
def test_derive_item_status(statuses, current, expected):
    assert derive_item_status(statuses, current) == expected


def test_sold_dominates_regardless_of_order():
    assert derive_item_status([L.LIVE, L.ENDED, L.SOLD], ItemStatus.ACTIVE) == ItemStatus.SOLD
    assert derive_item_status([L.SOLD, L.ENDED, L.LIVE], ItemStatus.ACTIVE) == ItemStatus.SOLD


def test_derivation_is_idempotent():
    statuses = ["ended", "ended"]
    first = derive_item_status(statuses, "active")
    assert derive_item_status(statuses, first) == first == ItemStatus.ARCHIVED


"""
2. Persisted reconciliation
"""

@pytest.mark.asyncio
async def test_reconcile_writes_status_and_audit_event(factory, session_factory):
    ebay = await factory.account(MarketplaceType.EBAY)
    amazon = await factory.account(MarketplaceType.AMAZON)
    item, _ = await factory.item([
        {"account": ebay, "remote_id": "e1", "status": L.SOLD},
        {"account": amazon, "remote_id": "a1", "status": L.LIVE},
    ])

    async with session_factory() as db:
        result = await ItemReconciler(db).reconcile(item.id, sync_run_id="run-1")
        await db.commit()

    assert result.changed is True
    assert result.previous == ItemStatus.ACTIVE
    assert result.current == ItemStatus.SOLD
    assert (await factory.get(InventoryItem, item.id)).status == "sold"

    async with session_factory() as db:
        events = (await db.execute(select(SyncEvent).where(SyncEvent.item_id == item.id))).scalars().all()
    assert len(events) == 1
    assert events[0].change_type == "item_status"
    assert events[0].sync_run_id == "run-1"
    assert events[0].change_data["old"] == "active"
    assert events[0].change_data["new"] == "sold"


@pytest.mark.asyncio
async def test_second_reconcile_is_a_no_op(factory, session_factory):
    account = await factory.account()
    item, _ = await factory.item([
        {"account": account, "remote_id": "e1", "status": L.ENDED},
        {"account": account, "remote_id": "e2", "status": L.ENDED},
    ])

    async with session_factory() as db:
        first = await ItemReconciler(db).reconcile(item.id)
        await db.commit()
    async with session_factory() as db:
        second = await ItemReconciler(db).reconcile(item.id)
        await db.commit()
        event_count = len((await db.execute(select(SyncEvent))).scalars().all())

    assert first.current == ItemStatus.ARCHIVED and first.changed
    assert second.current == ItemStatus.ARCHIVED and not second.changed
    assert event_count == 1


@pytest.mark.asyncio
async def test_no_premature_archive(factory, session_factory):
    account = await factory.account()
    item, _ = await factory.item([
        {"account": account, "remote_id": "e1", "status": L.ENDED},
        {"account": account, "remote_id": "e2", "status": L.LIVE},
    ])

    async with session_factory() as db:
        result = await ItemReconciler(db).reconcile(item.id)
        await db.commit()

    assert result.changed is False
    assert (await factory.get(InventoryItem, item.id)).status == "active"


@pytest.mark.asyncio
async def test_item_without_listings_is_untouched(factory, session_factory):
    item, _ = await factory.item([], status=ItemStatus.ACTIVE)

    async with session_factory() as db:
        result = await ItemReconciler(db).reconcile(item.id)

    assert result.current == ItemStatus.ACTIVE
    assert result.changed is False


@pytest.mark.asyncio
async def test_missing_item_or_meta_listing_returns_none(factory, session_factory):
    orphan, _ = await factory.item([], with_meta_listing=False)

    async with session_factory() as db:
        assert await ItemReconciler(db).reconcile(99999) is None
        assert await ItemReconciler(db).reconcile(orphan.id) is None
