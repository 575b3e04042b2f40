# tests/unit/services/test_staleness.py
from datetime import datetime, timedelta, timezone

import pytest

from listing_sync.core.enums import AccountStatus, ListingStatus, MarketplaceType
from listing_sync.services.staleness import StaleListing, select_stale_listings

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
HOUR = timedelta(minutes=60)


@pytest.mark.asyncio
async def test_selects_only_eligible_listings(factory, session_factory):
    active = await factory.account(MarketplaceType.EBAY)
    inactive = await factory.account(MarketplaceType.AMAZON, status=AccountStatus.INACTIVE)
    expired = await factory.account(MarketplaceType.FACEBOOK, status=AccountStatus.EXPIRED)

    _, listings = await factory.item([
        {"account": active, "remote_id": "stale", "status": ListingStatus.LIVE, "last_synced_at": NOW - timedelta(hours=2)},
        {"account": active, "remote_id": "fresh", "status": ListingStatus.LIVE, "last_synced_at": NOW - timedelta(minutes=5)},
        {"account": active, "remote_id": "never", "status": ListingStatus.PENDING, "last_synced_at": None},
        {"account": active, "remote_id": "errored", "status": ListingStatus.ERROR, "last_synced_at": NOW - timedelta(hours=3)},
        {"account": active, "remote_id": None, "status": ListingStatus.LIVE, "last_synced_at": None},
        {"account": active, "remote_id": "sold", "status": ListingStatus.SOLD, "last_synced_at": None},
        {"account": active, "remote_id": "ended", "status": ListingStatus.ENDED, "last_synced_at": None},
        {"account": active, "remote_id": "draft", "status": ListingStatus.LISTING_PENDING, "last_synced_at": None},
        {"account": inactive, "remote_id": "inactive", "status": ListingStatus.LIVE, "last_synced_at": None},
        {"account": expired, "remote_id": "expired", "status": ListingStatus.LIVE, "last_synced_at": None},
    ])
    by_remote = {listing.remote_listing_id: listing for listing in listings}

    async with session_factory() as db:
        stale = await select_stale_listings(db, HOUR, now=NOW)

    # never-synced first, then oldest sync
    assert [s.listing_id for s in stale] == [
        by_remote["never"].id,
        by_remote["errored"].id,
        by_remote["stale"].id,
    ]
    assert all(s.account_id == active.id for s in stale)


@pytest.mark.asyncio
async def test_boundary_is_exclusive(factory, session_factory):
    account = await factory.account()
    await factory.item([
        {"account": account, "remote_id": "exact", "status": ListingStatus.LIVE, "last_synced_at": NOW - HOUR},
    ])

    async with session_factory() as db:
        assert await select_stale_listings(db, HOUR, now=NOW) == []
        assert len(await select_stale_listings(db, HOUR, now=NOW + timedelta(seconds=1))) == 1


@pytest.mark.asyncio
async def test_org_scope_and_limit(factory, session_factory):
    mine = await factory.account(org_id="org-1")
    theirs = await factory.account(org_id="org-2")
    _, listings = await factory.item([
        {"account": mine, "remote_id": "m1", "last_synced_at": None},
        {"account": mine, "remote_id": "m2", "last_synced_at": NOW - timedelta(days=1)},
        {"account": theirs, "remote_id": "t1", "last_synced_at": None},
    ])

    async with session_factory() as db:
        scoped = await select_stale_listings(db, HOUR, org_id="org-1", now=NOW)
        limited = await select_stale_listings(db, HOUR, now=NOW, limit=1)

    assert {s.account_id for s in scoped} == {mine.id}
    assert len(scoped) == 2
    assert len(limited) == 1
    assert isinstance(limited[0], StaleListing)


@pytest.mark.asyncio
async def test_shorter_policy_picks_up_more(factory, session_factory):
    account = await factory.account()
    await factory.item([
        {"account": account, "remote_id": "r1", "last_synced_at": NOW - timedelta(minutes=20)},
    ])

    async with session_factory() as db:
        assert await select_stale_listings(db, HOUR, now=NOW) == []
        assert len(await select_stale_listings(db, timedelta(minutes=15), now=NOW)) == 1
