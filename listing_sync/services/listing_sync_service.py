"""
Listing sync executor.

`sync_listing` pulls one listing's live status from its marketplace, persists
it and, when the listing just sold or ended, reconciles the owning inventory
item. It never raises for remote trouble: every failure becomes an ERROR
SyncResult and the listing row is left exactly as it was, so the next
staleness pass picks it up again.
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from listing_sync.core.config import Settings, get_settings
from listing_sync.core.enums import (
    AccountStatus,
    ItemStatus,
    ListingStatus,
    SALE_RELEVANT_STATUSES,
    SyncOutcome,
    TERMINAL_LISTING_STATUSES,
)
from listing_sync.core.exceptions import AuthExpired, MarketplaceAPIError, NotFoundError, UnsupportedOperation
from listing_sync.core.utils import KeyedLocks, utcnow
from listing_sync.database import get_session_factory
from listing_sync.integrations.base import Capability
from listing_sync.models import MarketplaceAccount, MarketplaceListing, MetaListing, SyncEvent
from listing_sync.services.batch import BatchSyncReport, SyncResult, run_batch
from listing_sync.services.credential_service import CredentialService
from listing_sync.services.reconciliation import ItemReconciler
from listing_sync.services.staleness import StaleListing, select_stale_listings

logger = logging.getLogger(__name__)

# SyncResult.detail values for skips
SKIP_NOT_FOUND = "not_found"
SKIP_ACCOUNT_INACTIVE = "account_inactive"
SKIP_UNSUPPORTED = "unsupported"
SKIP_TERMINAL = "terminal"


async def apply_listing_status(
    db: AsyncSession,
    listing: MarketplaceListing,
    new_status: ListingStatus,
    *,
    marketplace: Optional[str] = None,
    sync_run_id: Optional[str] = None,
    source: str = "poll",
) -> Optional[ItemStatus]:
    """
    Write a freshly observed status onto a listing and reconcile its item when
    the listing moved into sold/ended from a non-terminal state.

    Shared by polling and webhooks. Flushes; the caller commits. Returns the
    item status after reconciliation, or None when no reconciliation ran.
    """
    previous = ListingStatus(listing.status)

    listing.status = new_status.value
    listing.last_synced_at = utcnow()
    if new_status != ListingStatus.ERROR:
        listing.error_message = None

    if new_status == previous:
        await db.flush()
        return None

    db.add(SyncEvent(
        sync_run_id=sync_run_id,
        marketplace=marketplace,
        source=source,
        marketplace_listing_id=listing.id,
        change_type="listing_status",
        change_data={"old": previous.value, "new": new_status.value},
    ))
    await db.flush()
    logger.info(f"Listing {listing.id} ({marketplace}) status {previous.value} -> {new_status.value}")

    if new_status not in SALE_RELEVANT_STATUSES or previous in TERMINAL_LISTING_STATUSES:
        return None

    item_id = (await db.execute(
        select(MetaListing.item_id).where(MetaListing.id == listing.meta_listing_id)
    )).scalar_one_or_none()
    if item_id is None:
        logger.warning(f"Listing {listing.id} has no meta-listing, nothing to reconcile")
        return None

    result = await ItemReconciler(db).reconcile(item_id, sync_run_id=sync_run_id, source=source)
    return result.current if result else None


class ListingSyncService:
    """
    Runs single-listing syncs and staleness passes.

    One instance is meant to be shared by everything in a process (worker,
    scheduler, routes) so the per-listing locks actually serialize work.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        adapter_provider=None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.settings = settings or get_settings()
        # Anything with `async get_adapter(account_id)`
        self.adapter_provider = adapter_provider or CredentialService(
            session_factory=self.session_factory, settings=self.settings
        )
        self.timeout = self.settings.SYNC_ADAPTER_TIMEOUT_SECONDS
        self._listing_locks = KeyedLocks()

    def listing_lock(self, listing_id: int):
        """Async context manager serializing every writer of one listing"""
        return self._listing_locks.hold(listing_id)

    async def sync_listing(
        self,
        listing_id: int,
        account_id: int,
        sync_run_id: Optional[str] = None,
    ) -> SyncResult:
        async with self.listing_lock(listing_id):
            return await self._sync_listing(listing_id, account_id, sync_run_id)

    async def _sync_listing(self, listing_id: int, account_id: int, sync_run_id: Optional[str]) -> SyncResult:
        # Phase 1: validate against persisted state
        async with self.session_factory() as db:
            listing, account, skip = await self._load(db, listing_id, account_id)
            if skip is not None:
                if skip.detail == SKIP_TERMINAL:
                    listing.last_synced_at = utcnow()
                    await db.commit()
                return skip
            previous = ListingStatus(listing.status)
            remote_listing_id = listing.remote_listing_id
            marketplace = account.marketplace

        # Phase 2: ask the marketplace, holding no database locks
        try:
            adapter = await self.adapter_provider.get_adapter(account_id)
            if not adapter.supports(Capability.LISTING_STATUS):
                logger.info(f"Listing {listing_id}: {marketplace} adapter cannot report listing status")
                return SyncResult(listing_id, SyncOutcome.SKIPPED, previous, detail=SKIP_UNSUPPORTED)
            new_status = await asyncio.wait_for(adapter.get_listing_status(remote_listing_id), timeout=self.timeout)
        except UnsupportedOperation as e:
            logger.info(f"Listing {listing_id}: {str(e)}")
            return SyncResult(listing_id, SyncOutcome.SKIPPED, previous, detail=SKIP_UNSUPPORTED)
        except NotFoundError as e:
            logger.info(f"Listing {listing_id}: {str(e)}")
            return SyncResult(listing_id, SyncOutcome.SKIPPED, previous, detail=SKIP_NOT_FOUND)
        except asyncio.TimeoutError:
            logger.warning(f"Listing {listing_id}: {marketplace} status call timed out after {self.timeout}s")
            return SyncResult(listing_id, SyncOutcome.ERROR, previous, detail="timeout")
        except AuthExpired as e:
            logger.warning(f"Listing {listing_id}: {marketplace} credentials expired: {str(e)}")
            return SyncResult(listing_id, SyncOutcome.ERROR, previous, detail=f"auth_expired: {str(e)}")
        except MarketplaceAPIError as e:
            logger.warning(f"Listing {listing_id}: {marketplace} unavailable: {str(e)}")
            return SyncResult(listing_id, SyncOutcome.ERROR, previous, detail=f"remote_unavailable: {str(e)}")
        except Exception as e:
            logger.error(f"Listing {listing_id}: unexpected error from {marketplace} adapter: {str(e)}", exc_info=True)
            return SyncResult(listing_id, SyncOutcome.ERROR, previous, detail=f"unexpected error: {str(e)}")

        # Phase 3: persist under a row lock
        async with self.session_factory() as db:
            try:
                listing = (await db.execute(
                    select(MarketplaceListing).where(MarketplaceListing.id == listing_id).with_for_update()
                )).scalar_one_or_none()
                if listing is None:
                    return SyncResult(listing_id, SyncOutcome.SKIPPED, previous, detail=SKIP_NOT_FOUND)

                current = ListingStatus(listing.status)
                if current in TERMINAL_LISTING_STATUSES:
                    # Went terminal while we were away (webhook); terminal wins
                    listing.last_synced_at = utcnow()
                    await db.commit()
                    return SyncResult(listing_id, SyncOutcome.SKIPPED, current, current, detail=SKIP_TERMINAL)

                item_status = await apply_listing_status(
                    db, listing, new_status, marketplace=marketplace, sync_run_id=sync_run_id
                )
                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.error(f"Listing {listing_id}: failed to persist status {new_status.value}: {str(e)}", exc_info=True)
                return SyncResult(listing_id, SyncOutcome.ERROR, previous, detail=f"persist failed: {str(e)}")

        return SyncResult(
            listing_id=listing_id,
            outcome=SyncOutcome.SUCCESS,
            previous_status=current,
            new_status=new_status,
            item_status=item_status,
        )

    async def _load(
        self, db: AsyncSession, listing_id: int, account_id: int
    ) -> Tuple[Optional[MarketplaceListing], Optional[MarketplaceAccount], Optional[SyncResult]]:
        listing = await db.get(MarketplaceListing, listing_id)
        if listing is None:
            logger.info(f"Listing {listing_id} not found, skipping")
            return None, None, SyncResult(listing_id, SyncOutcome.SKIPPED, detail=SKIP_NOT_FOUND)

        previous = ListingStatus(listing.status)
        if listing.marketplace_account_id != account_id:
            logger.warning(f"Listing {listing_id} does not belong to account {account_id}, skipping")
            return listing, None, SyncResult(listing_id, SyncOutcome.SKIPPED, previous, detail=SKIP_NOT_FOUND)

        account = await db.get(MarketplaceAccount, account_id)
        if account is None:
            logger.info(f"Account {account_id} for listing {listing_id} not found, skipping")
            return listing, None, SyncResult(listing_id, SyncOutcome.SKIPPED, previous, detail=SKIP_NOT_FOUND)

        if not listing.remote_listing_id:
            logger.info(f"Listing {listing_id} was never published, skipping")
            return listing, account, SyncResult(listing_id, SyncOutcome.SKIPPED, previous, detail=SKIP_NOT_FOUND)

        if account.status != AccountStatus.ACTIVE.value:
            logger.info(f"Account {account_id} is {account.status}, skipping listing {listing_id}")
            return listing, account, SyncResult(listing_id, SyncOutcome.SKIPPED, previous, detail=SKIP_ACCOUNT_INACTIVE)

        if previous in TERMINAL_LISTING_STATUSES:
            return listing, account, SyncResult(listing_id, SyncOutcome.SKIPPED, previous, previous, detail=SKIP_TERMINAL)

        return listing, account, None

    async def sync_stale_listings(
        self,
        org_id: Optional[str] = None,
        stale_after_minutes: Optional[int] = None,
        max_concurrent: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> BatchSyncReport:
        """One staleness pass: select stale listings and sync them in a bounded pool."""
        settings = self.settings
        if stale_after_minutes is None:
            stale_after_minutes = settings.SYNC_STALE_AFTER_MINUTES
        if max_concurrent is None:
            max_concurrent = settings.SYNC_MAX_CONCURRENT
        if deadline_seconds is None:
            deadline_seconds = settings.SYNC_BATCH_DEADLINE_SECONDS
        if limit is None:
            limit = settings.SYNC_BATCH_LIMIT

        sync_run_id = str(uuid.uuid4())
        async with self.session_factory() as db:
            candidates = await select_stale_listings(
                db, timedelta(minutes=stale_after_minutes), org_id=org_id, limit=limit
            )

        logger.info(f"Sync run {sync_run_id}: {len(candidates)} stale listings (max_concurrent={max_concurrent})")

        async def _sync_one(candidate: StaleListing) -> SyncResult:
            return await self.sync_listing(candidate.listing_id, candidate.account_id, sync_run_id=sync_run_id)

        return await run_batch(
            candidates,
            _sync_one,
            max_concurrent=max_concurrent,
            deadline=deadline_seconds,
            sync_run_id=sync_run_id,
        )
