"""
Applies marketplace push notifications.

A webhook is treated as one more observation of a listing's native status: it
goes through the same status mapper and the same write/reconcile path as a
poll, tagged with source "webhook".
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from listing_sync.core.enums import ListingStatus, MarketplaceType, SyncOutcome, TERMINAL_LISTING_STATUSES
from listing_sync.core.exceptions import AccountNotFoundError, ListingNotFoundError, UnsupportedOperation
from listing_sync.database import get_session_factory
from listing_sync.integrations.base import Capability, MarketplaceCredentials, MarketplaceWebhookEvent
from listing_sync.integrations.registry import create_adapter
from listing_sync.integrations.status_mapping import map_status
from listing_sync.models import MarketplaceAccount, MarketplaceListing
from listing_sync.services.batch import SyncResult
from listing_sync.services.listing_sync_service import SKIP_TERMINAL, ListingSyncService, apply_listing_status

logger = logging.getLogger(__name__)


class WebhookService:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        sync_service: Optional[ListingSyncService] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        # Shares per-listing locks with polling when given
        self.sync_service = sync_service

    def parse(
        self,
        marketplace: MarketplaceType,
        payload: Any,
        headers: Dict[str, str],
    ) -> Optional[MarketplaceWebhookEvent]:
        """
        Raises:
            UnsupportedOperation: the marketplace adapter cannot parse webhooks
        """
        adapter = create_adapter(MarketplaceCredentials(marketplace=marketplace))
        if not adapter.supports(Capability.PARSE_WEBHOOK):
            raise UnsupportedOperation(f"{marketplace.value} does not deliver webhooks")
        return adapter.parse_webhook(payload, headers)

    async def apply_event(
        self,
        account_id: int,
        event: MarketplaceWebhookEvent,
        marketplace: Optional[MarketplaceType] = None,
    ) -> Optional[SyncResult]:
        """
        Returns None when the event references a listing we do not know or
        carries no status.

        Raises:
            AccountNotFoundError: no such account, or it belongs to another marketplace than `marketplace`
            ListingNotFoundError: the listing was deleted while the event waited for its lock
        """
        async with self.session_factory() as db:
            account = await db.get(MarketplaceAccount, account_id)
            if account is None:
                raise AccountNotFoundError(f"Marketplace account {account_id} not found")
            if marketplace is not None and account.marketplace != MarketplaceType(marketplace).value:
                raise AccountNotFoundError(f"Account {account_id} is not a {MarketplaceType(marketplace).value} account")
            marketplace = MarketplaceType(account.marketplace)

            listing_id = (await db.execute(
                select(MarketplaceListing.id).where(
                    MarketplaceListing.marketplace_account_id == account_id,
                    MarketplaceListing.remote_listing_id == event.remote_listing_id,
                )
            )).scalar_one_or_none()

        if listing_id is None:
            logger.info(
                f"Ignoring {marketplace.value} webhook {event.event_type}: "
                f"unknown listing {event.remote_listing_id} on account {account_id}"
            )
            return None

        if event.native_status is None:
            logger.info(f"{marketplace.value} webhook {event.event_type} for listing {listing_id} carries no status")
            return None

        new_status = map_status(marketplace, event.native_status)

        if self.sync_service is not None:
            async with self.sync_service.listing_lock(listing_id):
                return await self._apply(listing_id, marketplace, new_status)
        return await self._apply(listing_id, marketplace, new_status)

    async def _apply(self, listing_id: int, marketplace: MarketplaceType, new_status: ListingStatus) -> SyncResult:
        async with self.session_factory() as db:
            listing = (await db.execute(
                select(MarketplaceListing).where(MarketplaceListing.id == listing_id).with_for_update()
            )).scalar_one_or_none()
            if listing is None:
                raise ListingNotFoundError(f"Listing {listing_id} disappeared before the webhook was applied")
            previous = ListingStatus(listing.status)

            if previous in TERMINAL_LISTING_STATUSES:
                logger.info(f"Listing {listing_id} already {previous.value}, webhook status {new_status.value} ignored")
                return SyncResult(listing_id, SyncOutcome.SKIPPED, previous, previous, detail=SKIP_TERMINAL)

            item_status = await apply_listing_status(
                db, listing, new_status, marketplace=marketplace.value, source="webhook"
            )
            await db.commit()

        return SyncResult(
            listing_id=listing_id,
            outcome=SyncOutcome.SUCCESS,
            previous_status=previous,
            new_status=new_status,
            item_status=item_status,
        )
