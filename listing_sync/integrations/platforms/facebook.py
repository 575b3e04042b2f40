"""
Facebook adapter: catalog product availability through the Graph API.

Page/system-user tokens are long-lived and cannot be renewed with a refresh
grant; an expired token needs the seller to reconnect the account.
"""

import logging
from typing import Any, Dict, Optional

from listing_sync.core.enums import ListingStatus, MarketplaceType
from listing_sync.core.exceptions import AuthExpired, RemoteUnavailable
from listing_sync.integrations.base import (
    Capability,
    MarketplaceAdapter,
    MarketplaceCredentials,
    MarketplaceWebhookEvent,
)
from listing_sync.integrations.http import send_request, with_auth_retry
from listing_sync.integrations.status_mapping import map_status

logger = logging.getLogger(__name__)

GRAPH_AUTH_ERROR_CODE = 190  # OAuthException: token expired or revoked
REVIEW_STATES_WITH_STATUS = {"pending", "rejected"}


class FacebookAdapter(MarketplaceAdapter):
    name = MarketplaceType.FACEBOOK
    capabilities = frozenset({Capability.LISTING_STATUS, Capability.PARSE_WEBHOOK})

    BASE_URL = "https://graph.facebook.com"
    DEFAULT_GRAPH_VERSION = "v19.0"

    def __init__(self, credentials: MarketplaceCredentials, **kwargs):
        super().__init__(credentials, **kwargs)
        self.graph_version = credentials.api_version or self.DEFAULT_GRAPH_VERSION

    async def get_listing_status(self, remote_listing_id: str) -> ListingStatus:
        native_status = await with_auth_retry(self, lambda: self._fetch_native_status(remote_listing_id))
        status = map_status(self.name, native_status)
        logger.debug(f"Facebook product {remote_listing_id}: {native_status!r} -> {status.value}")
        return status

    async def _fetch_native_status(self, product_id: str) -> Optional[str]:
        response = await send_request(
            self.name.value,
            "GET",
            f"{self.BASE_URL}/{self.graph_version}/{product_id}",
            client=self.http_client,
            timeout=self.timeout,
            # Graph API reports OAuth failures as 400 with error code 190
            passthrough={400, 404},
            params={
                "fields": "id,retailer_id,availability,review_status",
                "access_token": self.credentials.access_token or "",
            },
        )

        if response.status_code in (400, 404):
            try:
                error = (response.json() or {}).get("error") or {}
            except ValueError:
                error = {}
            if error.get("code") == GRAPH_AUTH_ERROR_CODE:
                raise AuthExpired("Facebook access token expired or revoked", marketplace=self.name.value)
            if response.status_code == 404 or error.get("code") == 100:
                # Object does not exist: product deleted from the catalog
                return "discontinued"
            raise RemoteUnavailable(
                f"Facebook Graph API error: {error.get('message', response.text[:200])}",
                marketplace=self.name.value,
                status_code=response.status_code,
            )

        return self._native_status_from_product(response.json())

    @staticmethod
    def _native_status_from_product(product: Dict[str, Any]) -> Optional[str]:
        review_status = (product.get("review_status") or "").lower()
        if review_status in REVIEW_STATES_WITH_STATUS:
            return f"review_status:{review_status}"
        return product.get("availability")

    async def refresh_grant(self, credentials: MarketplaceCredentials) -> MarketplaceCredentials:
        raise AuthExpired(
            "Facebook tokens cannot be refreshed automatically; the account must be reconnected",
            marketplace=self.name.value,
        )

    def parse_webhook(self, payload: Any, headers: Dict[str, str]) -> Optional[MarketplaceWebhookEvent]:
        if not isinstance(payload, dict):
            return None

        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                value = change.get("value") or {}
                product_id = value.get("product_id") or value.get("retailer_id")
                if not product_id:
                    continue

                verb = value.get("verb")
                if verb == "delete":
                    native_status = "discontinued"
                else:
                    native_status = value.get("availability")

                return MarketplaceWebhookEvent(
                    event_type=f"{change.get('field', 'product')}:{verb or 'update'}",
                    remote_listing_id=str(product_id),
                    native_status=native_status,
                    payload=value,
                )

        logger.info("Facebook webhook carried no product change")
        return None
