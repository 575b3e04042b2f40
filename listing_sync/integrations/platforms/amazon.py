"""
Amazon adapter: listing status through the Selling Partner API Listings
Items endpoint, refresh through Login with Amazon (LWA).

Amazon listings are keyed by seller SKU, so `remote_listing_id` holds the SKU.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List
from urllib.parse import quote

from listing_sync.core.enums import ListingStatus, MarketplaceType
from listing_sync.core.exceptions import AuthExpired, UnsupportedOperation
from listing_sync.core.utils import utcnow
from listing_sync.integrations.base import Capability, MarketplaceAdapter, MarketplaceCredentials
from listing_sync.integrations.http import request_token, send_request, with_auth_retry
from listing_sync.integrations.status_mapping import map_status

logger = logging.getLogger(__name__)

# Summary statuses ordered strongest first
SUMMARY_STATUS_PRIORITY = ["BUYABLE", "DISCOVERABLE"]


class AmazonAdapter(MarketplaceAdapter):
    name = MarketplaceType.AMAZON
    capabilities = frozenset({Capability.LISTING_STATUS})

    REGION_ENDPOINTS = {
        "NA": "https://sellingpartnerapi-na.amazon.com",
        "EU": "https://sellingpartnerapi-eu.amazon.com",
        "FE": "https://sellingpartnerapi-fe.amazon.com",
    }
    SANDBOX_REGION_ENDPOINTS = {
        "NA": "https://sandbox.sellingpartnerapi-na.amazon.com",
        "EU": "https://sandbox.sellingpartnerapi-eu.amazon.com",
        "FE": "https://sandbox.sellingpartnerapi-fe.amazon.com",
    }
    TOKEN_URL = "https://api.amazon.com/auth/o2/token"
    LISTINGS_API_VERSION = "2021-08-01"
    DEFAULT_MARKETPLACE_ID = "ATVPDKIKX0DER"  # US

    def __init__(self, credentials: MarketplaceCredentials, **kwargs):
        super().__init__(credentials, **kwargs)
        region = (credentials.region or "NA").upper()
        endpoints = self.SANDBOX_REGION_ENDPOINTS if credentials.sandbox else self.REGION_ENDPOINTS
        self.base_url = endpoints.get(region, endpoints["NA"])
        self.marketplace_id = credentials.marketplace_id or self.DEFAULT_MARKETPLACE_ID

    async def get_listing_status(self, remote_listing_id: str) -> ListingStatus:
        if not self.credentials.remote_account_id:
            raise UnsupportedOperation("Amazon account has no seller id; listing status cannot be queried")

        native_status = await with_auth_retry(self, lambda: self._fetch_native_status(remote_listing_id))
        status = map_status(self.name, native_status)
        logger.debug(f"Amazon SKU {remote_listing_id}: {native_status!r} -> {status.value}")
        return status

    async def _fetch_native_status(self, sku: str) -> str:
        seller_id = quote(self.credentials.remote_account_id, safe="")
        url = f"{self.base_url}/listings/{self.LISTINGS_API_VERSION}/items/{seller_id}/{quote(str(sku), safe='')}"

        response = await send_request(
            self.name.value,
            "GET",
            url,
            client=self.http_client,
            timeout=self.timeout,
            # SP-API reports an expired LWA token as 403 Unauthorized
            passthrough={403, 404},
            params={"marketplaceIds": self.marketplace_id, "includedData": "summaries"},
            headers={
                "x-amz-access-token": self.credentials.access_token or "",
                "Accept": "application/json",
            },
        )

        if response.status_code == 404:
            return "NOT_FOUND"
        if response.status_code == 403:
            raise AuthExpired("Amazon rejected the access token", marketplace=self.name.value, status_code=403)

        return self._native_status_from_summaries(response.json().get("summaries") or [])

    @staticmethod
    def _native_status_from_summaries(summaries: List[Dict[str, Any]]) -> str:
        if not summaries:
            return ""
        statuses = {str(s).upper() for s in (summaries[0].get("status") or [])}
        for candidate in SUMMARY_STATUS_PRIORITY:
            if candidate in statuses:
                return candidate
        return ""

    async def refresh_grant(self, credentials: MarketplaceCredentials) -> MarketplaceCredentials:
        if not credentials.refresh_token:
            raise AuthExpired("Amazon refresh token is required", marketplace=self.name.value)
        if not credentials.client_id or not credentials.client_secret:
            raise AuthExpired("Amazon client credentials are required", marketplace=self.name.value)

        token_data = await request_token(
            self.name.value,
            self.TOKEN_URL,
            client=self.http_client,
            timeout=self.timeout,
            data={
                "grant_type": "refresh_token",
                "refresh_token": credentials.refresh_token,
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
            },
        )
        expires_in = token_data.get("expires_in", 3600)
        logger.info("Successfully refreshed Amazon LWA access token")
        return credentials.model_copy(update={
            "access_token": token_data["access_token"],
            "refresh_token": token_data.get("refresh_token") or credentials.refresh_token,
            "token_expires_at": utcnow() + timedelta(seconds=expires_in),
        })
