"""
eBay adapter: listing status through the Trading API (GetItem) and OAuth
refresh through the identity endpoint.

The Trading API answers in XML and reports most errors with HTTP 200 and
`Ack=Failure`, so error codes are inspected after parsing.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

import httpx
import xmltodict

from listing_sync.core.enums import ListingStatus, MarketplaceType
from listing_sync.core.exceptions import AuthExpired, RemoteUnavailable
from listing_sync.core.utils import utcnow
from listing_sync.integrations.base import (
    Capability,
    MarketplaceAdapter,
    MarketplaceCredentials,
    MarketplaceWebhookEvent,
)
from listing_sync.integrations.http import request_token, send_request, with_auth_retry
from listing_sync.integrations.status_mapping import map_status

logger = logging.getLogger(__name__)

# Trading API error codes
ITEM_NOT_FOUND_CODES = {"17", "21916333"}
AUTH_TOKEN_ERROR_CODES = {"931", "932", "16110", "21917053"}

# Notification topics that carry a status
NOTIFICATION_STATUS = {
    "ITEM_SOLD": "Sold",
    "ITEMSOLD": "Sold",
    "ITEM_ENDED": "Ended",
    "ITEMCLOSED": "Ended",
    "ITEMUNSOLD": "EndedWithoutSales",
    "ITEM_SUSPENDED": "Suspended",
    "ITEMSUSPENDED": "Suspended",
}


class EbayAdapter(MarketplaceAdapter):
    name = MarketplaceType.EBAY
    capabilities = frozenset({Capability.LISTING_STATUS, Capability.PARSE_WEBHOOK})

    TRADING_URL = "https://api.ebay.com/ws/api.dll"
    SANDBOX_TRADING_URL = "https://api.sandbox.ebay.com/ws/api.dll"
    TOKEN_URL = "https://api.ebay.com/identity/v1/oauth2/token"
    SANDBOX_TOKEN_URL = "https://api.sandbox.ebay.com/identity/v1/oauth2/token"
    COMPATIBILITY_LEVEL = "1155"

    def __init__(self, credentials: MarketplaceCredentials, **kwargs):
        super().__init__(credentials, **kwargs)
        sandbox = credentials.sandbox
        self.trading_url = self.SANDBOX_TRADING_URL if sandbox else self.TRADING_URL
        self.token_url = self.SANDBOX_TOKEN_URL if sandbox else self.TOKEN_URL
        self.site_id = credentials.site_id or "0"
        self.compatibility_level = credentials.api_version or self.COMPATIBILITY_LEVEL
        self.scopes = ["https://api.ebay.com/oauth/api_scope/sell.inventory"]

    async def get_listing_status(self, remote_listing_id: str) -> ListingStatus:
        native_status = await with_auth_retry(self, lambda: self._fetch_native_status(remote_listing_id))
        status = map_status(self.name, native_status)
        logger.debug(f"eBay item {remote_listing_id}: {native_status} -> {status.value}")
        return status

    async def _fetch_native_status(self, remote_listing_id: str) -> str:
        xml_request = f"""<?xml version="1.0" encoding="utf-8"?>
        <GetItemRequest xmlns="urn:ebay:apis:eBLBaseComponents">
            <ItemID>{escape(str(remote_listing_id))}</ItemID>
            <DetailLevel>ReturnSummary</DetailLevel>
            <OutputSelector>Item.ItemID</OutputSelector>
            <OutputSelector>Item.ListingStatus</OutputSelector>
            <OutputSelector>Item.SellingStatus</OutputSelector>
        </GetItemRequest>"""

        response_dict = await self._execute_call("GetItem", xml_request)
        body = response_dict.get("GetItemResponse") or {}

        if body.get("Ack") == "Failure":
            codes = {str(error.get("ErrorCode")) for error in _as_list(body.get("Errors"))}
            if codes & ITEM_NOT_FOUND_CODES:
                return "NotFound"
            if codes & AUTH_TOKEN_ERROR_CODES:
                raise AuthExpired("eBay auth token rejected", marketplace=self.name.value)
            raise RemoteUnavailable(f"eBay GetItem failed with error codes {sorted(codes)}", marketplace=self.name.value)

        return self._native_status_from_item(body.get("Item") or {})

    @staticmethod
    def _native_status_from_item(item: Dict[str, Any]) -> Optional[str]:
        selling_status = item.get("SellingStatus") or {}
        listing_status = selling_status.get("ListingStatus") or item.get("ListingStatus")
        quantity_sold = selling_status.get("QuantitySold")

        # Completed / Ended say nothing about whether anything sold
        if listing_status in ("Completed", "Ended") and quantity_sold is not None:
            try:
                return "EndedWithSales" if int(quantity_sold) > 0 else "EndedWithoutSales"
            except (TypeError, ValueError):
                pass
        return listing_status

    async def _execute_call(self, call_name: str, xml_request: str) -> Dict[str, Any]:
        headers = {
            "X-EBAY-API-CALL-NAME": call_name,
            "X-EBAY-API-SITEID": self.site_id,
            "X-EBAY-API-COMPATIBILITY-LEVEL": self.compatibility_level,
            "X-EBAY-API-IAF-TOKEN": self.credentials.access_token or "",
            "Content-Type": "text/xml",
        }
        response = await send_request(
            self.name.value,
            "POST",
            self.trading_url,
            client=self.http_client,
            timeout=self.timeout,
            headers=headers,
            content=xml_request,
        )
        try:
            return xmltodict.parse(response.text)
        except Exception as e:
            raise RemoteUnavailable(f"Unparseable eBay {call_name} response: {str(e)}", marketplace=self.name.value)

    async def refresh_grant(self, credentials: MarketplaceCredentials) -> MarketplaceCredentials:
        if not credentials.refresh_token:
            raise AuthExpired("No eBay refresh token available", marketplace=self.name.value)
        if not credentials.client_id or not credentials.client_secret:
            raise AuthExpired("Missing eBay client credentials", marketplace=self.name.value)

        token_data = await request_token(
            self.name.value,
            self.token_url,
            client=self.http_client,
            timeout=self.timeout,
            data={
                "grant_type": "refresh_token",
                "refresh_token": credentials.refresh_token,
                "scope": " ".join(self.scopes),
            },
            auth=httpx.BasicAuth(credentials.client_id, credentials.client_secret),
        )
        expires_in = token_data.get("expires_in", 7200)
        logger.info("Successfully refreshed eBay access token")
        return credentials.model_copy(update={
            "access_token": token_data["access_token"],
            "refresh_token": token_data.get("refresh_token") or credentials.refresh_token,
            "token_expires_at": utcnow() + timedelta(seconds=expires_in),
        })

    def parse_webhook(self, payload: Any, headers: Dict[str, str]) -> Optional[MarketplaceWebhookEvent]:
        if not isinstance(payload, dict):
            return None
        payload = _unwrap_soap(payload)

        metadata = payload.get("metadata") or {}
        notification = payload.get("notification") or {}
        data = notification.get("data") or {}

        event_type = payload.get("NotificationEventName") or metadata.get("topic") or "unknown"
        listing_id = payload.get("ItemID") or payload.get("itemId") or data.get("itemId")
        if not listing_id:
            logger.warning(f"eBay notification {event_type} has no item id")
            return None

        return MarketplaceWebhookEvent(
            event_type=event_type,
            remote_listing_id=str(listing_id),
            native_status=NOTIFICATION_STATUS.get(str(event_type).upper()),
            payload=payload,
        )


def _unwrap_soap(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Platform Notifications arrive as a SOAP envelope around a Trading API
    response (GetItemResponse etc.). Flatten that to the fields parse_webhook reads.
    """
    envelope = payload.get("soapenv:Envelope") or payload.get("Envelope")
    if not isinstance(envelope, dict):
        return payload

    body = envelope.get("soapenv:Body") or envelope.get("Body") or {}
    for response in body.values():
        if isinstance(response, dict):
            item = response.get("Item") or {}
            flattened = dict(response)
            flattened.setdefault("ItemID", item.get("ItemID"))
            return flattened
    return payload


def _as_list(value) -> List[Dict[str, Any]]:
    # xmltodict returns a dict for a single element and a list for repeats
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
