# tests/unit/integrations/test_ebay_adapter.py

import httpx
import pytest

from listing_sync.core.enums import ListingStatus, MarketplaceType
from listing_sync.core.exceptions import AuthExpired, RemoteUnavailable
from listing_sync.integrations.base import Capability, MarketplaceCredentials
from listing_sync.integrations.platforms.ebay import EbayAdapter


def get_item_xml(listing_status=None, quantity_sold=None, errors=None):
    if errors:
        error_xml = "".join(f"<Errors><ErrorCode>{code}</ErrorCode></Errors>" for code in errors)
        return f"""<?xml version="1.0" encoding="UTF-8"?>
        <GetItemResponse xmlns="urn:ebay:apis:eBLBaseComponents">
            <Ack>Failure</Ack>{error_xml}
        </GetItemResponse>"""

    selling = f"<ListingStatus>{listing_status}</ListingStatus>"
    if quantity_sold is not None:
        selling += f"<QuantitySold>{quantity_sold}</QuantitySold>"
    return f"""<?xml version="1.0" encoding="UTF-8"?>
    <GetItemResponse xmlns="urn:ebay:apis:eBLBaseComponents">
        <Ack>Success</Ack>
        <Item><ItemID>123</ItemID><SellingStatus>{selling}</SellingStatus></Item>
    </GetItemResponse>"""


def make_adapter(handler, **credential_fields):
    fields = {
        "account_id": 1,
        "marketplace": MarketplaceType.EBAY,
        "access_token": "old-token",
        "refresh_token": "refresh-token",
        "client_id": "test-client-id",
        "client_secret": "test-client-secret",
    }
    fields.update(credential_fields)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EbayAdapter(MarketplaceCredentials(**fields), http_client=client)


"""
1. Listing status
"""

@pytest.mark.asyncio
@pytest.mark.parametrize("listing_status, quantity_sold, expected", [
    ("Active", None, ListingStatus.LIVE),
    ("Active", "0", ListingStatus.LIVE),
    ("Completed", None, ListingStatus.SOLD),
    ("Completed", "1", ListingStatus.SOLD),
    ("Completed", "0", ListingStatus.ENDED),
    ("Ended", "0", ListingStatus.ENDED),
    ("Ended", "2", ListingStatus.SOLD),
    ("CustomCode", None, ListingStatus.PENDING),
])
async def test_get_listing_status_maps_selling_status(listing_status, quantity_sold, expected):
    def handler(request):
        assert request.headers["X-EBAY-API-CALL-NAME"] == "GetItem"
        assert request.headers["X-EBAY-API-IAF-TOKEN"] == "old-token"
        assert b"<ItemID>123</ItemID>" in request.content
        return httpx.Response(200, text=get_item_xml(listing_status, quantity_sold))

    adapter = make_adapter(handler)
    assert await adapter.get_listing_status("123") == expected


@pytest.mark.asyncio
async def test_item_not_found_maps_to_error():
    adapter = make_adapter(lambda request: httpx.Response(200, text=get_item_xml(errors=["17"])))
    assert await adapter.get_listing_status("404404") == ListingStatus.ERROR


@pytest.mark.asyncio
async def test_unknown_failure_is_remote_unavailable():
    adapter = make_adapter(lambda request: httpx.Response(200, text=get_item_xml(errors=["10007"])))
    with pytest.raises(RemoteUnavailable):
        await adapter.get_listing_status("123")


@pytest.mark.asyncio
async def test_server_error_is_remote_unavailable():
    adapter = make_adapter(lambda request: httpx.Response(503, text="Service Unavailable"))
    with pytest.raises(RemoteUnavailable) as exc_info:
        await adapter.get_listing_status("123")
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_network_error_is_remote_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    adapter = make_adapter(handler)
    with pytest.raises(RemoteUnavailable):
        await adapter.get_listing_status("123")


"""
2. Refresh and retry
"""

@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_call_retried_once():
    calls = {"trading": 0, "token": 0}

    def handler(request):
        if request.url.path.endswith("/oauth2/token"):
            calls["token"] += 1
            assert b"grant_type=refresh_token" in request.content
            return httpx.Response(200, json={"access_token": "new-token", "expires_in": 7200})

        calls["trading"] += 1
        if request.headers["X-EBAY-API-IAF-TOKEN"] == "old-token":
            return httpx.Response(401, text="Unauthorized")
        return httpx.Response(200, text=get_item_xml("Active"))

    adapter = make_adapter(handler)
    assert await adapter.get_listing_status("123") == ListingStatus.LIVE
    assert calls == {"trading": 2, "token": 1}
    assert adapter.credentials.access_token == "new-token"
    assert adapter.credentials.refresh_token == "refresh-token"
    assert adapter.credentials.token_expires_at is not None


@pytest.mark.asyncio
async def test_trading_auth_error_code_triggers_refresh():
    def handler(request):
        if request.url.path.endswith("/oauth2/token"):
            return httpx.Response(200, json={"access_token": "new-token", "expires_in": 7200})
        if request.headers["X-EBAY-API-IAF-TOKEN"] == "old-token":
            return httpx.Response(200, text=get_item_xml(errors=["21917053"]))
        return httpx.Response(200, text=get_item_xml("Completed", "1"))

    adapter = make_adapter(handler)
    assert await adapter.get_listing_status("123") == ListingStatus.SOLD


@pytest.mark.asyncio
async def test_still_unauthorized_after_refresh_raises():
    def handler(request):
        if request.url.path.endswith("/oauth2/token"):
            return httpx.Response(200, json={"access_token": "new-token", "expires_in": 7200})
        return httpx.Response(401, text="Unauthorized")

    adapter = make_adapter(handler)
    with pytest.raises(AuthExpired):
        await adapter.get_listing_status("123")


@pytest.mark.asyncio
async def test_rejected_refresh_grant_raises_auth_expired():
    def handler(request):
        if request.url.path.endswith("/oauth2/token"):
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(401, text="Unauthorized")

    adapter = make_adapter(handler)
    with pytest.raises(AuthExpired):
        await adapter.get_listing_status("123")


@pytest.mark.asyncio
async def test_injected_refresher_receives_the_grant():
    seen = []

    async def refresher(credentials, grant):
        seen.append(credentials.access_token)
        return credentials.model_copy(update={"access_token": "from-refresher"})

    def handler(request):
        if request.headers["X-EBAY-API-IAF-TOKEN"] == "old-token":
            return httpx.Response(401)
        return httpx.Response(200, text=get_item_xml("Active"))

    adapter = make_adapter(handler)
    adapter.token_refresher = refresher
    assert await adapter.get_listing_status("123") == ListingStatus.LIVE
    assert seen == ["old-token"]


@pytest.mark.asyncio
async def test_refresh_grant_without_refresh_token():
    adapter = make_adapter(lambda request: httpx.Response(500), refresh_token=None)
    with pytest.raises(AuthExpired):
        await adapter.refresh_grant(adapter.credentials)


"""
3. Notifications
"""

def test_parse_json_notification():
    adapter = make_adapter(lambda request: httpx.Response(500))
    payload = {"metadata": {"topic": "ITEM_SOLD"}, "notification": {"data": {"itemId": "123"}}}

    event = adapter.parse_webhook(payload, {})

    assert event.remote_listing_id == "123"
    assert event.native_status == "Sold"
    assert event.event_type == "ITEM_SOLD"


def test_parse_soap_platform_notification():
    adapter = make_adapter(lambda request: httpx.Response(500))
    payload = {
        "soapenv:Envelope": {
            "soapenv:Body": {
                "GetItemResponse": {
                    "NotificationEventName": "ItemClosed",
                    "Item": {"ItemID": "555"},
                }
            }
        }
    }

    event = adapter.parse_webhook(payload, {})

    assert event.remote_listing_id == "555"
    assert event.native_status == "Ended"


def test_parse_notification_without_item_id():
    adapter = make_adapter(lambda request: httpx.Response(500))
    assert adapter.parse_webhook({"metadata": {"topic": "ITEM_SOLD"}}, {}) is None
    assert adapter.parse_webhook("not json", {}) is None


def test_capabilities():
    adapter = make_adapter(lambda request: httpx.Response(500))
    assert adapter.supports(Capability.LISTING_STATUS)
    assert adapter.supports(Capability.PARSE_WEBHOOK)
    assert not adapter.supports(Capability.CREATE_LISTING)


def test_sandbox_urls():
    adapter = make_adapter(lambda request: httpx.Response(500), sandbox=True)
    assert "sandbox" in adapter.trading_url
    assert "sandbox" in adapter.token_url
