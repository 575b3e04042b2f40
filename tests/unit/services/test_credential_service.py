# tests/unit/services/test_credential_service.py
import asyncio
from datetime import timedelta

import httpx
import pytest
from cryptography.fernet import Fernet

from listing_sync.core.encryption import decrypt_token
from listing_sync.core.enums import AccountStatus, MarketplaceType
from listing_sync.core.exceptions import AccountNotFoundError, AuthExpired, RemoteUnavailable, TokenEncryptionError
from listing_sync.core.utils import ensure_aware, utcnow
from listing_sync.integrations.base import MarketplaceCredentials
from listing_sync.integrations.platforms import AmazonAdapter, EbayAdapter, FacebookAdapter
from listing_sync.models import MarketplaceAccount
from listing_sync.services.credential_service import CredentialService


def stale_credentials(account, token="old-token"):
    return MarketplaceCredentials(
        account_id=account.id,
        marketplace=MarketplaceType(account.marketplace),
        access_token=token,
        refresh_token="refresh-token",
    )


@pytest.mark.asyncio
async def test_build_credentials_adds_app_keys(factory, session_factory, settings):
    ebay = await factory.account(MarketplaceType.EBAY, access_token="tok", remote_account_id="seller1")
    amazon = await factory.account(MarketplaceType.AMAZON)
    service = CredentialService(session_factory=session_factory, settings=settings)

    ebay_creds = service.build_credentials(ebay)
    amazon_creds = service.build_credentials(amazon)

    assert ebay_creds.account_id == ebay.id
    assert ebay_creds.access_token == "tok"
    assert ebay_creds.remote_account_id == "seller1"
    assert ebay_creds.client_id == "test-client-id"
    assert ebay_creds.api_version == settings.EBAY_COMPATIBILITY_LEVEL
    assert amazon_creds.client_id == "amzn-client-id"
    assert amazon_creds.marketplace_id == settings.AMAZON_MARKETPLACE_ID


@pytest.mark.asyncio
@pytest.mark.parametrize("marketplace, adapter_cls", [
    (MarketplaceType.EBAY, EbayAdapter),
    (MarketplaceType.AMAZON, AmazonAdapter),
    (MarketplaceType.FACEBOOK, FacebookAdapter),
])
async def test_get_adapter_picks_marketplace_adapter(factory, session_factory, settings, marketplace, adapter_cls):
    account = await factory.account(marketplace, access_token="tok")
    service = CredentialService(session_factory=session_factory, settings=settings)

    adapter = await service.get_adapter(account.id)

    assert isinstance(adapter, adapter_cls)
    assert adapter.credentials.account_id == account.id
    assert adapter.token_refresher == service.refresh_credentials


@pytest.mark.asyncio
async def test_get_adapter_unknown_account(session_factory, settings):
    service = CredentialService(session_factory=session_factory, settings=settings)
    with pytest.raises(AccountNotFoundError):
        await service.get_adapter(999)


@pytest.mark.asyncio
async def test_get_adapter_refreshes_token_close_to_expiry(factory, session_factory, settings):
    account = await factory.account(
        MarketplaceType.EBAY,
        access_token="old-token",
        refresh_token="refresh-token",
        token_expires_at=utcnow() + timedelta(minutes=2),
    )

    def handler(request):
        assert request.url.path.endswith("/oauth2/token")
        return httpx.Response(200, json={"access_token": "fresh-token", "expires_in": 7200})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    service = CredentialService(session_factory=session_factory, settings=settings, http_client=client)

    adapter = await service.get_adapter(account.id)

    assert adapter.credentials.access_token == "fresh-token"
    stored = await factory.get(MarketplaceAccount, account.id)
    assert stored.access_token != "fresh-token"
    assert decrypt_token(stored.access_token, settings) == "fresh-token"
    assert stored.last_refreshed_at is not None


"""
Refresh serialization
"""

@pytest.mark.asyncio
async def test_refresh_persists_new_token(factory, session_factory, settings):
    account = await factory.account(access_token="old-token", refresh_token="refresh-token")
    service = CredentialService(session_factory=session_factory, settings=settings)
    expires_at = utcnow() + timedelta(hours=2)

    async def grant(credentials):
        return credentials.model_copy(update={
            "access_token": "new-token",
            "refresh_token": "new-refresh",
            "token_expires_at": expires_at,
        })

    refreshed = await service.refresh_credentials(stale_credentials(account), grant)

    assert refreshed.access_token == "new-token"
    stored = await factory.get(MarketplaceAccount, account.id)
    assert decrypt_token(stored.access_token, settings) == "new-token"
    assert decrypt_token(stored.refresh_token, settings) == "new-refresh"
    assert ensure_aware(stored.token_expires_at) == expires_at
    assert stored.last_refreshed_at is not None


@pytest.mark.asyncio
async def test_concurrent_refreshes_call_grant_once(factory, session_factory, settings):
    account = await factory.account(access_token="old-token", refresh_token="refresh-token")
    service = CredentialService(session_factory=session_factory, settings=settings)
    grant_calls = []

    async def grant(credentials):
        grant_calls.append(credentials.access_token)
        await asyncio.sleep(0.05)
        return credentials.model_copy(update={"access_token": "new-token"})

    results = await asyncio.gather(
        service.refresh_credentials(stale_credentials(account), grant),
        service.refresh_credentials(stale_credentials(account), grant),
        service.refresh_credentials(stale_credentials(account), grant),
    )

    assert grant_calls == ["old-token"]
    assert [r.access_token for r in results] == ["new-token"] * 3


@pytest.mark.asyncio
async def test_rejected_grant_marks_account_expired(factory, session_factory, settings):
    account = await factory.account(access_token="old-token", refresh_token="revoked")
    service = CredentialService(session_factory=session_factory, settings=settings)

    async def grant(credentials):
        raise AuthExpired("invalid_grant", marketplace="EBAY")

    with pytest.raises(AuthExpired):
        await service.refresh_credentials(stale_credentials(account), grant)

    stored = await factory.get(MarketplaceAccount, account.id)
    assert stored.status == AccountStatus.EXPIRED.value
    assert decrypt_token(stored.access_token, settings) == "old-token"


@pytest.mark.asyncio
async def test_slow_grant_is_remote_unavailable(factory, session_factory, settings):
    account = await factory.account(access_token="old-token", refresh_token="refresh-token")
    service = CredentialService(session_factory=session_factory, settings=settings, timeout=0.05)

    async def grant(credentials):
        await asyncio.sleep(1)
        return credentials

    with pytest.raises(RemoteUnavailable):
        await service.refresh_credentials(stale_credentials(account), grant)

    stored = await factory.get(MarketplaceAccount, account.id)
    assert stored.status == AccountStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_refresh_lock_map_is_empty_afterwards(factory, session_factory, settings):
    account = await factory.account(access_token="old-token", refresh_token="refresh-token")
    service = CredentialService(session_factory=session_factory, settings=settings)

    async def grant(credentials):
        await asyncio.sleep(0.01)
        return credentials.model_copy(update={"access_token": "new-token"})

    await asyncio.gather(*(service.refresh_credentials(stale_credentials(account), grant) for _ in range(3)))

    assert len(service._refresh_locks) == 0


"""
Tokens at rest
"""

@pytest.mark.asyncio
async def test_tokens_are_stored_encrypted(factory, session_factory, settings):
    account = await factory.account(access_token="old-token", refresh_token="refresh-token")
    service = CredentialService(session_factory=session_factory, settings=settings)

    stored = await factory.get(MarketplaceAccount, account.id)
    assert "old-token" not in stored.access_token
    assert "refresh-token" not in stored.refresh_token

    credentials = service.build_credentials(stored)
    assert credentials.access_token == "old-token"
    assert credentials.refresh_token == "refresh-token"


@pytest.mark.asyncio
async def test_tokens_under_unknown_key_are_rejected(factory, session_factory, settings):
    account = await factory.account(access_token="old-token")
    other_key = settings.model_copy(update={"TOKEN_ENCRYPTION_KEYS": Fernet.generate_key().decode()})
    service = CredentialService(session_factory=session_factory, settings=other_key)

    with pytest.raises(TokenEncryptionError):
        await service.get_adapter(account.id)


@pytest.mark.asyncio
async def test_rotate_stored_tokens_moves_to_newest_key(factory, session_factory, settings):
    account = await factory.account(access_token="old-token", refresh_token="refresh-token")
    await factory.account(MarketplaceType.AMAZON)
    new_key = Fernet.generate_key().decode()
    rotated = settings.model_copy(update={"TOKEN_ENCRYPTION_KEYS": f"{new_key},{settings.TOKEN_ENCRYPTION_KEYS}"})

    rewritten = await CredentialService(session_factory=session_factory, settings=rotated).rotate_stored_tokens()

    assert rewritten == 1
    stored = await factory.get(MarketplaceAccount, account.id)
    new_key_only = settings.model_copy(update={"TOKEN_ENCRYPTION_KEYS": new_key})
    assert decrypt_token(stored.access_token, new_key_only) == "old-token"
    assert decrypt_token(stored.refresh_token, new_key_only) == "refresh-token"


"""
Token expiration monitor
"""

def token_endpoint(status_code=200):
    def handler(request):
        if status_code != 200:
            return httpx.Response(status_code, json={"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "fresh-token", "expires_in": 7200})
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_monitor_refreshes_and_flags_expiring_accounts(factory, session_factory, settings):
    now = utcnow()
    expiring = await factory.account(
        access_token="old-token", refresh_token="refresh-token", token_expires_at=now + timedelta(minutes=30)
    )
    dead = await factory.account(access_token="old-token", token_expires_at=now - timedelta(minutes=10))
    warned = await factory.account(access_token="old-token", token_expires_at=now + timedelta(minutes=20))
    healthy = await factory.account(
        access_token="old-token", refresh_token="refresh-token", token_expires_at=now + timedelta(hours=5)
    )
    await factory.account(
        status=AccountStatus.EXPIRED, access_token="old-token", token_expires_at=now - timedelta(days=1)
    )
    service = CredentialService(session_factory=session_factory, settings=settings, http_client=token_endpoint())

    report = await service.refresh_expiring_accounts(timedelta(hours=1))

    assert report.checked == 3
    assert report.refreshed == [expiring.id]
    assert report.expired == [dead.id]
    assert report.failed == []

    stored = await factory.get(MarketplaceAccount, expiring.id)
    assert decrypt_token(stored.access_token, settings) == "fresh-token"
    assert ensure_aware(stored.token_expires_at) > now + timedelta(hours=1)
    assert (await factory.get(MarketplaceAccount, dead.id)).status == AccountStatus.EXPIRED.value
    assert (await factory.get(MarketplaceAccount, warned.id)).status == AccountStatus.ACTIVE.value
    assert decrypt_token((await factory.get(MarketplaceAccount, healthy.id)).access_token, settings) == "old-token"


@pytest.mark.asyncio
async def test_monitor_marks_rejected_refresh_expired(factory, session_factory, settings):
    account = await factory.account(
        access_token="old-token", refresh_token="revoked", token_expires_at=utcnow() + timedelta(minutes=10)
    )
    service = CredentialService(session_factory=session_factory, settings=settings, http_client=token_endpoint(400))

    report = await service.refresh_expiring_accounts(timedelta(hours=1))

    assert report.expired == [account.id]
    assert (await factory.get(MarketplaceAccount, account.id)).status == AccountStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_monitor_keeps_account_active_on_transient_failure(factory, session_factory, settings):
    account = await factory.account(
        access_token="old-token", refresh_token="refresh-token", token_expires_at=utcnow() + timedelta(minutes=10)
    )
    service = CredentialService(session_factory=session_factory, settings=settings, http_client=token_endpoint(503))

    report = await service.refresh_expiring_accounts(timedelta(hours=1))

    assert report.failed == [account.id]
    assert report.summary() == {"checked": 1, "refreshed": 0, "expired": 0, "failed": 1}
    assert (await factory.get(MarketplaceAccount, account.id)).status == AccountStatus.ACTIVE.value
