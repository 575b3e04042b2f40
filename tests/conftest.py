# tests/conftest.py
from typing import Any, Dict, List

import pytest
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from listing_sync import models  # noqa: F401
from listing_sync.core.config import Settings, clear_settings_cache
from listing_sync.core.encryption import encrypt_token
from listing_sync.core.enums import AccountStatus, ItemStatus, ListingStatus, MarketplaceType
from listing_sync.database import Base
from listing_sync.models import InventoryItem, MarketplaceAccount, MarketplaceListing, MetaListing


@pytest.fixture(autouse=True)
def fresh_settings_cache():
    """get_settings() is cached per process; start every test from the environment"""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings(tmp_path):
    """Provide test settings backed by a throwaway SQLite file"""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        SYNC_STALE_AFTER_MINUTES=60,
        SYNC_MAX_CONCURRENT=1,
        SYNC_ADAPTER_TIMEOUT_SECONDS=5.0,
        SYNC_BATCH_DEADLINE_SECONDS=None,
        SYNC_BATCH_LIMIT=None,
        SYNC_JOB_MAX_ATTEMPTS=3,
        SYNC_JOB_RETRY_BASE_SECONDS=30,
        EBAY_CLIENT_ID="test-client-id",
        EBAY_CLIENT_SECRET="test-client-secret",
        AMAZON_CLIENT_ID="amzn-client-id",
        AMAZON_CLIENT_SECRET="amzn-client-secret",
        EBAY_WEBHOOK_SECRET="ebay-webhook-secret",
        EBAY_VERIFICATION_TOKEN="ebay-verification-token",
        EBAY_WEBHOOK_ENDPOINT="https://sync.example.com/api/webhooks/ebay",
        FACEBOOK_APP_SECRET="facebook-app-secret",
        FACEBOOK_VERIFY_TOKEN="facebook-verify-token",
        TOKEN_ENCRYPTION_KEYS=Fernet.generate_key().decode(),
        TOKEN_MONITOR_ENABLED=False,
    )


@pytest.fixture
async def test_engine(settings):
    """Create the schema on a fresh database for each test function."""
    engine = create_async_engine(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session


class DataFactory:
    """Builds committed accounts, items and listings."""

    def __init__(self, session_factory, settings):
        self.session_factory = session_factory
        self.settings = settings

    async def account(
        self,
        marketplace: MarketplaceType = MarketplaceType.EBAY,
        status: AccountStatus = AccountStatus.ACTIVE,
        org_id: str = "org-1",
        **fields: Any,
    ) -> MarketplaceAccount:
        # Tokens are given in plaintext and stored the way the credential service stores them
        for token_field in ("access_token", "refresh_token"):
            if token_field in fields:
                fields[token_field] = encrypt_token(fields[token_field], self.settings)

        async with self.session_factory() as db:
            account = MarketplaceAccount(
                org_id=org_id,
                marketplace=marketplace.value,
                status=status.value,
                **fields,
            )
            db.add(account)
            await db.commit()
            return account

    async def item(
        self,
        listings: List[Dict[str, Any]],
        status: ItemStatus = ItemStatus.ACTIVE,
        org_id: str = "org-1",
        with_meta_listing: bool = True,
    ):
        """
        `listings` entries: {"account": MarketplaceAccount, "remote_id": str|None,
        "status": ListingStatus, "last_synced_at": datetime|None}
        """
        async with self.session_factory() as db:
            item = InventoryItem(org_id=org_id, title="Test Guitar", status=status.value)
            db.add(item)
            await db.flush()

            created: List[MarketplaceListing] = []
            if with_meta_listing:
                meta = MetaListing(item_id=item.id)
                db.add(meta)
                await db.flush()

                for entry in listings:
                    listing = MarketplaceListing(
                        meta_listing_id=meta.id,
                        marketplace_account_id=entry["account"].id,
                        remote_listing_id=entry.get("remote_id"),
                        status=ListingStatus(entry.get("status", ListingStatus.LIVE)).value,
                        last_synced_at=entry.get("last_synced_at"),
                    )
                    db.add(listing)
                    created.append(listing)

            await db.commit()
            return item, created

    async def get(self, model, pk: int):
        """Re-read a row through a fresh session"""
        async with self.session_factory() as db:
            return await db.get(model, pk)


@pytest.fixture
def factory(session_factory, settings):
    return DataFactory(session_factory, settings)

