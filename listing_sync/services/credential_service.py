"""
Account credentials: builds adapters for accounts and owns token refresh.

Tokens are persisted on the MarketplaceAccount row, never in adapters, so
every sync touching an account sees the freshest token. They are stored
encrypted (core.encryption) and only ever decrypted into the in-memory
MarketplaceCredentials. Refresh is serialized per account; a task that waited
on the lock re-reads the row and reuses the token another task already
obtained.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import httpx
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from listing_sync.core.config import Settings, get_settings
from listing_sync.core.encryption import decrypt_token, encrypt_token, rotate_token
from listing_sync.core.enums import AccountStatus, MarketplaceType
from listing_sync.core.exceptions import AccountNotFoundError, AuthExpired, MarketplaceAPIError, RemoteUnavailable
from listing_sync.core.utils import KeyedLocks, ensure_aware, utcnow
from listing_sync.database import get_session_factory
from listing_sync.integrations.base import MarketplaceAdapter, MarketplaceCredentials, RefreshGrant
from listing_sync.integrations.registry import create_adapter
from listing_sync.models import MarketplaceAccount

logger = logging.getLogger(__name__)

# Refresh a little before the marketplace says the token dies
TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)


@dataclass
class TokenMonitorReport:
    checked: int = 0
    refreshed: List[int] = field(default_factory=list)
    expired: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    def summary(self) -> Dict[str, int]:
        return {
            "checked": self.checked,
            "refreshed": len(self.refreshed),
            "expired": len(self.expired),
            "failed": len(self.failed),
        }


class CredentialService:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.settings = settings or get_settings()
        self.http_client = http_client
        self.timeout = timeout if timeout is not None else self.settings.SYNC_ADAPTER_TIMEOUT_SECONDS
        self._refresh_locks = KeyedLocks()

    def store_tokens(
        self,
        account: MarketplaceAccount,
        access_token: Optional[str],
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> None:
        """Write plaintext tokens onto the row in encrypted form. The caller commits."""
        account.access_token = encrypt_token(access_token, self.settings)
        account.refresh_token = encrypt_token(refresh_token, self.settings)
        account.token_expires_at = token_expires_at

    def build_credentials(self, account: MarketplaceAccount) -> MarketplaceCredentials:
        """
        Raises:
            TokenEncryptionError: the stored tokens cannot be decrypted with the configured keys
        """
        marketplace = MarketplaceType(account.marketplace)
        credentials = MarketplaceCredentials(
            account_id=account.id,
            marketplace=marketplace,
            access_token=decrypt_token(account.access_token, self.settings),
            refresh_token=decrypt_token(account.refresh_token, self.settings),
            token_expires_at=ensure_aware(account.token_expires_at),
            remote_account_id=account.remote_account_id,
        )

        settings = self.settings
        if marketplace == MarketplaceType.EBAY:
            app_keys = {
                "client_id": settings.EBAY_CLIENT_ID,
                "client_secret": settings.EBAY_CLIENT_SECRET,
                "sandbox": settings.EBAY_SANDBOX_MODE,
                "site_id": settings.EBAY_SITE_ID,
                "api_version": settings.EBAY_COMPATIBILITY_LEVEL,
            }
        elif marketplace == MarketplaceType.AMAZON:
            app_keys = {
                "client_id": settings.AMAZON_CLIENT_ID,
                "client_secret": settings.AMAZON_CLIENT_SECRET,
                "marketplace_id": settings.AMAZON_MARKETPLACE_ID,
                "region": settings.AMAZON_REGION,
            }
        else:
            app_keys = {"api_version": settings.FACEBOOK_GRAPH_VERSION}

        return credentials.model_copy(update=app_keys)

    async def get_adapter(self, account_id: int) -> MarketplaceAdapter:
        """
        Build the adapter for an account with this service injected as its
        token refresher. Tokens that are about to expire are refreshed first.

        Raises:
            AccountNotFoundError: no such account
        """
        async with self.session_factory() as db:
            account = await db.get(MarketplaceAccount, account_id)
            if account is None:
                raise AccountNotFoundError(f"Marketplace account {account_id} not found")
            credentials = self.build_credentials(account)

        adapter = self._create_adapter(credentials)

        expires_at = credentials.token_expires_at
        if credentials.refresh_token and expires_at and expires_at - TOKEN_EXPIRY_BUFFER <= utcnow():
            logger.info(f"Token for account {account_id} expires at {expires_at}, refreshing before use")
            adapter.credentials = await self.refresh_credentials(adapter.credentials, adapter.refresh_grant)

        return adapter

    def _create_adapter(self, credentials: MarketplaceCredentials) -> MarketplaceAdapter:
        return create_adapter(
            credentials,
            token_refresher=self.refresh_credentials,
            http_client=self.http_client,
            timeout=self.timeout,
        )

    async def refresh_credentials(
        self,
        credentials: MarketplaceCredentials,
        grant: RefreshGrant,
    ) -> MarketplaceCredentials:
        """
        Token refresher handed to adapters.

        Holds the account's lock for the whole read-grant-persist sequence. If
        the persisted access token no longer matches the stale one the caller
        holds, another task has refreshed already and its token is returned
        without calling the marketplace.

        Raises:
            AuthExpired: the grant was rejected; the account is marked expired
            RemoteUnavailable: the grant timed out or the marketplace is down
        """
        account_id = credentials.account_id

        async with self._refresh_locks.hold(account_id):
            async with self.session_factory() as db:
                account = await db.get(MarketplaceAccount, account_id)
                if account is None:
                    raise AccountNotFoundError(f"Marketplace account {account_id} not found")

                stored_access_token = decrypt_token(account.access_token, self.settings)
                if stored_access_token and stored_access_token != credentials.access_token:
                    logger.info(f"Account {account_id} token already refreshed by another task, reusing it")
                    return credentials.model_copy(update={
                        "access_token": stored_access_token,
                        "refresh_token": decrypt_token(account.refresh_token, self.settings),
                        "token_expires_at": ensure_aware(account.token_expires_at),
                    })

                try:
                    refreshed = await asyncio.wait_for(grant(credentials), timeout=self.timeout)
                except AuthExpired as e:
                    logger.error(f"Refresh grant rejected for account {account_id}, marking expired: {str(e)}")
                    account.status = AccountStatus.EXPIRED.value
                    await db.commit()
                    raise
                except asyncio.TimeoutError:
                    raise RemoteUnavailable(
                        f"Token refresh for account {account_id} timed out after {self.timeout}s",
                        marketplace=account.marketplace,
                    )

                self.store_tokens(account, refreshed.access_token, refreshed.refresh_token, refreshed.token_expires_at)
                account.last_refreshed_at = utcnow()
                await db.commit()

                logger.info(f"Refreshed and stored new token for account {account_id}")
                return refreshed

    async def refresh_expiring_accounts(self, within: Optional[timedelta] = None) -> TokenMonitorReport:
        """
        Token expiration monitor pass over active accounts whose token expires
        within `within` (TOKEN_REFRESH_WINDOW_HOURS by default).

        Accounts with a refresh token are refreshed; a rejected grant marks
        them expired. Accounts without one are marked expired once the token
        is actually past its expiry, and only warned about before that.
        Transient failures leave the account active for the next pass.
        """
        if within is None:
            within = timedelta(hours=self.settings.TOKEN_REFRESH_WINDOW_HOURS)
        now = utcnow()
        report = TokenMonitorReport()

        async with self.session_factory() as db:
            account_ids = (await db.execute(
                select(MarketplaceAccount.id)
                .where(
                    MarketplaceAccount.status == AccountStatus.ACTIVE.value,
                    MarketplaceAccount.token_expires_at.is_not(None),
                    MarketplaceAccount.token_expires_at <= now + within,
                )
                .order_by(MarketplaceAccount.token_expires_at.asc())
            )).scalars().all()

        for account_id in account_ids:
            report.checked += 1
            try:
                await self._refresh_expiring_account(account_id, now, report)
            except AuthExpired:
                report.expired.append(account_id)
            except MarketplaceAPIError as e:
                logger.warning(f"Token refresh for account {account_id} failed, will retry next pass: {str(e)}")
                report.failed.append(account_id)
            except Exception as e:
                logger.error(f"Unexpected error refreshing account {account_id}: {str(e)}", exc_info=True)
                report.failed.append(account_id)

        logger.info(f"Token monitor pass: {report.summary()}")
        return report

    async def _refresh_expiring_account(self, account_id: int, now: datetime, report: TokenMonitorReport) -> None:
        async with self.session_factory() as db:
            account = await db.get(MarketplaceAccount, account_id)
            if account is None or account.status != AccountStatus.ACTIVE.value:
                return
            credentials = self.build_credentials(account)

            if not credentials.refresh_token:
                if credentials.token_expires_at <= now:
                    logger.warning(f"Account {account_id} token expired and cannot be refreshed, marking expired")
                    account.status = AccountStatus.EXPIRED.value
                    await db.commit()
                    report.expired.append(account_id)
                else:
                    logger.warning(
                        f"Account {account_id} token expires at {credentials.token_expires_at} "
                        f"and has no refresh token; the account must be reconnected"
                    )
                return

        adapter = self._create_adapter(credentials)
        await self.refresh_credentials(credentials, adapter.refresh_grant)
        report.refreshed.append(account_id)

    async def rotate_stored_tokens(self) -> int:
        """Re-encrypt every stored token under the newest key. Returns how many accounts were rewritten."""
        async with self.session_factory() as db:
            accounts = (await db.execute(
                select(MarketplaceAccount).where(
                    or_(MarketplaceAccount.access_token.is_not(None), MarketplaceAccount.refresh_token.is_not(None))
                )
            )).scalars().all()

            for account in accounts:
                account.access_token = rotate_token(account.access_token, self.settings)
                account.refresh_token = rotate_token(account.refresh_token, self.settings)
            await db.commit()

        logger.info(f"Re-encrypted tokens of {len(accounts)} accounts under the newest key")
        return len(accounts)
