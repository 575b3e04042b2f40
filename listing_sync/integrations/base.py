"""
The capability interface every marketplace adapter implements.

Adapters share this interface and nothing else: the engine selects them
through `integrations.registry`, and any behaviour two adapters happen to have
in common lives in plain helper functions (`integrations.http`).
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional

import httpx
from pydantic import BaseModel, Field

from listing_sync.core.enums import ListingStatus, MarketplaceType
from listing_sync.core.exceptions import UnsupportedOperation
from listing_sync.core.utils import utcnow


class Capability(str, Enum):
    LISTING_STATUS = "listing_status"
    SEARCH_COMPS = "search_comps"
    CREATE_LISTING = "create_listing"
    UPDATE_LISTING = "update_listing"
    PARSE_WEBHOOK = "parse_webhook"


class MarketplaceCredentials(BaseModel):
    """Credential state handed to an adapter. Persisted by the credential service, not the adapter."""
    account_id: Optional[int] = None
    marketplace: MarketplaceType
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    remote_account_id: Optional[str] = None

    # App-level keys from settings
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    sandbox: bool = False
    site_id: Optional[str] = None
    marketplace_id: Optional[str] = None
    region: Optional[str] = None
    api_version: Optional[str] = None


class MarketplaceWebhookEvent(BaseModel):
    event_type: str
    remote_listing_id: str
    native_status: Optional[str] = None  # None: the event carries no status information
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


# Performs the marketplace's OAuth refresh grant for the given (stale) credentials
RefreshGrant = Callable[[MarketplaceCredentials], Awaitable[MarketplaceCredentials]]

# Injected by the credential service; decides whether to call the grant and persists the result
TokenRefresher = Callable[[MarketplaceCredentials, RefreshGrant], Awaitable[MarketplaceCredentials]]


async def direct_token_refresher(credentials: MarketplaceCredentials, grant: RefreshGrant) -> MarketplaceCredentials:
    """Refresher used when nothing is injected: run the grant, persist nothing."""
    return await grant(credentials)


class MarketplaceAdapter(ABC):
    name: MarketplaceType
    capabilities: FrozenSet[Capability] = frozenset()

    def __init__(
        self,
        credentials: MarketplaceCredentials,
        token_refresher: Optional[TokenRefresher] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 20.0,
    ):
        self.credentials = credentials
        self.token_refresher = token_refresher or direct_token_refresher
        self.http_client = http_client
        self.timeout = timeout

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @abstractmethod
    async def get_listing_status(self, remote_listing_id: str) -> ListingStatus:
        """Query the marketplace and return the canonical status of one listing"""
        pass

    @abstractmethod
    async def refresh_grant(self, credentials: MarketplaceCredentials) -> MarketplaceCredentials:
        """Exchange the refresh token for a new access token"""
        pass

    # The publish/research pipeline uses these; the sync engine never does.

    async def search_comps(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise UnsupportedOperation(f"{self.name.value} adapter does not support search_comps")

    async def create_listing(self, listing: Dict[str, Any]) -> Dict[str, Any]:
        raise UnsupportedOperation(f"{self.name.value} adapter does not support create_listing")

    async def update_listing(self, remote_listing_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        raise UnsupportedOperation(f"{self.name.value} adapter does not support update_listing")

    def parse_webhook(self, payload: Any, headers: Dict[str, str]) -> Optional[MarketplaceWebhookEvent]:
        raise UnsupportedOperation(f"{self.name.value} adapter does not support parse_webhook")
