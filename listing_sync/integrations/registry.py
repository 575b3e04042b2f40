"""
Marketplace type -> adapter class lookup.

Adapters are picked from this table, never from an if/elif chain, so a new
marketplace is one `register_adapter` call.
"""

import logging
from typing import Dict, Optional, Type, Union

import httpx

from listing_sync.core.enums import MarketplaceType
from listing_sync.core.exceptions import UnsupportedOperation
from listing_sync.integrations.base import MarketplaceAdapter, MarketplaceCredentials, TokenRefresher
from listing_sync.integrations.platforms import AmazonAdapter, EbayAdapter, FacebookAdapter

logger = logging.getLogger(__name__)

_ADAPTERS: Dict[MarketplaceType, Type[MarketplaceAdapter]] = {}


def register_adapter(marketplace: MarketplaceType, adapter_cls: Type[MarketplaceAdapter]) -> None:
    _ADAPTERS[MarketplaceType(marketplace)] = adapter_cls


def get_adapter_class(marketplace: Union[MarketplaceType, str]) -> Type[MarketplaceAdapter]:
    try:
        return _ADAPTERS[MarketplaceType(marketplace)]
    except (KeyError, ValueError):
        raise UnsupportedOperation(f"No adapter registered for marketplace {marketplace!r}")


def create_adapter(
    credentials: MarketplaceCredentials,
    token_refresher: Optional[TokenRefresher] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = 20.0,
) -> MarketplaceAdapter:
    adapter_cls = get_adapter_class(credentials.marketplace)
    return adapter_cls(
        credentials,
        token_refresher=token_refresher,
        http_client=http_client,
        timeout=timeout,
    )


def registered_marketplaces():
    return sorted(_ADAPTERS, key=lambda m: m.value)


register_adapter(MarketplaceType.EBAY, EbayAdapter)
register_adapter(MarketplaceType.AMAZON, AmazonAdapter)
register_adapter(MarketplaceType.FACEBOOK, FacebookAdapter)
