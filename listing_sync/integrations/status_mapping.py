# listing_sync/integrations/status_mapping.py
"""
Translation tables from marketplace-native listing states to the canonical
`ListingStatus` vocabulary.

Every write to `MarketplaceListing.status` goes through `map_status`. Native
codes are matched case-insensitively. A code missing from a table maps to
`ListingStatus.LISTING_PENDING` and is logged as a warning, so a marketplace
adding a new state cannot crash a sync.
"""

import logging
from typing import Dict, Mapping, Optional, Union

from listing_sync.core.enums import ListingStatus, MarketplaceType

logger = logging.getLogger(__name__)

UNKNOWN_STATUS_DEFAULT = ListingStatus.LISTING_PENDING

# eBay Trading API SellingStatus.ListingStatus, plus the synthetic codes the
# adapter derives from QuantitySold / error responses / notifications
EBAY_STATUS_MAP: Dict[str, ListingStatus] = {
    "active": ListingStatus.LIVE,
    "completed": ListingStatus.SOLD,
    "sold": ListingStatus.SOLD,
    "endedwithsales": ListingStatus.SOLD,
    "ended": ListingStatus.ENDED,
    "endedwithoutsales": ListingStatus.ENDED,
    "customcode": ListingStatus.PENDING,
    "notfound": ListingStatus.ERROR,
    "suspended": ListingStatus.ERROR,
}

# Amazon SP-API listing summary status
AMAZON_STATUS_MAP: Dict[str, ListingStatus] = {
    "buyable": ListingStatus.LIVE,
    "discoverable": ListingStatus.PENDING,   # Visible but not purchasable
    "": ListingStatus.LISTING_PENDING,       # Accepted, no summary status yet
    "not_found": ListingStatus.ERROR,
}

# Facebook catalog availability, or review_status:<value> while under review
FACEBOOK_STATUS_MAP: Dict[str, ListingStatus] = {
    "in stock": ListingStatus.LIVE,
    "available for order": ListingStatus.LIVE,
    "preorder": ListingStatus.PENDING,
    "out of stock": ListingStatus.ENDED,
    "discontinued": ListingStatus.ENDED,
    "review_status:pending": ListingStatus.LISTING_PENDING,
    "review_status:rejected": ListingStatus.ERROR,
}

STATUS_MAPS: Dict[MarketplaceType, Mapping[str, ListingStatus]] = {
    MarketplaceType.EBAY: EBAY_STATUS_MAP,
    MarketplaceType.AMAZON: AMAZON_STATUS_MAP,
    MarketplaceType.FACEBOOK: FACEBOOK_STATUS_MAP,
}


def _normalize(native_status: str) -> str:
    return str(native_status).strip().lower()


def map_status(
    marketplace: Union[MarketplaceType, str],
    native_status: Optional[str],
) -> ListingStatus:
    """Map a native status code to the canonical `ListingStatus`. Never raises."""
    try:
        marketplace = MarketplaceType(marketplace)
    except ValueError:
        logger.warning(f"No status table for marketplace {marketplace!r}, defaulting to {UNKNOWN_STATUS_DEFAULT.value}")
        return UNKNOWN_STATUS_DEFAULT

    if native_status is None:
        logger.warning(f"{marketplace.value}: missing native status, defaulting to {UNKNOWN_STATUS_DEFAULT.value}")
        return UNKNOWN_STATUS_DEFAULT

    table = STATUS_MAPS.get(marketplace, {})
    canonical = table.get(_normalize(native_status))
    if canonical is None:
        logger.warning(
            f"{marketplace.value}: unknown native status {native_status!r}, "
            f"defaulting to {UNKNOWN_STATUS_DEFAULT.value}"
        )
        return UNKNOWN_STATUS_DEFAULT

    return canonical
