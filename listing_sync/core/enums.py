"""
Shared enums and constants used across the application.
"""

from enum import Enum


class MarketplaceType(str, Enum):
    EBAY = "EBAY"
    AMAZON = "AMAZON"
    FACEBOOK = "FACEBOOK"

    @property
    def slug(self):
        return self.value.lower()


class ListingStatus(str, Enum):
    """Canonical listing status, only ever produced by a status mapper"""
    LISTING_PENDING = "listing_pending"
    LIVE = "live"
    PENDING = "pending"
    SOLD = "sold"
    ENDED = "ended"
    ERROR = "error"


class ItemStatus(str, Enum):
    """Inventory item lifecycle values"""
    DRAFT = "draft"
    ACTIVE = "active"
    SOLD = "sold"
    ARCHIVED = "archived"


class AccountStatus(str, Enum):
    """Marketplace account health, distinct from listing status"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class SyncOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


class SyncJobType(str, Enum):
    SYNC_LISTING = "sync-listing"
    SYNC_ALL = "sync-all"


class SyncJobStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# No automatic transition out of these
TERMINAL_LISTING_STATUSES = frozenset({ListingStatus.SOLD, ListingStatus.ENDED})

# Transitions into these trigger item reconciliation
SALE_RELEVANT_STATUSES = frozenset({ListingStatus.SOLD, ListingStatus.ENDED})

# Statuses picked up by a staleness pass
SELECTABLE_LISTING_STATUSES = frozenset({
    ListingStatus.LIVE,
    ListingStatus.PENDING,
    ListingStatus.ERROR,
})
