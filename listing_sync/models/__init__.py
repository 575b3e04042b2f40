from .marketplace_account import MarketplaceAccount
from .inventory_item import InventoryItem, MetaListing
from .marketplace_listing import MarketplaceListing
from .sync_event import SyncEvent
from .sync_job import SyncJob

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'MarketplaceAccount',
    'InventoryItem',
    'MetaListing',
    'MarketplaceListing',
    'SyncEvent',
    'SyncJob',
]
