# listing_sync/models/sync_event.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from listing_sync.database import Base


class SyncEvent(Base):
    """
    Represents a single status change detected or applied during a sync.
    This table serves as a permanent audit log for all sync activities.
    """
    __tablename__ = "sync_events"

    id = Column(Integer, primary_key=True, index=True)

    # Groups all events from a single staleness pass. Null for single syncs and webhooks.
    sync_run_id = Column(String(36), index=True, nullable=True)

    # --- Source of the Event ---
    marketplace = Column(String(32), nullable=True, index=True)
    source = Column(String(20), nullable=False, default="poll")  # poll, webhook

    # --- Links to Local Data ---
    marketplace_listing_id = Column(Integer, ForeignKey("marketplace_listings.id"), nullable=True, index=True)
    item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=True, index=True)

    # --- Change Details ---
    change_type = Column(String(32), nullable=False, index=True)  # listing_status, item_status
    change_data = Column(JSON, nullable=False)  # e.g. {"old": "live", "new": "sold"}

    detected_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return (f"<SyncEvent(id={self.id}, run_id={self.sync_run_id}, marketplace='{self.marketplace}', "
                f"listing={self.marketplace_listing_id}, item={self.item_id}, change='{self.change_type}')>")
