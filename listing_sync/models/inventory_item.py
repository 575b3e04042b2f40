# listing_sync/models/inventory_item.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from listing_sync.database import Base
from listing_sync.core.enums import ItemStatus


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True)
    org_id = Column(String(64), nullable=False, index=True)
    title = Column(String, nullable=True)
    status = Column(String(20), nullable=False, default=ItemStatus.ACTIVE.value, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    meta_listing = relationship("MetaListing", back_populates="item", uselist=False)

    def __repr__(self) -> str:
        return f"<InventoryItem(id={self.id}, status={self.status})>"


class MetaListing(Base):
    """Groups one inventory item with its per-marketplace listings."""
    __tablename__ = "meta_listings"

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False, unique=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    item = relationship("InventoryItem", back_populates="meta_listing")
    listings = relationship("MarketplaceListing", back_populates="meta_listing")
