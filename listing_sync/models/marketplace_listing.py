# listing_sync/models/marketplace_listing.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from listing_sync.database import Base
from listing_sync.core.enums import ListingStatus


class MarketplaceListing(Base):
    """
    One published copy of an inventory item on one marketplace account.

    `status` only ever holds a canonical ListingStatus value produced by a
    status mapper. Rows are never deleted by the sync engine; a listing that
    stops existing remotely ends up `ended` or `error`.
    """
    __tablename__ = "marketplace_listings"

    id = Column(Integer, primary_key=True)
    meta_listing_id = Column(Integer, ForeignKey("meta_listings.id"), nullable=False, index=True)
    marketplace_account_id = Column(Integer, ForeignKey("marketplace_accounts.id"), nullable=False, index=True)

    remote_listing_id = Column(String(128), nullable=True, index=True)  # Unset until first publish
    status = Column(String(20), nullable=False, default=ListingStatus.LISTING_PENDING.value, index=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True, index=True)
    listing_url = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    meta_listing = relationship("MetaListing", back_populates="listings")
    account = relationship("MarketplaceAccount", back_populates="listings")

    __table_args__ = (
        UniqueConstraint('marketplace_account_id', 'remote_listing_id', name='uq_marketplace_listing_account_remote_id'),
    )

    def __repr__(self) -> str:
        return (f"<MarketplaceListing(id={self.id}, account={self.marketplace_account_id}, "
                f"remote_id={self.remote_listing_id}, status={self.status})>")
