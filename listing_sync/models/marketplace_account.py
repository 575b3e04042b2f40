# listing_sync/models/marketplace_account.py
from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from listing_sync.database import Base
from listing_sync.core.enums import AccountStatus


class MarketplaceAccount(Base):
    """
    A seller account connected to one marketplace.

    Holds the account-level health flag and the credential state that adapters
    refresh. Token state lives here so that every sync touching the account
    sees the same, freshest token.
    """
    __tablename__ = "marketplace_accounts"

    id = Column(Integer, primary_key=True)
    org_id = Column(String(64), nullable=False, index=True)
    marketplace = Column(String(32), nullable=False, index=True)  # MarketplaceType value
    status = Column(String(20), nullable=False, default=AccountStatus.ACTIVE.value, index=True)

    # --- Credential state ---
    remote_account_id = Column(String(128), nullable=True)  # eBay username, Amazon seller id, FB catalog id
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    last_refreshed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    listings = relationship("MarketplaceListing", back_populates="account")

    def __repr__(self) -> str:
        return f"<MarketplaceAccount(id={self.id}, marketplace={self.marketplace}, org={self.org_id}, status={self.status})>"
