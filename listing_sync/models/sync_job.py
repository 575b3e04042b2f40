from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
from sqlalchemy.sql import func

from listing_sync.database import Base
from listing_sync.core.enums import SyncJobStatus


class SyncJob(Base):
    """
    Queued sync work: `sync-listing` or `sync-all`.
    """

    __tablename__ = "sync_jobs"

    id = Column(Integer, primary_key=True)
    job_type = Column(String(32), nullable=False, index=True)
    status = Column(String(32), nullable=False, default=SyncJobStatus.QUEUED.value, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    available_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<SyncJob(id={self.id}, type={self.job_type}, status={self.status}, attempts={self.attempts})>"
