"""ManualSyncRequest model - one row per accepted user-triggered sync."""

from sqlalchemy import Column, DateTime, Index, String

from database import Base
from models.utils import generate_uuid, utcnow


class ManualSyncRequest(Base):
    """Backs the per-user sliding window of the manual sync rate limiter."""

    __tablename__ = "manual_sync_requests"
    __table_args__ = (
        Index("ix_manual_sync_requests_user_requested", "user_id", "requested_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False)
    requested_at = Column(DateTime, nullable=False, default=utcnow)
