"""DownloadLog model - one row per transaction sync invocation per account."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class DownloadLog(Base):
    """Records the outcome and cursor transition of a single account sync.

    Consecutive rows with no progress are how stalled accounts are detected.
    """

    __tablename__ = "transaction_download_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_date = Column(Date, nullable=True)  # earliest transaction date seen
    end_date = Column(Date, nullable=True)  # latest transaction date seen
    num_transactions = Column(Integer, nullable=False, default=0)  # added
    num_modified = Column(Integer, nullable=False, default=0)
    num_removed = Column(Integer, nullable=False, default=0)
    cursor_before = Column(Text, nullable=True)
    cursor_after = Column(Text, nullable=True)
    forced = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False)  # "success" | "failed"
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    # Relationships
    account = relationship("Account", back_populates="download_logs")

    @property
    def made_progress(self) -> bool:
        """True if the sync changed data or moved the cursor."""
        if self.status != "success":
            return False
        changed = (self.num_transactions or 0) + (self.num_modified or 0) + (self.num_removed or 0)
        return changed > 0 or self.cursor_before != self.cursor_after
