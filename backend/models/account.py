"""Account model - represents a single linked bank, card or loan account."""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow

# Account types whose provider-native sign is inverted before storage.
INVERTED_ACCOUNT_TYPES = frozenset({"credit", "loan"})


def default_invert_transactions(account_type: str | None) -> bool:
    """Credit and loan accounts store spending as negative amounts."""
    return (account_type or "").lower() in INVERTED_ACCOUNT_TYPES


class Account(Base):
    """An account reported by the aggregation provider.

    ``remote_account_id`` is unique among non-archived accounts only:
    archived duplicates and orphans keep their old identifier for audit.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        Index(
            "uix_accounts_remote_id_active",
            "remote_account_id",
            unique=True,
            sqlite_where=text("archived = 0"),
            postgresql_where=text("archived = false"),
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)
    connection_id = Column(
        String(36),
        ForeignKey("institution_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    remote_account_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    official_name = Column(String, nullable=True)
    nickname = Column(String, nullable=True)
    type = Column(String, nullable=True)  # "depository" | "credit" | "loan" | ...
    subtype = Column(String, nullable=True)  # "checking" | "savings" | "credit card" | ...
    mask = Column(String, nullable=True)  # last 4 digits
    archived = Column(Boolean, nullable=False, default=False)
    hidden = Column(Boolean, nullable=False, default=False)
    invert_transactions = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Sync tracking (per-account)
    sync_cursor = Column(Text, nullable=True)  # opaque, None = never synced
    last_sync_time = Column(DateTime, nullable=True)
    last_sync_status = Column(String, nullable=True)  # "success" | "failed"
    last_sync_error = Column(String, nullable=True)

    # Liabilities (credit cards, mortgages, student loans)
    last_statement_balance = Column(Numeric(18, 2), nullable=True)
    minimum_payment_amount = Column(Numeric(18, 2), nullable=True)
    next_payment_due_date = Column(Date, nullable=True)
    last_payment_date = Column(Date, nullable=True)
    last_payment_amount = Column(Numeric(18, 2), nullable=True)
    next_monthly_payment = Column(Numeric(18, 2), nullable=True)
    origination_date = Column(Date, nullable=True)
    origination_principal_amount = Column(Numeric(18, 2), nullable=True)

    # Relationships
    connection = relationship("InstitutionConnection", back_populates="accounts")
    balances = relationship(
        "Balance",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    transactions = relationship(
        "Transaction",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    download_logs = relationship(
        "DownloadLog",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def display_name(self) -> str:
        return self.nickname or self.name

    @property
    def institution_id(self) -> str | None:
        return self.connection.institution_id if self.connection else None
