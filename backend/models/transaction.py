"""Transaction model - a single posted or pending transaction on an account."""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Transaction(Base):
    """A transaction downloaded from the provider.

    ``amount`` is stored already sign-normalized for the owning account
    (see ``Account.invert_transactions``).
    """

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "remote_transaction_id", name="uix_account_remote_transaction"
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    remote_transaction_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)
    authorized_date = Column(Date, nullable=True)
    name = Column(String, nullable=False)
    merchant_name = Column(String, nullable=True)
    amount = Column(Numeric(18, 2), nullable=False)
    iso_currency_code = Column(String(3), nullable=True)
    pending = Column(Boolean, nullable=False, default=False)
    category = Column(String, nullable=True)
    personal_finance_category = Column(String, nullable=True)
    payment_channel = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    account = relationship("Account", back_populates="transactions")
