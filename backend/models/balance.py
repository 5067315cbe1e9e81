"""Balance model - point-in-time balance snapshot for an account."""

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Balance(Base):
    """An immutable balance snapshot. Rows are only ever inserted or reassigned."""

    __tablename__ = "account_balances"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    current = Column(Numeric(18, 2), nullable=True)
    available = Column(Numeric(18, 2), nullable=True)
    limit_amount = Column(Numeric(18, 2), nullable=True)
    iso_currency_code = Column(String(3), nullable=True)
    date = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    account = relationship("Account", back_populates="balances")
