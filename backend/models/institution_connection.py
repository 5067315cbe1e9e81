"""InstitutionConnection model - one per remote authorization grant."""

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow

MANUAL_PROVIDER = "manual"

STATUS_ACTIVE = "active"
STATUS_DISCONNECTED = "disconnected"


class InstitutionConnection(Base):
    """A linked financial institution (a Plaid Item).

    Each successful token exchange creates one connection holding the
    access token used for every remote call on its accounts. A user who
    re-links the same institution ends up with several connections sharing
    an ``institution_id``; reconciliation moves accounts onto the newest.
    """

    __tablename__ = "institution_connections"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)
    item_id = Column(String, unique=True, index=True, nullable=False)
    access_token = Column(String, nullable=True)
    institution_id = Column(String, nullable=True, index=True)
    institution_name = Column(String, nullable=True)
    institution_logo = Column(String, nullable=True)
    provider = Column(String, nullable=False, default="plaid")  # "plaid" | "manual"
    status = Column(String, nullable=False, default=STATUS_ACTIVE)  # "active" | "disconnected"
    requires_reauth = Column(Boolean, nullable=False, default=False)
    last_error_code = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    accounts = relationship(
        "Account",
        back_populates="connection",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_manual(self) -> bool:
        """Manual institutions have no remote credential to call with."""
        return self.provider == MANUAL_PROVIDER or self.access_token == MANUAL_PROVIDER

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE
