"""ApiCallLog model - audit row for every remote provider call."""

from sqlalchemy import Column, DateTime, Index, Integer, String

from database import Base
from models.utils import generate_uuid, utcnow


class ApiCallLog(Base):
    """A single remote call: endpoint, outcome and timing.

    Rows are written whether the call succeeded or not and are never
    updated. ``response_status`` is ``None`` when no HTTP response arrived.
    """

    __tablename__ = "plaid_api_call_logs"
    __table_args__ = (
        Index("ix_api_call_logs_institution_timestamp", "institution_id", "timestamp"),
        Index("ix_api_call_logs_endpoint_timestamp", "endpoint", "timestamp"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
    endpoint = Column(String, nullable=False)
    response_status = Column(Integer, nullable=True)
    institution_id = Column(String, nullable=True)
    account_id = Column(String, nullable=True)
    user_id = Column(String, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    error_code = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    app_instance_id = Column(String, nullable=True)

    @property
    def succeeded(self) -> bool:
        return self.response_status is not None and 200 <= self.response_status < 300
