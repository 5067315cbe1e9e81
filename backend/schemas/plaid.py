"""Pydantic schemas for the Plaid link, connection and reconciliation endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.sync import CamelModel


class LinkTokenResponse(BaseModel):
    link_token: str


class ExchangeTokenRequest(BaseModel):
    public_token: str


class ConnectionResponse(BaseModel):
    """Schema for an InstitutionConnection. The access token is never exposed."""

    id: str
    item_id: str
    institution_id: Optional[str] = None
    institution_name: Optional[str] = None
    institution_logo: Optional[str] = None
    provider: str
    status: str
    requires_reauth: bool = False
    last_error_code: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConflictDetail(CamelModel):
    account_id: str
    account_name: str
    current_remote_account_id: str
    fresh_remote_account_id: str
    conflicting_account_id: str


class ReconcileResponse(CamelModel):
    """Counts of what reconciliation did for one institution."""

    updated: int
    conflicts: int
    orphaned: int
    created: int = 0
    unchanged: int = 0
    conflict_details: list[ConflictDetail] = []


class MergeResponse(CamelModel):
    survivor_id: Optional[str] = None
    archived_ids: list[str] = []
    transactions_moved: int = 0
    balances_moved: int = 0
    transactions_dropped: int = 0


class LinkResponse(CamelModel):
    """Result of exchanging a public token and linking an institution."""

    connection: ConnectionResponse
    accounts_created: int = 0
    reconcile: Optional[ReconcileResponse] = None
    merges: list[MergeResponse] = []


class DisconnectOutcome(CamelModel):
    connection_id: str
    item_id: str
    status: str
    error: Optional[str] = None


class DisconnectResponse(CamelModel):
    institution_id: str
    connections: list[DisconnectOutcome]


class RefreshResponse(CamelModel):
    connection_id: str
    balances_added: int = 0
    liabilities_updated: int = 0
    errors: list[str] = []


class DuplicateGroupResponse(CamelModel):
    institution_id: str
    key: str
    account_ids: list[str]
    mask: Optional[str] = None
    should_merge: bool


class MergeRequest(BaseModel):
    """Merge one detected group by key, or every mask-bearing group when omitted.

    ``allow_unmasked`` is required to merge a group whose members have no mask.
    """

    key: Optional[str] = None
    allow_unmasked: bool = False


class UsageEntry(CamelModel):
    endpoint: str
    total: int
    succeeded: int
    failed: int
    avg_duration_ms: Optional[float] = None
