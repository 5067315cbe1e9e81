"""Pydantic schemas for API request/response validation."""

from schemas.account import AccountResponse, AccountUpdate
from schemas.plaid import (
    ConnectionResponse,
    DisconnectResponse,
    DuplicateGroupResponse,
    ExchangeTokenRequest,
    LinkResponse,
    LinkTokenResponse,
    MergeRequest,
    MergeResponse,
    ReconcileResponse,
    RefreshResponse,
    UsageEntry,
)
from schemas.sync import (
    AccountSyncResultResponse,
    RateLimitResponse,
    SyncRequest,
    SyncStatusResponse,
    SyncSummaryResponse,
)

__all__ = [
    "AccountResponse",
    "AccountSyncResultResponse",
    "AccountUpdate",
    "ConnectionResponse",
    "DisconnectResponse",
    "DuplicateGroupResponse",
    "ExchangeTokenRequest",
    "LinkResponse",
    "LinkTokenResponse",
    "MergeRequest",
    "MergeResponse",
    "RateLimitResponse",
    "ReconcileResponse",
    "RefreshResponse",
    "SyncRequest",
    "SyncStatusResponse",
    "SyncSummaryResponse",
    "UsageEntry",
]
