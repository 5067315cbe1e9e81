"""Pydantic schemas for transaction sync endpoints.

Sync summaries are serialized with camelCase keys (``totalTransactions``,
``resetTime``) for the frontend.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for responses serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncRequest(BaseModel):
    """Body for single-account and batch sync requests.

    ``manual`` marks a user-triggered sync, which counts against the daily
    manual sync limit. Scheduled callers leave it False.
    """

    force: bool = False
    manual: bool = True
    account_ids: Optional[list[str]] = None


class AccountSyncResultResponse(CamelModel):
    """Outcome of syncing one account."""

    account_id: str
    account_name: str
    status: str
    downloaded: int = 0
    modified: int = 0
    removed: int = 0
    cursor_advanced: bool = False
    forced: bool = False
    error: Optional[str] = None
    error_category: Optional[str] = None
    attempts: int = 1


class SyncSummaryResponse(CamelModel):
    """Counts plus per-account results for a sync request."""

    synced: int
    skipped: int
    errors: int
    total_transactions: int
    cancelled: bool = False
    results: list[AccountSyncResultResponse]


class RateLimitResponse(CamelModel):
    """Manual sync limit status for the current user."""

    allowed: bool
    limit: int
    count: int
    remaining: int
    reset_time: Optional[datetime] = None


class SyncStatusResponse(CamelModel):
    """Freshness of one account's transactions."""

    account_id: str
    last_sync_time: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None
    has_cursor: bool
    hours_since_sync: Optional[float] = None
    needs_sync: bool
    needs_force_sync: bool
    activity_level: str
    eligible: bool
    ineligibility_reason: Optional[str] = None
