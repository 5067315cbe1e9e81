"""Shared API helpers for route handlers.

Common query patterns and response builders used across multiple route files.
"""

from typing import TypeVar

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from config import settings
from database import Base
from services.transaction_sync_service import BatchSyncResult

T = TypeVar("T", bound=Base)


def get_or_404(db: Session, model: type[T], entity_id: str, detail: str = "Not found") -> T:
    """Fetch a single entity by primary key or raise 404.

    Args:
        db: Database session.
        model: SQLAlchemy model class.
        entity_id: Primary key value.
        detail: Error message for the 404 response.

    Returns:
        The entity instance.

    Raises:
        HTTPException: 404 if the entity doesn't exist.
    """
    entity = db.query(model).filter(model.id == entity_id).first()
    if not entity:
        raise HTTPException(status_code=404, detail=detail)
    return entity


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Resolve the acting user from the ``X-User-Id`` header.

    Falls back to the configured default user for single-user deployments.
    """
    return (x_user_id or "").strip() or settings.DEFAULT_USER_ID


def sync_summary_dict(batch: BatchSyncResult) -> dict:
    """Build a SyncSummaryResponse-compatible dict from a BatchSyncResult.

    Args:
        batch: The batch (or single-account) sync outcome.

    Returns:
        Dict matching the SyncSummaryResponse schema.
    """
    return {
        "synced": batch.synced,
        "skipped": batch.skipped,
        "errors": batch.errors,
        "total_transactions": batch.total_transactions,
        "cancelled": batch.cancelled,
        "results": [
            {
                "account_id": r.account_id,
                "account_name": r.account_name,
                "status": r.status,
                "downloaded": r.downloaded,
                "modified": r.modified,
                "removed": r.removed,
                "cursor_advanced": r.cursor_advanced,
                "forced": r.forced,
                "error": r.error,
                "error_category": r.error_category.value if r.error_category else None,
                "attempts": r.attempts,
            }
            for r in batch.results
        ],
    }
