"""Transaction sync API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from api.helpers import get_current_user_id, get_or_404, sync_summary_dict
from database import get_db
from models import Account
from schemas import RateLimitResponse, SyncRequest, SyncStatusResponse, SyncSummaryResponse
from services.eligibility import ineligibility_reason
from services.exceptions import AccountNotEligibleError, SyncInProgressError
from services.rate_limiter import ManualSyncRateLimiter
from services.transaction_sync_service import BatchSyncResult, TransactionSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def get_sync_service() -> TransactionSyncService:
    """Dependency for injecting the sync service (overridable in tests)."""
    return TransactionSyncService()


def get_rate_limiter() -> ManualSyncRateLimiter:
    """Dependency for injecting the manual sync limiter (overridable in tests)."""
    return ManualSyncRateLimiter()


def _consume_manual_sync(db: Session, limiter: ManualSyncRateLimiter, user_id: str) -> None:
    """Charge one manual sync to the user, or raise 429 when the budget is spent."""
    status = limiter.check_and_consume(db, user_id)
    if not status.allowed:
        reset = status.reset_time.isoformat() if status.reset_time else None
        raise HTTPException(
            status_code=429,
            detail={
                "error": "rate_limited",
                "message": (
                    f"Manual sync limit of {status.limit} per day reached. "
                    "Scheduled syncs continue automatically."
                ),
                "limit": status.limit,
                "count": status.count,
                "remaining": status.remaining,
                "resetTime": reset,
            },
            headers={"Retry-After": str(status.retry_after_seconds)},
        )
    # The request counts even if the sync itself fails.
    db.commit()


def _reject_if_running(sync_service: TransactionSyncService) -> None:
    if sync_service.is_sync_in_progress():
        raise HTTPException(
            status_code=409,
            detail="Sync already in progress. Please wait for the current sync to complete.",
        )


def _run_batch(
    db: Session,
    sync_service: TransactionSyncService,
    **kwargs,
) -> dict:
    try:
        batch = sync_service.sync_accounts(db, **kwargs)
    except SyncInProgressError:
        raise HTTPException(
            status_code=409,
            detail="Sync already in progress. Please wait for the current sync to complete.",
        )
    except Exception:
        # Never expose str(e) for unexpected errors
        logger.error("Unexpected error during batch sync", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="An unexpected error occurred during sync.",
        )
    return sync_summary_dict(batch)


@router.post("", response_model=SyncSummaryResponse)
def sync_all(
    body: Optional[SyncRequest] = Body(default=None),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    sync_service: TransactionSyncService = Depends(get_sync_service),
    limiter: ManualSyncRateLimiter = Depends(get_rate_limiter),
):
    """Sync every eligible account for the current user.

    Always returns 200 with per-account results when the batch ran; individual
    account failures are reported in ``results`` rather than failing the request.

    Raises:
        HTTPException:
            - 409 Conflict: A batch sync is already in progress
            - 429 Too Many Requests: Manual sync limit reached
            - 500 Internal Server Error: Unexpected sync error
    """
    body = body or SyncRequest()
    _reject_if_running(sync_service)
    if body.manual:
        _consume_manual_sync(db, limiter, user_id)
    return _run_batch(
        db,
        sync_service,
        account_ids=body.account_ids,
        force_full_resync=body.force,
        skip_recent=not body.manual and not body.force,
        user_id=user_id,
    )


@router.post("/force-resync", response_model=SyncSummaryResponse)
def force_resync_all(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    sync_service: TransactionSyncService = Depends(get_sync_service),
    limiter: ManualSyncRateLimiter = Depends(get_rate_limiter),
):
    """Discard every cursor and download full history for all eligible accounts."""
    _reject_if_running(sync_service)
    _consume_manual_sync(db, limiter, user_id)
    return _run_batch(db, sync_service, force_full_resync=True, user_id=user_id)


@router.get("/limit", response_model=RateLimitResponse)
def get_sync_limit(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    limiter: ManualSyncRateLimiter = Depends(get_rate_limiter),
):
    """Report the current user's manual sync budget."""
    status = limiter.get_status(db, user_id)
    return {
        "allowed": status.allowed,
        "limit": status.limit,
        "count": status.count,
        "remaining": status.remaining,
        "reset_time": status.reset_time,
    }


@router.post("/accounts/{account_id}", response_model=SyncSummaryResponse)
def sync_one_account(
    account_id: str,
    body: Optional[SyncRequest] = Body(default=None),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    sync_service: TransactionSyncService = Depends(get_sync_service),
    limiter: ManualSyncRateLimiter = Depends(get_rate_limiter),
):
    """Sync a single account.

    Raises:
        HTTPException:
            - 400 Bad Request: Account is not eligible for sync
            - 404 Not Found: Unknown account
            - 429 Too Many Requests: Manual sync limit reached
            - 500 Internal Server Error: Unexpected sync error
    """
    body = body or SyncRequest()
    account = get_or_404(db, Account, account_id, "Account not found")
    reason = ineligibility_reason(account)
    if reason:
        raise HTTPException(status_code=400, detail=f"Account is not eligible for sync: {reason}")
    if body.manual:
        _consume_manual_sync(db, limiter, user_id)

    try:
        result = sync_service.sync_account(db, account, force_full_resync=body.force)
    except AccountNotEligibleError as e:
        raise HTTPException(status_code=400, detail=f"Account is not eligible for sync: {e.reason}")
    except Exception:
        logger.error("Unexpected error syncing account %s", account_id, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="An unexpected error occurred during sync.",
        )
    return sync_summary_dict(BatchSyncResult(results=[result]))


@router.get("/accounts/{account_id}/status", response_model=SyncStatusResponse)
def get_sync_status(
    account_id: str,
    db: Session = Depends(get_db),
    sync_service: TransactionSyncService = Depends(get_sync_service),
):
    """Report how fresh an account's transactions are."""
    account = get_or_404(db, Account, account_id, "Account not found")
    return sync_service.sync_status(account)
