"""Accounts API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.helpers import get_current_user_id, get_or_404
from database import get_db
from models import Account
from schemas import AccountResponse, AccountUpdate
from services.account_service import AccountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


@router.get("", response_model=list[AccountResponse])
def list_accounts(
    include_archived: bool = False,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """List the current user's accounts. Archived accounts only on request."""
    return AccountService.list_accounts(db, user_id, include_archived=include_archived)


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(account_id: str, db: Session = Depends(get_db)):
    """Get a specific account."""
    return get_or_404(db, Account, account_id, "Account not found")


@router.patch("/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: str,
    body: AccountUpdate,
    db: Session = Depends(get_db),
):
    """Update nickname, visibility or transaction sign inversion.

    Toggling ``invert_transactions`` negates every stored amount for the
    account.
    """
    account = AccountService.update_account(
        db,
        account_id,
        nickname=body.nickname,
        hidden=body.hidden,
        invert_transactions=body.invert_transactions,
    )
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.post("/{account_id}/archive", response_model=AccountResponse)
def archive_account(account_id: str, db: Session = Depends(get_db)):
    """Archive an account. Its history is kept and it stops syncing."""
    account = AccountService.archive_account(db, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.post("/{account_id}/restore", response_model=AccountResponse)
def restore_account(account_id: str, db: Session = Depends(get_db)):
    """Restore an archived account.

    Raises:
        HTTPException:
            - 404 Not Found: Unknown account
            - 409 Conflict: Another active account holds the same remote id
    """
    try:
        account = AccountService.restore_account(db, account_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account
