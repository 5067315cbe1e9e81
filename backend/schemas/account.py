"""Pydantic schemas for account management endpoints."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class AccountUpdate(BaseModel):
    """Schema for updating an Account."""

    nickname: Optional[str] = None
    hidden: Optional[bool] = None
    invert_transactions: Optional[bool] = None


class AccountResponse(BaseModel):
    """Schema for Account API response."""

    id: str
    connection_id: str
    institution_id: Optional[str] = None
    remote_account_id: str
    name: str
    official_name: Optional[str] = None
    nickname: Optional[str] = None
    display_name: str
    type: Optional[str] = None
    subtype: Optional[str] = None
    mask: Optional[str] = None
    archived: bool
    hidden: bool
    invert_transactions: bool
    created_at: datetime
    updated_at: datetime

    # Sync tracking (per-account)
    last_sync_time: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None

    # Liabilities (credit and loan accounts)
    last_statement_balance: Optional[Decimal] = None
    minimum_payment_amount: Optional[Decimal] = None
    next_payment_due_date: Optional[date] = None
    last_payment_date: Optional[date] = None
    last_payment_amount: Optional[Decimal] = None
    next_monthly_payment: Optional[Decimal] = None
    origination_date: Optional[date] = None
    origination_principal_amount: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True)
