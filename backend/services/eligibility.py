"""Sync eligibility rules for accounts and connections."""

from datetime import datetime, timedelta, timezone

from models import Account, InstitutionConnection
from models.utils import as_utc

ACTIVITY_HIGH = "high"
ACTIVITY_MEDIUM = "medium"
ACTIVITY_LOW = "low"


def connection_ineligibility_reason(connection: InstitutionConnection | None) -> str | None:
    """Why a connection cannot be synced, or ``None`` if it can."""
    if connection is None:
        return "account has no institution connection"
    if connection.is_manual:
        return "manual institution"
    if connection.status != "active":
        return f"connection is {connection.status}"
    if not connection.access_token:
        return "connection has no access token"
    if connection.requires_reauth:
        return "connection requires re-authentication"
    return None


def ineligibility_reason(account: Account) -> str | None:
    """Why an account cannot be synced, or ``None`` if it can."""
    if account.archived:
        return "account is archived"
    if account.hidden:
        return "account is hidden"
    return connection_ineligibility_reason(account.connection)


def is_account_eligible(account: Account) -> bool:
    return ineligibility_reason(account) is None


def activity_level(account: Account) -> str:
    """How often an account is expected to see new transactions."""
    account_type = (account.type or "").lower()
    subtype = (account.subtype or "").lower()
    if subtype == "savings":
        return ACTIVITY_MEDIUM
    if account_type in ("credit", "depository"):
        return ACTIVITY_HIGH
    return ACTIVITY_LOW


def time_since_sync(account: Account, now: datetime | None = None) -> timedelta | None:
    last = as_utc(account.last_sync_time)
    if last is None:
        return None
    return (now or datetime.now(timezone.utc)) - last


def needs_sync(account: Account, threshold: timedelta, now: datetime | None = None) -> bool:
    """True if the account has never synced or was last synced before ``threshold`` ago."""
    elapsed = time_since_sync(account, now)
    return elapsed is None or elapsed >= threshold


def needs_force_sync(
    account: Account, threshold: timedelta, now: datetime | None = None
) -> bool:
    """True if the cursor is missing or too old to trust a delta."""
    if not account.sync_cursor:
        return True
    elapsed = time_since_sync(account, now)
    return elapsed is None or elapsed >= threshold
