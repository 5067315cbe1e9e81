"""Provider protocol definitions for the account aggregation client.

This module defines the normalized data shapes returned by the remote
provider client and the interface the sync and reconciliation engines
depend on, so tests can substitute a scripted fake.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol

from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderDataError,
)


@dataclass
class RemoteBalance:
    """Balances as reported alongside an account."""

    current: Decimal | None = None
    available: Decimal | None = None
    limit: Decimal | None = None
    iso_currency_code: str | None = None


@dataclass
class RemoteAccount:
    """Normalized account data from the provider."""

    id: str  # Provider's remote account id
    name: str
    type: str | None = None
    subtype: str | None = None
    mask: str | None = None  # last 4 digits (if shared by the institution)
    official_name: str | None = None
    balances: RemoteBalance = field(default_factory=RemoteBalance)


@dataclass
class RemoteTransaction:
    """Normalized transaction data; ``amount`` uses the provider's native sign."""

    id: str  # Provider's remote transaction id
    account_id: str
    date: date
    name: str
    amount: Decimal
    pending: bool = False
    authorized_date: date | None = None
    merchant_name: str | None = None
    iso_currency_code: str | None = None
    category: str | None = None
    personal_finance_category: str | None = None
    payment_channel: str | None = None


@dataclass
class RemovedTransaction:
    """A transaction the provider no longer reports."""

    id: str
    account_id: str | None = None


@dataclass
class TransactionSyncPage:
    """One page of a cursor-based transaction delta."""

    added: list[RemoteTransaction] = field(default_factory=list)
    modified: list[RemoteTransaction] = field(default_factory=list)
    removed: list[RemovedTransaction] = field(default_factory=list)
    next_cursor: str = ""
    has_more: bool = False


@dataclass
class RemoteItem:
    """Metadata of one authorization grant."""

    item_id: str
    institution_id: str | None = None


@dataclass
class RemoteInstitution:
    institution_id: str
    name: str
    logo: str | None = None


@dataclass
class TokenExchange:
    access_token: str
    item_id: str


@dataclass
class RemoteLiability:
    """Liability details for one credit, mortgage or student loan account."""

    account_id: str
    kind: str  # "credit" | "mortgage" | "student"
    last_statement_balance: Decimal | None = None
    minimum_payment_amount: Decimal | None = None
    next_payment_due_date: date | None = None
    last_payment_date: date | None = None
    last_payment_amount: Decimal | None = None
    next_monthly_payment: Decimal | None = None
    origination_date: date | None = None
    origination_principal_amount: Decimal | None = None


class ErrorCategory(str, Enum):
    """Category of a provider sync error."""

    CONNECTION = "connection"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    DATA = "data"
    UNKNOWN = "unknown"


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map any exception raised during a sync to an :class:`ErrorCategory`.

    ``AUTH`` is connection-level and never retried; ``CONNECTION`` and
    ``RATE_LIMIT`` are transient and may be retried by the batch caller.
    """
    if isinstance(exc, ProviderAuthError):
        return ErrorCategory.AUTH
    if isinstance(exc, ProviderConnectionError):
        return ErrorCategory.CONNECTION
    if isinstance(exc, ProviderAPIError):
        if exc.status_code == 429 or exc.error_code == "RATE_LIMIT_EXCEEDED":
            return ErrorCategory.RATE_LIMIT
        if exc.retriable:
            return ErrorCategory.CONNECTION
        return ErrorCategory.UNKNOWN
    if isinstance(exc, ProviderDataError):
        return ErrorCategory.DATA
    return ErrorCategory.UNKNOWN


@dataclass
class CallContext:
    """Who a remote call is made on behalf of; recorded in the call ledger."""

    institution_id: str | None = None
    account_id: str | None = None
    user_id: str | None = None


class AccountProviderClient(Protocol):
    """Protocol for the remote account aggregation client.

    Every method raises a :class:`~integrations.exceptions.ProviderError`
    subclass on failure.
    """

    def is_configured(self) -> bool:
        ...

    def create_link_token(self, user_id: str, context: CallContext | None = None) -> str:
        ...

    def exchange_public_token(
        self, public_token: str, context: CallContext | None = None
    ) -> TokenExchange:
        ...

    def get_item(self, access_token: str, context: CallContext | None = None) -> RemoteItem:
        ...

    def get_institution(
        self, institution_id: str, context: CallContext | None = None
    ) -> RemoteInstitution:
        ...

    def get_accounts(
        self,
        access_token: str,
        context: CallContext | None = None,
        realtime_balances: bool = False,
    ) -> list[RemoteAccount]:
        """Fetch every account under one connection with its balances.

        ``realtime_balances`` asks the institution for live balances instead
        of the cached ones; slower and billed separately.
        """
        ...

    def sync_transactions(
        self,
        access_token: str,
        cursor: str | None,
        account_id: str | None = None,
        context: CallContext | None = None,
    ) -> TransactionSyncPage:
        """Fetch one page of the transaction delta after ``cursor``.

        Args:
            access_token: The connection's credential.
            cursor: Opaque cursor from the previous page, or ``None`` for
                the full history.
            account_id: Restrict the delta to one remote account.
            context: Ledger attribution.
        """
        ...

    def get_liabilities(
        self, access_token: str, context: CallContext | None = None
    ) -> list[RemoteLiability]:
        ...

    def remove_item(self, access_token: str, context: CallContext | None = None) -> None:
        ...
