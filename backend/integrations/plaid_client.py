"""Plaid API client.

This module implements the AccountProviderClient protocol via the
plaid-python SDK: token exchange, item and institution metadata, accounts
with balances, cursor-based transaction deltas, liabilities and item
removal.

Every remote call goes through :meth:`PlaidClient._call`, which applies
the request timeout, maps SDK and transport failures onto the typed
exceptions in :mod:`integrations.exceptions`, and records the call in the
call ledger whether it succeeded or not.
"""

import json
import logging
import time
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

import urllib3
from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.exceptions import ApiTypeError, ApiValueError
from plaid.model.accounts_balance_get_request import AccountsBalanceGetRequest
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.institutions_get_by_id_request import InstitutionsGetByIdRequest
from plaid.model.institutions_get_by_id_request_options import InstitutionsGetByIdRequestOptions
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.liabilities_get_request import LiabilitiesGetRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from plaid.model.transactions_sync_request_options import TransactionsSyncRequestOptions

from config import settings
from integrations.exceptions import (
    CREDENTIAL_ERROR_CODES,
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderDataError,
    ProviderError,
)
from integrations.provider_protocol import (
    CallContext,
    RemoteAccount,
    RemoteBalance,
    RemoteInstitution,
    RemoteItem,
    RemoteLiability,
    RemovedTransaction,
    RemoteTransaction,
    TokenExchange,
    TransactionSyncPage,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Plaid"

# Map PLAID_ENVIRONMENT setting to SDK host URLs.
# Plaid's Development environment is deprecated; only sandbox and production
# are supported.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}

# Transport failures raised by urllib3 underneath the SDK.
_TRANSPORT_ERRORS = (
    urllib3.exceptions.TimeoutError,
    urllib3.exceptions.MaxRetryError,
    urllib3.exceptions.ProtocolError,
    ConnectionError,
    TimeoutError,
)


def _is_timeout(exc: BaseException) -> bool:
    """True for read/connect timeouts, including ones wrapped in MaxRetryError."""
    if isinstance(exc, (urllib3.exceptions.TimeoutError, TimeoutError)):
        return True
    reason = getattr(exc, "reason", None)
    return isinstance(reason, (urllib3.exceptions.TimeoutError, TimeoutError))


def _enum_value(value: Any) -> str | None:
    """Return the plain string behind an SDK enum (``AccountType`` etc.)."""
    if value is None:
        return None
    return str(getattr(value, "value", value))


class PlaidClient:
    """Wrapper around the Plaid API.

    Implements the AccountProviderClient protocol. Access tokens are passed
    in per call; the client holds no per-connection state.
    """

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
        ledger=None,
        request_timeout: float | None = None,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = environment or settings.PLAID_ENVIRONMENT
        self._timeout = request_timeout or settings.PLAID_REQUEST_TIMEOUT_SECONDS
        self._page_size = settings.PLAID_PAGE_SIZE
        self._ledger = ledger

        # Lazily created on first use
        self._api: PlaidApi | None = None

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is None:
            env_key = self._environment.lower()
            host = _ENVIRONMENT_MAP.get(env_key)
            if host is None:
                logger.warning(
                    "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox. "
                    "Valid values: sandbox, production",
                    self._environment,
                )
                host = Environment.Sandbox
            logger.info(
                "Plaid API client: environment=%s, host=%s, client_id=<configured>",
                env_key,
                host,
            )
            configuration = Configuration(
                host=host,
                api_key={
                    "clientId": self._client_id,
                    "secret": self._secret,
                },
            )
            api_client = ApiClient(configuration)
            self._api = PlaidApi(api_client)
        return self._api

    @property
    def provider_name(self) -> str:
        """Return the provider name for database storage."""
        return PROVIDER_NAME

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    # ------------------------------------------------------------------
    # Call wrapper
    # ------------------------------------------------------------------

    def _call(
        self,
        endpoint: str,
        method: Callable[..., Any],
        request: Any,
        context: CallContext | None = None,
    ) -> Any:
        """Invoke one SDK method with timeout, error mapping and ledger entry.

        Args:
            endpoint: Plaid endpoint path, recorded in the ledger.
            method: Bound ``PlaidApi`` method.
            request: The SDK request model.
            context: Institution/account/user attribution for the ledger.

        Returns:
            The raw SDK response.

        Raises:
            ProviderAuthError: Credential-invalid responses.
            ProviderConnectionError: Timeouts and transport failures.
            ProviderAPIError: Any other error response.
            ProviderDataError: The SDK rejected the request or response shape.
        """
        start = time.monotonic()
        status: int | None = None
        error_code: str | None = None
        error_message: str | None = None
        try:
            response = method(request, _request_timeout=self._timeout)
            status = 200
            return response
        except ApiException as exc:
            status = exc.status
            error = self._map_plaid_error(exc)
            error_code, error_message = error.error_code, str(error)
            raise error from exc
        except _TRANSPORT_ERRORS as exc:
            # A timed-out account fails for this round; the next scheduled
            # pass picks it up again.
            timed_out = _is_timeout(exc)
            error = ProviderConnectionError(
                f"Plaid {endpoint} {'timed out' if timed_out else 'failed'}: {exc}",
                PROVIDER_NAME,
                retriable=not timed_out,
                error_code="TIMEOUT" if timed_out else None,
            )
            error_message = str(error)
            raise error from exc
        except (ApiTypeError, ApiValueError) as exc:
            error = ProviderDataError(
                f"Plaid {endpoint} returned malformed data: {exc}", PROVIDER_NAME
            )
            error_message = str(error)
            raise error from exc
        except Exception as exc:
            error_message = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            duration_ms = int((time.monotonic() - start) * 1000)
            if self._ledger is not None:
                self._ledger.record(
                    endpoint=endpoint,
                    response_status=status,
                    duration_ms=duration_ms,
                    context=context,
                    error_code=error_code,
                    error_message=error_message,
                )

    # ------------------------------------------------------------------
    # Link Token & Token Exchange
    # ------------------------------------------------------------------

    def create_link_token(self, user_id: str, context: CallContext | None = None) -> str:
        """Create a Plaid Link token for the browser-based auth flow.

        Returns:
            The link_token string to be passed to Plaid Link.
        """
        api = self._get_api()
        request = LinkTokenCreateRequest(
            user=LinkTokenCreateRequestUser(client_user_id=user_id),
            client_name="Ledger Sync",
            products=[Products("transactions")],
            additional_consented_products=[Products("liabilities")],
            country_codes=[CountryCode("US")],
            language="en",
        )
        context = context or CallContext(user_id=user_id)
        response = self._call("/link/token/create", api.link_token_create, request, context)
        return response["link_token"]

    def exchange_public_token(
        self, public_token: str, context: CallContext | None = None
    ) -> TokenExchange:
        """Exchange a Plaid Link public_token for a permanent access_token."""
        api = self._get_api()
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        response = self._call(
            "/item/public_token/exchange", api.item_public_token_exchange, request, context
        )
        return TokenExchange(
            access_token=response["access_token"],
            item_id=response["item_id"],
        )

    def remove_item(self, access_token: str, context: CallContext | None = None) -> None:
        """Revoke an access token by calling Plaid's /item/remove endpoint."""
        api = self._get_api()
        self._call(
            "/item/remove", api.item_remove, ItemRemoveRequest(access_token=access_token), context
        )

    # ------------------------------------------------------------------
    # Item & institution metadata
    # ------------------------------------------------------------------

    def get_item(self, access_token: str, context: CallContext | None = None) -> RemoteItem:
        api = self._get_api()
        response = self._call(
            "/item/get", api.item_get, ItemGetRequest(access_token=access_token), context
        )
        item = response["item"]
        return RemoteItem(
            item_id=item["item_id"],
            institution_id=item.get("institution_id"),
        )

    def get_institution(
        self, institution_id: str, context: CallContext | None = None
    ) -> RemoteInstitution:
        api = self._get_api()
        request = InstitutionsGetByIdRequest(
            institution_id=institution_id,
            country_codes=[CountryCode("US")],
            options=InstitutionsGetByIdRequestOptions(include_optional_metadata=True),
        )
        response = self._call(
            "/institutions/get_by_id", api.institutions_get_by_id, request, context
        )
        institution = response["institution"]
        return RemoteInstitution(
            institution_id=institution.get("institution_id") or institution_id,
            name=institution.get("name") or institution_id,
            logo=institution.get("logo"),
        )

    # ------------------------------------------------------------------
    # Accounts & balances
    # ------------------------------------------------------------------

    def get_accounts(
        self,
        access_token: str,
        context: CallContext | None = None,
        realtime_balances: bool = False,
    ) -> list[RemoteAccount]:
        """Fetch every account under one Item.

        Args:
            access_token: The Item's access token.
            context: Ledger attribution.
            realtime_balances: Use ``/accounts/balance/get`` (billed, forces
                a fresh balance pull) instead of the cached ``/accounts/get``.
        """
        api = self._get_api()
        if realtime_balances:
            response = self._call(
                "/accounts/balance/get",
                api.accounts_balance_get,
                AccountsBalanceGetRequest(access_token=access_token),
                context,
            )
        else:
            response = self._call(
                "/accounts/get",
                api.accounts_get,
                AccountsGetRequest(access_token=access_token),
                context,
            )

        accounts: list[RemoteAccount] = []
        for acct in response.get("accounts", []) or []:
            mapped = self._map_account(acct)
            if mapped:
                accounts.append(mapped)
        return accounts

    def _map_account(self, acct: dict) -> RemoteAccount | None:
        """Map a Plaid account object to a RemoteAccount."""
        account_id = acct.get("account_id")
        if not account_id:
            return None
        balances = acct.get("balances") or {}
        return RemoteAccount(
            id=account_id,
            name=acct.get("name") or acct.get("official_name") or "Plaid Account",
            official_name=acct.get("official_name"),
            type=_enum_value(acct.get("type")),
            subtype=_enum_value(acct.get("subtype")),
            mask=acct.get("mask") or None,
            balances=RemoteBalance(
                current=self._to_decimal(balances.get("current")),
                available=self._to_decimal(balances.get("available")),
                limit=self._to_decimal(balances.get("limit")),
                iso_currency_code=balances.get("iso_currency_code"),
            ),
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def sync_transactions(
        self,
        access_token: str,
        cursor: str | None,
        account_id: str | None = None,
        context: CallContext | None = None,
    ) -> TransactionSyncPage:
        """Fetch one page of /transactions/sync.

        An empty or ``None`` cursor requests the full history. The caller
        loops on ``has_more`` and owns cursor persistence.
        """
        api = self._get_api()
        kwargs: dict[str, Any] = {
            "access_token": access_token,
            "count": self._page_size,
        }
        if cursor:
            kwargs["cursor"] = cursor
        if account_id:
            kwargs["options"] = TransactionsSyncRequestOptions(account_id=account_id)
        request = TransactionsSyncRequest(**kwargs)
        response = self._call("/transactions/sync", api.transactions_sync, request, context)

        try:
            added = [self._map_transaction(t) for t in response.get("added", []) or []]
            modified = [self._map_transaction(t) for t in response.get("modified", []) or []]
            removed = [
                RemovedTransaction(id=r["transaction_id"], account_id=r.get("account_id"))
                for r in response.get("removed", []) or []
            ]
            next_cursor = response["next_cursor"]
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderDataError(
                f"Malformed /transactions/sync page: {exc}", PROVIDER_NAME
            ) from exc

        return TransactionSyncPage(
            added=[t for t in added if t is not None],
            modified=[t for t in modified if t is not None],
            removed=removed,
            next_cursor=next_cursor,
            has_more=bool(response.get("has_more", False)),
        )

    def _map_transaction(self, txn: dict) -> RemoteTransaction | None:
        """Map a Plaid transaction to a RemoteTransaction.

        Transactions without an id, date or parseable amount are skipped.
        """
        transaction_id = txn.get("transaction_id")
        if not transaction_id:
            return None

        txn_date = self._to_date(txn.get("date"))
        if txn_date is None:
            logger.warning("Skipping transaction %s with no date", transaction_id)
            return None

        amount = self._to_decimal(txn.get("amount"))
        if amount is None:
            logger.warning("Skipping transaction %s with invalid amount", transaction_id)
            return None

        category = txn.get("category")
        if isinstance(category, (list, tuple)):
            category = ", ".join(str(c) for c in category) or None

        pfc = txn.get("personal_finance_category") or {}
        personal_finance_category = pfc.get("detailed") or pfc.get("primary") if pfc else None

        return RemoteTransaction(
            id=transaction_id,
            account_id=txn.get("account_id", ""),
            date=txn_date,
            authorized_date=self._to_date(txn.get("authorized_date")),
            name=txn.get("name") or txn.get("merchant_name") or "Unknown",
            merchant_name=txn.get("merchant_name"),
            amount=amount,
            iso_currency_code=txn.get("iso_currency_code"),
            pending=bool(txn.get("pending", False)),
            category=category,
            personal_finance_category=personal_finance_category,
            payment_channel=_enum_value(txn.get("payment_channel")),
        )

    # ------------------------------------------------------------------
    # Liabilities
    # ------------------------------------------------------------------

    def get_liabilities(
        self, access_token: str, context: CallContext | None = None
    ) -> list[RemoteLiability]:
        """Fetch credit card, mortgage and student loan details for an Item."""
        api = self._get_api()
        response = self._call(
            "/liabilities/get",
            api.liabilities_get,
            LiabilitiesGetRequest(access_token=access_token),
            context,
        )
        liabilities = response.get("liabilities") or {}
        results: list[RemoteLiability] = []

        for credit in liabilities.get("credit") or []:
            results.append(RemoteLiability(
                account_id=credit.get("account_id"),
                kind="credit",
                last_statement_balance=self._to_decimal(credit.get("last_statement_balance")),
                minimum_payment_amount=self._to_decimal(credit.get("minimum_payment_amount")),
                next_payment_due_date=self._to_date(credit.get("next_payment_due_date")),
                last_payment_date=self._to_date(credit.get("last_payment_date")),
                last_payment_amount=self._to_decimal(credit.get("last_payment_amount")),
            ))

        for mortgage in liabilities.get("mortgage") or []:
            results.append(RemoteLiability(
                account_id=mortgage.get("account_id"),
                kind="mortgage",
                next_payment_due_date=self._to_date(mortgage.get("next_payment_due_date")),
                last_payment_date=self._to_date(mortgage.get("last_payment_date")),
                last_payment_amount=self._to_decimal(mortgage.get("last_payment_amount")),
                next_monthly_payment=self._to_decimal(mortgage.get("next_monthly_payment")),
                origination_date=self._to_date(mortgage.get("origination_date")),
                origination_principal_amount=self._to_decimal(
                    mortgage.get("origination_principal_amount")
                ),
            ))

        for student in liabilities.get("student") or []:
            results.append(RemoteLiability(
                account_id=student.get("account_id"),
                kind="student",
                last_statement_balance=self._to_decimal(student.get("last_statement_balance")),
                minimum_payment_amount=self._to_decimal(student.get("minimum_payment_amount")),
                next_payment_due_date=self._to_date(student.get("next_payment_due_date")),
                last_payment_date=self._to_date(student.get("last_payment_date")),
                last_payment_amount=self._to_decimal(student.get("last_payment_amount")),
                origination_date=self._to_date(student.get("origination_date")),
                origination_principal_amount=self._to_decimal(
                    student.get("origination_principal_amount")
                ),
            ))

        return [r for r in results if r.account_id]

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _map_plaid_error(exc: ApiException) -> ProviderError:
        """Map a Plaid ApiException to a typed ProviderError."""
        status = exc.status or 0
        message = str(exc)

        # Try to extract error_code from the body
        error_code = ""
        try:
            body = json.loads(exc.body) if exc.body else {}
            error_code = body.get("error_code", "") or ""
            error_message = body.get("error_message", "")
            if error_message:
                message = f"Plaid error ({error_code}): {error_message}"
        except (TypeError, ValueError, AttributeError):
            logger.debug("Unparseable Plaid error body", exc_info=True)

        if status in (401, 403) or error_code in CREDENTIAL_ERROR_CODES:
            return ProviderAuthError(message, PROVIDER_NAME, error_code or None)
        return ProviderAPIError(
            message, PROVIDER_NAME, status_code=status or None, error_code=error_code or None
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_decimal(value) -> Decimal | None:
        """Convert a value to Decimal, returning None on failure."""
        if value is None:
            return None
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None
        if not result.is_finite():
            return None
        return result

    @staticmethod
    def _to_date(value) -> date | None:
        """Accept SDK ``date`` objects, datetimes or ISO strings."""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            return None
