"""Connection service - linking, disconnecting and refreshing institutions."""

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from integrations.exceptions import ProviderAuthError, ProviderError
from integrations.provider_protocol import AccountProviderClient, CallContext
from models import Account, Balance, InstitutionConnection
from services.duplicate_service import DuplicateService, MergeResult
from services.reconciliation_service import ReconcileResult, ReconciliationService

logger = logging.getLogger(__name__)

LIABILITY_TYPES = ("credit", "loan")


@dataclass
class LinkResult:
    connection: InstitutionConnection
    accounts_created: int = 0
    reconcile: ReconcileResult | None = None
    merges: list[MergeResult] = field(default_factory=list)


@dataclass
class RefreshResult:
    connection_id: str
    balances_added: int = 0
    liabilities_updated: int = 0
    errors: list[str] = field(default_factory=list)


class ConnectionService:
    """Manages InstitutionConnection lifecycle. Commits internally."""

    def __init__(self, client: AccountProviderClient):
        self.client = client
        self.reconciliation = ReconciliationService(client)

    @staticmethod
    def list_connections(db: Session, user_id: str | None = None) -> list[InstitutionConnection]:
        query = db.query(InstitutionConnection)
        if user_id is not None:
            query = query.filter(InstitutionConnection.user_id == user_id)
        return query.order_by(InstitutionConnection.created_at).all()

    def create_link_token(self, user_id: str) -> str:
        return self.client.create_link_token(user_id)

    # ------------------------------------------------------------------
    # Link
    # ------------------------------------------------------------------

    def link_institution(self, db: Session, public_token: str, user_id: str) -> LinkResult:
        """Exchange a Link public token and bring the institution's accounts in.

        First links create accounts with an initial balance. If the
        institution already has active local accounts (a re-link), the
        reconciliation engine remaps them onto the new connection instead.
        Either way duplicate detection runs afterwards and auto-merges
        mask-bearing groups.

        Args:
            db: Database session.
            public_token: Token from the Plaid Link success callback.
            user_id: Owner of the new connection.

        Returns:
            LinkResult describing the connection and what changed.
        """
        context = CallContext(user_id=user_id)
        # Release read locks before remote I/O.
        db.commit()
        exchange = self.client.exchange_public_token(public_token, context=context)
        item = self.client.get_item(exchange.access_token, context=context)
        institution_id = item.institution_id
        context.institution_id = institution_id

        institution_name = None
        institution_logo = None
        if institution_id:
            try:
                institution = self.client.get_institution(institution_id, context=context)
                institution_name = institution.name
                institution_logo = institution.logo
            except ProviderError as exc:
                logger.warning("Could not fetch institution %s metadata: %s", institution_id, exc)

        connection = (
            db.query(InstitutionConnection).filter_by(item_id=exchange.item_id).first()
        )
        if connection is None:
            connection = InstitutionConnection(
                user_id=user_id,
                item_id=exchange.item_id,
                provider="plaid",
            )
            db.add(connection)
        connection.access_token = exchange.access_token
        connection.institution_id = institution_id
        connection.institution_name = institution_name or connection.institution_name
        connection.institution_logo = institution_logo or connection.institution_logo
        connection.status = "active"
        connection.requires_reauth = False
        connection.last_error_code = None
        # The access token cannot be re-issued; persist it before anything else can fail.
        db.commit()
        logger.info(
            "Linked item %s for institution %s (%s)",
            exchange.item_id, institution_name or "unknown", institution_id,
        )

        result = LinkResult(connection=connection)
        existing = (
            DuplicateService.active_accounts(db, institution_id) if institution_id else []
        )
        if existing:
            result.reconcile = self.reconciliation.reconcile(db, institution_id, connection)
        else:
            result.accounts_created = self._create_accounts(db, connection)

        if institution_id:
            result.merges = [
                m for m in DuplicateService.merge_institution(db, institution_id)
                if m.archived_ids
            ]
        db.refresh(connection)
        return result

    def _create_accounts(self, db: Session, connection: InstitutionConnection) -> int:
        access_token = connection.access_token
        context = CallContext(
            institution_id=connection.institution_id, user_id=connection.user_id
        )
        db.commit()
        fresh_accounts = self.client.get_accounts(access_token, context=context)
        created = 0
        try:
            for fresh in fresh_accounts:
                ReconciliationService.create_account(db, connection, fresh)
                created += 1
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("Created %d accounts for connection %s", created, connection.id)
        return created

    # ------------------------------------------------------------------
    # Disconnect / purge
    # ------------------------------------------------------------------

    def disconnect_institution(self, db: Session, institution_id: str) -> list[dict]:
        """Disconnect every connection for an institution.

        Remote connections are revoked first and only marked ``disconnected``
        when revocation succeeded. Manual institutions have nothing to revoke
        and are deleted along with their accounts.

        Returns:
            One entry per connection with ``connection_id``, ``item_id``,
            ``status`` ("disconnected" | "deleted" | "error") and ``error``.
        """
        connections = (
            db.query(InstitutionConnection)
            .filter(
                InstitutionConnection.institution_id == institution_id,
                InstitutionConnection.status == "active",
            )
            .all()
        )
        targets = [
            (c.id, c.item_id, c.access_token, c.user_id, c.is_manual) for c in connections
        ]
        # Release read locks before remote I/O.
        db.commit()

        outcomes: list[dict] = []
        for connection_id, item_id, access_token, user_id, is_manual in targets:
            outcome = {
                "connection_id": connection_id,
                "item_id": item_id,
                "status": "deleted" if is_manual else "disconnected",
                "error": None,
            }
            if not is_manual:
                try:
                    self.client.remove_item(
                        access_token,
                        context=CallContext(institution_id=institution_id, user_id=user_id),
                    )
                except ProviderError as exc:
                    logger.warning(
                        "Failed to remove item %s for institution %s: %s",
                        item_id, institution_id, exc,
                    )
                    outcome["status"] = "error"
                    outcome["error"] = str(exc)
            outcomes.append(outcome)

        for outcome in outcomes:
            connection = db.get(InstitutionConnection, outcome["connection_id"])
            if connection is None:
                continue
            if outcome["status"] == "deleted":
                db.delete(connection)
            elif outcome["status"] == "disconnected":
                connection.status = "disconnected"
                connection.access_token = None
        db.commit()
        logger.info(
            "Disconnected institution %s: %s",
            institution_id, ", ".join(f"{o['item_id']}={o['status']}" for o in outcomes) or "none",
        )
        return outcomes

    @staticmethod
    def purge_connection(db: Session, connection_id: str) -> bool:
        """Hard-delete a connection and, by cascade, its accounts and history."""
        connection = db.get(InstitutionConnection, connection_id)
        if connection is None:
            return False
        item_id = connection.item_id
        db.delete(connection)
        db.commit()
        logger.warning("Purged connection %s (item %s)", connection_id, item_id)
        return True

    # ------------------------------------------------------------------
    # Balances & liabilities
    # ------------------------------------------------------------------

    def refresh_balances(self, db: Session, connection: InstitutionConnection) -> RefreshResult:
        """Insert a fresh Balance per active account and update liabilities.

        Both remote calls are made before anything is written. Liabilities
        failures are recorded in the result and logged; they do not fail the
        refresh.

        Raises:
            ProviderError: If the account list could not be fetched. Credential
                errors also flag the connection for re-authentication.
        """
        result = RefreshResult(connection_id=connection.id)
        access_token = connection.access_token
        context = CallContext(
            institution_id=connection.institution_id, user_id=connection.user_id
        )
        wants_liabilities = any(
            (a.type or "").lower() in LIABILITY_TYPES
            for a in connection.accounts
            if not a.archived
        )
        # Release read locks before remote I/O.
        db.commit()

        try:
            fresh_accounts = self.client.get_accounts(
                access_token, context=context, realtime_balances=True
            )
        except ProviderAuthError as exc:
            connection.requires_reauth = True
            connection.last_error_code = exc.error_code
            db.commit()
            raise

        liabilities = []
        if wants_liabilities:
            try:
                liabilities = self.client.get_liabilities(access_token, context=context)
            except ProviderError as exc:
                logger.warning(
                    "Liabilities refresh failed for connection %s: %s", result.connection_id, exc
                )
                result.errors.append(str(exc))

        local_by_remote = {
            a.remote_account_id: a
            for a in connection.accounts
            if not a.archived
        }
        for fresh in fresh_accounts:
            account = local_by_remote.get(fresh.id)
            if account is None:
                continue
            balances = fresh.balances
            db.add(Balance(
                account_id=account.id,
                current=balances.current,
                available=balances.available,
                limit_amount=balances.limit,
                iso_currency_code=balances.iso_currency_code,
            ))
            result.balances_added += 1

        for liability in liabilities:
            account = local_by_remote.get(liability.account_id)
            if account is None:
                continue
            self._apply_liability(account, liability)
            result.liabilities_updated += 1

        db.commit()
        logger.info(
            "Refreshed connection %s: %d balances, %d liabilities",
            result.connection_id, result.balances_added, result.liabilities_updated,
        )
        return result

    @staticmethod
    def _apply_liability(account: Account, liability) -> None:
        """Copy non-empty liability fields onto the account."""
        for attr in (
            "last_statement_balance",
            "minimum_payment_amount",
            "next_payment_due_date",
            "last_payment_date",
            "last_payment_amount",
            "next_monthly_payment",
            "origination_date",
            "origination_principal_amount",
        ):
            value = getattr(liability, attr)
            if value is not None:
                setattr(account, attr, value)

