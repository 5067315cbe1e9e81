"""Reconnection reconciliation - remap local accounts after a re-link.

When a user re-authenticates an institution the provider issues a new
item and new remote account ids, even for accounts already stored
locally. Reconciliation matches the fresh accounts to existing ones by
characteristics and moves the new ids onto the existing rows, so their
transaction and balance history carries over instead of starting again.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from integrations.provider_protocol import AccountProviderClient, CallContext, RemoteAccount
from models import Account, Balance, InstitutionConnection
from models.account import default_invert_transactions
from services.duplicate_service import DuplicateService
from services.exceptions import ConnectionNotFoundError
from services.locks import institution_lock

logger = logging.getLogger(__name__)


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def characteristics_match(local: Account, fresh: RemoteAccount) -> bool:
    """Same name, type and subtype, and the same mask.

    A mask missing on both sides counts as a match. Two unmasked accounts
    with identical names at one institution therefore match each other;
    this is a known limitation kept for compatibility with existing data.
    """
    if (_norm(local.name), _norm(local.type), _norm(local.subtype)) != (
        _norm(fresh.name), _norm(fresh.type), _norm(fresh.subtype)
    ):
        return False
    return _norm(local.mask) == _norm(fresh.mask)


@dataclass
class ReconcileResult:
    updated: int = 0
    conflicts: int = 0
    orphaned: int = 0
    created: int = 0
    unchanged: int = 0
    conflict_details: list[dict] = field(default_factory=list)


class ReconciliationService:
    """Reconciles an institution's local accounts against the provider."""

    def __init__(self, client: AccountProviderClient):
        self.client = client

    @staticmethod
    def latest_connection(db: Session, institution_id: str) -> InstitutionConnection | None:
        """Newest active, non-manual connection for an institution."""
        candidates = (
            db.query(InstitutionConnection)
            .filter(
                InstitutionConnection.institution_id == institution_id,
                InstitutionConnection.status == "active",
            )
            .order_by(InstitutionConnection.created_at.desc(), InstitutionConnection.id.desc())
            .all()
        )
        for connection in candidates:
            if not connection.is_manual and connection.access_token:
                return connection
        return None

    def reconcile(
        self,
        db: Session,
        institution_id: str,
        connection: InstitutionConnection | None = None,
        lock_timeout: float | None = None,
    ) -> ReconcileResult:
        """Reconcile every active account at ``institution_id``. Commits internally.

        Args:
            db: Database session.
            institution_id: Provider institution id.
            connection: The freshly linked connection. Defaults to the newest
                active connection for the institution.
            lock_timeout: Seconds to wait for the institution's exclusive section.

        Returns:
            ReconcileResult with counts of updated, conflicting, orphaned,
            created and unchanged accounts.

        Raises:
            ConnectionNotFoundError: No usable connection for the institution.
            InstitutionBusyError: Another merge or reconciliation is running.
            ProviderError: The fresh account list could not be fetched; nothing
                was changed.
        """
        with institution_lock(institution_id, lock_timeout):
            target = connection or self.latest_connection(db, institution_id)
            if target is None:
                raise ConnectionNotFoundError(institution_id)
            access_token = target.access_token
            context = CallContext(institution_id=institution_id, user_id=target.user_id)

            # Release read locks before remote I/O.
            db.commit()
            fresh_accounts = self.client.get_accounts(access_token, context=context)

            try:
                result = self._reconcile_locked(db, institution_id, target, fresh_accounts)
                db.commit()
            except Exception:
                db.rollback()
                logger.exception(
                    "Reconciliation for institution %s failed; rolled back", institution_id
                )
                raise

        if result.conflicts:
            logger.warning(
                "Reconciliation for institution %s found %d conflict(s) needing manual review: %s",
                institution_id, result.conflicts, result.conflict_details,
            )
        logger.info(
            "Reconciled institution %s: %d updated, %d conflicts, %d orphaned, "
            "%d created, %d unchanged",
            institution_id, result.updated, result.conflicts, result.orphaned,
            result.created, result.unchanged,
        )
        return result

    def _reconcile_locked(
        self,
        db: Session,
        institution_id: str,
        target: InstitutionConnection,
        fresh_accounts: list[RemoteAccount],
    ) -> ReconcileResult:
        result = ReconcileResult()

        # Step 1: every active account for the institution, old and new connections.
        local_accounts = DuplicateService.active_accounts(db, institution_id)
        claimed: set[str] = set()
        unmatched: list[RemoteAccount] = []

        for fresh in fresh_accounts:
            match = self._best_match(db, local_accounts, claimed, fresh)
            if match is None:
                unmatched.append(fresh)
                continue
            claimed.add(match.id)

            if match.remote_account_id == fresh.id:
                match.connection_id = target.id
                self._add_balance(db, match, fresh)
                result.unchanged += 1
                continue

            holder = (
                db.query(Account)
                .filter(
                    Account.remote_account_id == fresh.id,
                    Account.archived.is_(False),
                    Account.id != match.id,
                )
                .first()
            )
            if holder is not None:
                # Both sides stay exactly as they are until an operator decides.
                claimed.add(holder.id)
                result.conflicts += 1
                result.conflict_details.append({
                    "account_id": match.id,
                    "account_name": match.display_name,
                    "current_remote_account_id": match.remote_account_id,
                    "fresh_remote_account_id": fresh.id,
                    "conflicting_account_id": holder.id,
                })
                continue

            logger.info(
                "Remapping account %s (%s): %s -> %s",
                match.display_name, match.id, match.remote_account_id, fresh.id,
            )
            match.remote_account_id = fresh.id
            match.connection_id = target.id
            match.official_name = fresh.official_name or match.official_name
            # Cursors are issued per item; the old item's cursor means nothing
            # to the new one.
            match.sync_cursor = None
            self._add_balance(db, match, fresh)
            db.flush()
            result.updated += 1

        for fresh in unmatched:
            self.create_account(db, target, fresh)
            result.created += 1

        for local in local_accounts:
            if local.id not in claimed:
                logger.info(
                    "Archiving orphaned account %s (%s, remote id %s)",
                    local.display_name, local.id, local.remote_account_id,
                )
                local.archived = True
                result.orphaned += 1

        db.flush()
        return result

    @staticmethod
    def _best_match(
        db: Session,
        local_accounts: list[Account],
        claimed: set[str],
        fresh: RemoteAccount,
    ) -> Account | None:
        """Pick the unclaimed local account that corresponds to ``fresh``.

        Characteristic matches come first; among several, one already
        holding the fresh id wins, then the most recently active. An account
        whose characteristics changed remotely still matches on its id.
        """
        unclaimed = [a for a in local_accounts if a.id not in claimed]
        candidates = [a for a in unclaimed if characteristics_match(a, fresh)]
        if not candidates:
            return next((a for a in unclaimed if a.remote_account_id == fresh.id), None)
        for candidate in candidates:
            if candidate.remote_account_id == fresh.id:
                return candidate
        return DuplicateService.choose_survivor(db, candidates)

    @staticmethod
    def _add_balance(db: Session, account: Account, fresh: RemoteAccount) -> None:
        balances = fresh.balances
        if balances.current is None and balances.available is None:
            return
        db.add(Balance(
            account_id=account.id,
            current=balances.current,
            available=balances.available,
            limit_amount=balances.limit,
            iso_currency_code=balances.iso_currency_code,
        ))

    @staticmethod
    def create_account(
        db: Session, connection: InstitutionConnection, fresh: RemoteAccount
    ) -> Account:
        """Create a local account for a fresh remote one.

        If the remote id is already taken by an active row (a concurrent
        link), that row is updated instead.
        """
        account = Account(
            user_id=connection.user_id,
            connection_id=connection.id,
            remote_account_id=fresh.id,
            name=fresh.name,
            official_name=fresh.official_name,
            type=fresh.type,
            subtype=fresh.subtype,
            mask=fresh.mask,
            invert_transactions=default_invert_transactions(fresh.type),
        )
        try:
            with db.begin_nested():
                db.add(account)
                db.flush()
        except IntegrityError:
            logger.warning(
                "Account with remote id %s already exists, updating instead", fresh.id
            )
            account = (
                db.query(Account)
                .filter(Account.remote_account_id == fresh.id, Account.archived.is_(False))
                .one()
            )
            account.connection_id = connection.id
            account.name = fresh.name
            account.type = fresh.type
            account.subtype = fresh.subtype
            account.mask = fresh.mask
        ReconciliationService._add_balance(db, account, fresh)
        return account
