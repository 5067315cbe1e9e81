"""Duplicate detection and merge for accounts linked more than once.

Re-linking an institution can leave several active Account rows for one
physical account. Accounts are grouped by an identity key built from
type, subtype, name and (when present) mask. Groups whose members share a
mask merge automatically; name-only groups are only reported.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Account, Balance, InstitutionConnection, Transaction
from models.utils import as_utc
from services.locks import institution_lock

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def identity_key(account) -> str:
    """``type_subtype_name_mask``, or ``type_subtype_name`` when there is no mask.

    Works for both local ``Account`` rows and provider ``RemoteAccount`` objects.
    """
    parts = [_norm(account.type), _norm(account.subtype), _norm(account.name)]
    mask = _norm(account.mask)
    if mask:
        parts.append(mask)
    return "_".join(parts)


@dataclass
class DuplicateGroup:
    """Active accounts at one institution believed to be the same physical account."""

    institution_id: str
    key: str
    account_ids: list[str]
    mask: str | None = None

    @property
    def should_merge(self) -> bool:
        """Only mask-bearing groups merge automatically."""
        return bool(self.mask) and len(self.account_ids) > 1


@dataclass
class MergeResult:
    survivor_id: str | None = None
    archived_ids: list[str] = field(default_factory=list)
    transactions_moved: int = 0
    balances_moved: int = 0
    transactions_dropped: int = 0

    @property
    def affected_rows(self) -> int:
        return (
            len(self.archived_ids)
            + self.transactions_moved
            + self.balances_moved
            + self.transactions_dropped
        )


class DuplicateService:
    """Detects and merges duplicate accounts per institution."""

    @staticmethod
    def active_accounts(db: Session, institution_id: str) -> list[Account]:
        return (
            db.query(Account)
            .join(InstitutionConnection, Account.connection_id == InstitutionConnection.id)
            .filter(
                InstitutionConnection.institution_id == institution_id,
                Account.archived.is_(False),
            )
            .order_by(Account.created_at, Account.id)
            .all()
        )

    @staticmethod
    def detect_duplicates(db: Session, institution_id: str) -> list[DuplicateGroup]:
        """Group active accounts at an institution by identity key.

        Returns:
            Every group with more than one active member, mask-bearing groups
            first. An empty list means no duplicates.
        """
        by_key: dict[str, list[Account]] = {}
        for account in DuplicateService.active_accounts(db, institution_id):
            by_key.setdefault(identity_key(account), []).append(account)

        groups = [
            DuplicateGroup(
                institution_id=institution_id,
                key=key,
                account_ids=[a.id for a in members],
                mask=members[0].mask or None,
            )
            for key, members in by_key.items()
            if len(members) > 1
        ]
        groups.sort(key=lambda g: (not g.should_merge, g.key))

        for group in groups:
            if not group.should_merge:
                logger.info(
                    "Possible duplicate accounts without a mask at %s (%s): %s - not auto-merged",
                    institution_id, group.key, ", ".join(group.account_ids),
                )
        return groups

    @staticmethod
    def last_activity(db: Session, account: Account) -> datetime:
        """Latest of balance date, transaction date and last sync time."""
        latest_balance = (
            db.query(func.max(Balance.date)).filter(Balance.account_id == account.id).scalar()
        )
        latest_txn = (
            db.query(func.max(Transaction.date))
            .filter(Transaction.account_id == account.id)
            .scalar()
        )
        candidates = [as_utc(latest_balance), as_utc(account.last_sync_time)]
        if latest_txn is not None:
            candidates.append(
                datetime(latest_txn.year, latest_txn.month, latest_txn.day, tzinfo=timezone.utc)
            )
        return max((c for c in candidates if c is not None), default=_EPOCH)

    @staticmethod
    def choose_survivor(db: Session, accounts: list[Account]) -> Account:
        """Most recent activity wins; ties go to the earliest created, then lowest id."""

        def rank(account: Account):
            created = as_utc(account.created_at) or _EPOCH
            return (-DuplicateService.last_activity(db, account).timestamp(), created, account.id)

        return min(accounts, key=rank)

    @staticmethod
    def merge(
        db: Session,
        group: DuplicateGroup,
        allow_unmasked: bool = False,
        lock_timeout: float | None = None,
    ) -> MergeResult:
        """Merge a duplicate group into its survivor. Commits internally.

        Balances and transactions move to the survivor and the other members
        are archived, all in one commit. Running it again on a merged group
        is a no-op.

        Args:
            db: Database session.
            group: Group from :meth:`detect_duplicates`.
            allow_unmasked: Merge a name-only group (explicit operator action).
            lock_timeout: Seconds to wait for the institution's exclusive section.

        Raises:
            ValueError: If the group has no mask and ``allow_unmasked`` is False.
            InstitutionBusyError: If the institution lock was not acquired.
        """
        if not group.mask and not allow_unmasked:
            raise ValueError(
                f"Accounts {group.account_ids} share no mask; refusing to auto-merge"
            )
        with institution_lock(group.institution_id, lock_timeout):
            return DuplicateService._merge_locked(db, group)

    @staticmethod
    def merge_institution(
        db: Session, institution_id: str, lock_timeout: float | None = None
    ) -> list[MergeResult]:
        """Detect and auto-merge every mask-bearing group at an institution."""
        with institution_lock(institution_id, lock_timeout):
            groups = DuplicateService.detect_duplicates(db, institution_id)
            return [
                DuplicateService._merge_locked(db, group)
                for group in groups
                if group.should_merge
            ]

    @staticmethod
    def _merge_locked(db: Session, group: DuplicateGroup) -> MergeResult:
        members = (
            db.query(Account)
            .filter(Account.id.in_(group.account_ids), Account.archived.is_(False))
            .all()
        )
        if len(members) < 2:
            return MergeResult(survivor_id=members[0].id if members else None)

        try:
            survivor = DuplicateService.choose_survivor(db, members)
            result = MergeResult(survivor_id=survivor.id)
            survivor_txn_ids = {
                remote_id
                for (remote_id,) in db.query(Transaction.remote_transaction_id).filter(
                    Transaction.account_id == survivor.id
                )
            }

            for loser in members:
                if loser.id == survivor.id:
                    continue
                for txn in db.query(Transaction).filter(Transaction.account_id == loser.id).all():
                    if txn.remote_transaction_id in survivor_txn_ids:
                        db.delete(txn)
                        result.transactions_dropped += 1
                    else:
                        txn.account_id = survivor.id
                        survivor_txn_ids.add(txn.remote_transaction_id)
                        result.transactions_moved += 1

                result.balances_moved += (
                    db.query(Balance)
                    .filter(Balance.account_id == loser.id)
                    .update({Balance.account_id: survivor.id}, synchronize_session=False)
                )
                loser.archived = True
                result.archived_ids.append(loser.id)

            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Merge of duplicate group %s failed; rolled back", group.key)
            raise

        logger.info(
            "Merged %d duplicate(s) into %s at %s: %d transactions, %d balances moved",
            len(result.archived_ids), result.survivor_id, group.institution_id,
            result.transactions_moved, result.balances_moved,
        )
        return result
