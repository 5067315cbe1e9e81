"""Account management service."""

import logging

from sqlalchemy.orm import Session

from models import Account, Transaction

logger = logging.getLogger(__name__)


class AccountService:
    """Service for managing account CRUD operations."""

    @staticmethod
    def list_accounts(
        db: Session,
        user_id: str | None = None,
        include_archived: bool = False,
    ) -> list[Account]:
        """List accounts, active ones only unless ``include_archived``."""
        query = db.query(Account)
        if user_id is not None:
            query = query.filter(Account.user_id == user_id)
        if not include_archived:
            query = query.filter(Account.archived.is_(False))
        return query.order_by(Account.created_at, Account.id).all()

    @staticmethod
    def get_account(db: Session, account_id: str) -> Account | None:
        """Get a specific account by ID."""
        return db.query(Account).filter(Account.id == account_id).first()

    @staticmethod
    def update_account(
        db: Session,
        account_id: str,
        *,
        nickname: str | None = None,
        hidden: bool | None = None,
        invert_transactions: bool | None = None,
    ) -> Account | None:
        """Update an account's user-editable properties."""
        account = db.query(Account).filter(Account.id == account_id).first()
        if not account:
            return None

        if nickname is not None:
            account.nickname = nickname.strip() or None
        if hidden is not None:
            account.hidden = hidden
        if invert_transactions is not None:
            AccountService.set_transaction_inversion(db, account, invert_transactions)

        db.commit()
        db.refresh(account)
        logger.info("Account updated: %s (id=%s)", account.display_name, account.id)
        return account

    @staticmethod
    def set_transaction_inversion(db: Session, account: Account, invert: bool) -> int:
        """Toggle sign inversion, negating every stored amount when it changes.

        Stored amounts are kept normalized, so flipping the flag rewrites the
        existing rows in one bulk UPDATE. Does not commit.

        Returns:
            Number of transactions rewritten (0 when the flag is unchanged).
        """
        if bool(account.invert_transactions) == invert:
            return 0
        count = (
            db.query(Transaction)
            .filter(Transaction.account_id == account.id)
            .update({Transaction.amount: -Transaction.amount}, synchronize_session=False)
        )
        account.invert_transactions = invert
        db.flush()
        logger.info(
            "Transaction inversion %s for %s: %d amounts negated",
            "enabled" if invert else "disabled", account.id, count,
        )
        return count

    @staticmethod
    def archive_account(db: Session, account_id: str) -> Account | None:
        """Archive an account. History is kept; it stops syncing."""
        account = db.query(Account).filter(Account.id == account_id).first()
        if not account:
            return None
        account.archived = True
        db.commit()
        db.refresh(account)
        logger.info("Account archived: %s (id=%s)", account.display_name, account.id)
        return account

    @staticmethod
    def restore_account(db: Session, account_id: str) -> Account | None:
        """Un-archive an account.

        Raises:
            ValueError: If another active account already holds the same
                remote account id.
        """
        account = db.query(Account).filter(Account.id == account_id).first()
        if not account:
            return None
        if not account.archived:
            return account

        holder = (
            db.query(Account)
            .filter(
                Account.remote_account_id == account.remote_account_id,
                Account.archived.is_(False),
                Account.id != account.id,
            )
            .first()
        )
        if holder is not None:
            raise ValueError(
                f"Remote account {account.remote_account_id} is already held by "
                f"active account {holder.id}"
            )

        account.archived = False
        db.commit()
        db.refresh(account)
        logger.info("Account restored: %s (id=%s)", account.display_name, account.id)
        return account
