"""Unit tests for AccountService."""

from decimal import Decimal

import pytest

from models import Account, Transaction
from services.account_service import AccountService
from tests.fixtures import add_transactions, create_account, create_connection


def _amounts(db, account_id):
    return sorted(
        t.amount for t in db.query(Transaction).filter_by(account_id=account_id).all()
    )


class TestListAccounts:
    def test_excludes_archived_by_default(self, db, account, savings_account):
        savings_account.archived = True
        db.commit()

        assert [a.id for a in AccountService.list_accounts(db)] == [account.id]
        assert len(AccountService.list_accounts(db, include_archived=True)) == 2

    def test_filters_by_user(self, db, account):
        other = create_connection(db, item_id="item-2", user_id="bob")
        bobs = create_account(db, other, "acc-bob", mask="2222")

        assert [a.id for a in AccountService.list_accounts(db, user_id="bob")] == [bobs.id]


class TestUpdateAccount:
    def test_nickname_and_hidden(self, db, account):
        updated = AccountService.update_account(db, account.id, nickname="  Bills  ", hidden=True)

        assert updated.nickname == "Bills"
        assert updated.display_name == "Bills"
        assert updated.hidden is True

    def test_blank_nickname_clears_it(self, db, account):
        AccountService.update_account(db, account.id, nickname="Bills")
        updated = AccountService.update_account(db, account.id, nickname="   ")

        assert updated.nickname is None
        assert updated.display_name == "Checking"

    def test_missing_account(self, db):
        assert AccountService.update_account(db, "missing", hidden=True) is None


class TestTransactionInversion:
    def test_enabling_negates_existing_amounts(self, db, account):
        add_transactions(db, account, 3, amount=Decimal("12.50"))

        updated = AccountService.update_account(db, account.id, invert_transactions=True)

        assert updated.invert_transactions is True
        assert _amounts(db, account.id) == [Decimal("-12.50")] * 3

    def test_disabling_restores_amounts(self, db, credit_account):
        add_transactions(db, credit_account, 2, amount=Decimal("-40.00"))

        count = AccountService.set_transaction_inversion(db, credit_account, False)
        db.commit()

        assert count == 2
        assert _amounts(db, credit_account.id) == [Decimal("40.00")] * 2

    def test_unchanged_flag_is_noop(self, db, credit_account):
        add_transactions(db, credit_account, 2, amount=Decimal("-40.00"))

        assert AccountService.set_transaction_inversion(db, credit_account, True) == 0
        assert _amounts(db, credit_account.id) == [Decimal("-40.00")] * 2

    def test_only_touches_own_transactions(self, db, account, savings_account):
        add_transactions(db, account, 1)
        add_transactions(db, savings_account, 1)

        AccountService.update_account(db, account.id, invert_transactions=True)

        assert _amounts(db, savings_account.id) == [Decimal("10.00")]


class TestArchiveRestore:
    def test_archive_keeps_history(self, db, account):
        add_transactions(db, account, 2)

        archived = AccountService.archive_account(db, account.id)

        assert archived.archived is True
        assert db.query(Transaction).filter_by(account_id=account.id).count() == 2

    def test_restore(self, db, account):
        AccountService.archive_account(db, account.id)

        restored = AccountService.restore_account(db, account.id)

        assert restored.archived is False

    def test_restore_conflicts_with_active_holder(self, db, account, connection):
        AccountService.archive_account(db, account.id)
        newer = create_connection(db, item_id="item-2")
        create_account(db, newer, "acc-checking")

        with pytest.raises(ValueError, match="already held"):
            AccountService.restore_account(db, account.id)
        assert db.get(Account, account.id).archived is True

    def test_missing_account(self, db):
        assert AccountService.archive_account(db, "missing") is None
        assert AccountService.restore_account(db, "missing") is None
