"""Unit tests for ConnectionService."""

from datetime import date
from decimal import Decimal

import pytest

from integrations.exceptions import ProviderAuthError
from integrations.provider_protocol import RemoteLiability
from models import Account, Balance, DownloadLog, InstitutionConnection, Transaction
from services.connection_service import ConnectionService
from tests.fixtures import add_transactions, create_account, create_connection
from tests.fixtures.mocks import MockPlaidClient, make_remote_account


def _service(**kwargs) -> tuple[ConnectionService, MockPlaidClient]:
    client = MockPlaidClient(**kwargs)
    return ConnectionService(client), client


# ---------------------------------------------------------------------------
# Link
# ---------------------------------------------------------------------------


def test_first_link_creates_connection_and_accounts(db):
    service, _ = _service(
        accounts=[
            make_remote_account("acc-1"),
            make_remote_account(
                "acc-2", name="Rewards Card", type="credit", subtype="credit card", mask="9999"
            ),
        ],
    )

    result = service.link_institution(db, "public-sandbox-1", "user-1")

    assert result.accounts_created == 2
    assert result.reconcile is None
    connection = result.connection
    assert connection.item_id == "item-new"
    assert connection.access_token == "access-sandbox-new"
    assert connection.institution_name == "Test Bank"
    assert connection.user_id == "user-1"
    accounts = db.query(Account).filter_by(connection_id=connection.id).all()
    assert {a.remote_account_id for a in accounts} == {"acc-1", "acc-2"}
    card = next(a for a in accounts if a.remote_account_id == "acc-2")
    assert card.invert_transactions is True
    assert db.query(Balance).count() == 2


def test_relink_reconciles_existing_accounts(db):
    old = create_connection(db, item_id="item-old", access_token="access-old")
    local = create_account(db, old, "old123")
    add_transactions(db, local, 5)
    service, _ = _service(accounts=[make_remote_account("new456")])

    result = service.link_institution(db, "public-sandbox-2", "default")

    assert result.accounts_created == 0
    assert result.reconcile.updated == 1
    refreshed = db.get(Account, local.id)
    assert refreshed.remote_account_id == "new456"
    assert refreshed.connection_id == result.connection.id
    assert db.query(Transaction).filter_by(account_id=local.id).count() == 5
    assert db.get(InstitutionConnection, old.id).status == "active"


def test_relink_collapses_duplicate_locals(db):
    first = create_connection(db, item_id="item-a", access_token="access-a")
    second = create_connection(db, item_id="item-b", access_token="access-b")
    create_account(db, first, "dup-a")
    create_account(db, second, "dup-b")
    create_account(db, second, "savings", name="Savings", subtype="savings", mask="5678")
    service, _ = _service(
        accounts=[
            make_remote_account("fresh-checking"),
            make_remote_account("fresh-savings", name="Savings", subtype="savings", mask="5678"),
        ],
    )

    result = service.link_institution(db, "public-sandbox-3", "default")

    assert result.reconcile.updated == 2
    assert result.reconcile.orphaned == 1
    active = db.query(Account).filter(Account.archived.is_(False)).all()
    assert {a.remote_account_id for a in active} == {"fresh-checking", "fresh-savings"}


def test_link_exchange_failure_creates_nothing(db):
    service, _ = _service(should_fail=True, failure_type="auth")

    with pytest.raises(ProviderAuthError):
        service.link_institution(db, "public-sandbox-bad", "default")

    assert db.query(InstitutionConnection).count() == 0


def test_create_link_token(db):
    service, client = _service()

    assert service.create_link_token("user-9") == "link-sandbox-user-9"
    assert ("create_link_token", "user-9") in client.calls


def test_list_connections_by_user(db):
    create_connection(db, item_id="item-a", user_id="alice")
    create_connection(db, item_id="item-b", user_id="bob")

    connections = ConnectionService.list_connections(db, user_id="alice")

    assert [c.item_id for c in connections] == ["item-a"]


# ---------------------------------------------------------------------------
# Disconnect / purge
# ---------------------------------------------------------------------------


def test_disconnect_revokes_and_marks_disconnected(db, connection, account):
    service, client = _service()

    outcomes = service.disconnect_institution(db, "ins_1")

    assert outcomes == [{
        "connection_id": connection.id,
        "item_id": "item-1",
        "status": "disconnected",
        "error": None,
    }]
    assert ("remove_item", "access-sandbox-1") in client.calls
    refreshed = db.get(InstitutionConnection, connection.id)
    assert refreshed.status == "disconnected"
    assert refreshed.access_token is None
    assert db.get(Account, account.id) is not None


def test_disconnect_failure_keeps_connection_active(db, connection):
    service, _ = _service(remove_should_fail=True)

    outcomes = service.disconnect_institution(db, "ins_1")

    assert outcomes[0]["status"] == "error"
    assert "Item removal failed" in outcomes[0]["error"]
    refreshed = db.get(InstitutionConnection, connection.id)
    assert refreshed.status == "active"
    assert refreshed.access_token == "access-sandbox-1"


def test_disconnect_manual_institution_deletes_it(db):
    manual = create_connection(
        db, item_id="manual-1", institution_id="ins_manual", provider="manual", access_token=None
    )
    manual_id = manual.id
    account_id = create_account(db, manual, "manual-acc").id
    service, client = _service()

    outcomes = service.disconnect_institution(db, "ins_manual")

    assert outcomes[0]["status"] == "deleted"
    assert not any(call[0] == "remove_item" for call in client.calls)
    assert db.get(InstitutionConnection, manual_id) is None
    assert db.get(Account, account_id) is None


def test_disconnect_unknown_institution(db):
    service, _ = _service()
    assert service.disconnect_institution(db, "ins_nowhere") == []


def test_purge_cascades_to_history(db, connection, account):
    add_transactions(db, account, 3)
    db.add(DownloadLog(account_id=account.id, status="success"))
    db.commit()
    account_id = account.id

    assert ConnectionService.purge_connection(db, connection.id) is True

    assert db.get(Account, account_id) is None
    assert db.query(Transaction).count() == 0
    assert db.query(DownloadLog).count() == 0


def test_purge_unknown_connection(db):
    assert ConnectionService.purge_connection(db, "missing") is False


# ---------------------------------------------------------------------------
# Balances & liabilities
# ---------------------------------------------------------------------------


def test_refresh_balances_and_liabilities(db, connection, account, credit_account):
    service, client = _service(
        accounts=[
            make_remote_account("acc-checking", current="250.00"),
            make_remote_account(
                "acc-credit", name="Rewards Card", type="credit",
                subtype="credit card", mask="9999", current="1708.77",
            ),
            make_remote_account("acc-unknown", name="Not Tracked", mask="0000"),
        ],
        liabilities=[
            RemoteLiability(
                account_id="acc-credit",
                kind="credit",
                last_statement_balance=Decimal("1708.77"),
                minimum_payment_amount=Decimal("20.00"),
                next_payment_due_date=date(2026, 3, 15),
            )
        ],
    )

    result = service.refresh_balances(db, connection)

    assert result.balances_added == 2
    assert result.liabilities_updated == 1
    assert result.errors == []
    assert ("get_accounts", "access-sandbox-1", True) in client.calls
    latest = db.query(Balance).filter_by(account_id=account.id).one()
    assert latest.current == Decimal("250.00")
    card = db.get(Account, credit_account.id)
    assert card.last_statement_balance == Decimal("1708.77")
    assert card.next_payment_due_date == date(2026, 3, 15)


def test_refresh_skips_liabilities_for_depository_only(db, connection, account):
    service, client = _service(accounts=[make_remote_account("acc-checking")])

    result = service.refresh_balances(db, connection)

    assert result.balances_added == 1
    assert not any(call[0] == "get_liabilities" for call in client.calls)


def test_refresh_auth_error_flags_connection(db, connection, account):
    service, _ = _service(should_fail=True, failure_type="auth")

    with pytest.raises(ProviderAuthError):
        service.refresh_balances(db, connection)

    refreshed = db.get(InstitutionConnection, connection.id)
    assert refreshed.requires_reauth is True
    assert refreshed.last_error_code == "ITEM_LOGIN_REQUIRED"
