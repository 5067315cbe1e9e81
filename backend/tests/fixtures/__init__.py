"""Test fixtures and sample data."""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from models import Account, Balance, InstitutionConnection, Transaction


def create_connection(
    db: Session,
    item_id: str = "item-1",
    institution_id: str = "ins_1",
    institution_name: str = "Test Bank",
    access_token: str | None = "access-sandbox-1",
    user_id: str = "default",
    **kwargs,
) -> InstitutionConnection:
    """Create and commit an InstitutionConnection."""
    conn = InstitutionConnection(
        item_id=item_id,
        institution_id=institution_id,
        institution_name=institution_name,
        access_token=access_token,
        user_id=user_id,
        **kwargs,
    )
    db.add(conn)
    db.commit()
    db.refresh(conn)
    return conn


def create_account(
    db: Session,
    connection: InstitutionConnection,
    remote_account_id: str,
    name: str = "Checking",
    type: str = "depository",
    subtype: str = "checking",
    mask: str | None = "1234",
    created_at: datetime | None = None,
    **kwargs,
) -> Account:
    """Create and commit an Account under ``connection``."""
    acct = Account(
        user_id=connection.user_id,
        connection_id=connection.id,
        remote_account_id=remote_account_id,
        name=name,
        type=type,
        subtype=subtype,
        mask=mask,
        **kwargs,
    )
    if created_at is not None:
        acct.created_at = created_at
    db.add(acct)
    db.commit()
    db.refresh(acct)
    return acct


def add_transactions(
    db: Session,
    account: Account,
    count: int,
    prefix: str = "txn",
    start: date = date(2026, 1, 1),
    amount: Decimal = Decimal("10.00"),
) -> list[Transaction]:
    """Add ``count`` transactions with remote ids ``{prefix}-0..n`` to an account."""
    rows = [
        Transaction(
            account_id=account.id,
            remote_transaction_id=f"{prefix}-{i}",
            date=start + timedelta(days=i),
            name=f"Purchase {i}",
            amount=amount,
        )
        for i in range(count)
    ]
    db.add_all(rows)
    db.commit()
    return rows


def add_balances(
    db: Session,
    account: Account,
    count: int,
    current: Decimal = Decimal("100.00"),
    latest: datetime | None = None,
) -> list[Balance]:
    """Add ``count`` daily balance snapshots ending at ``latest``."""
    latest = latest or datetime(2026, 1, 10, tzinfo=timezone.utc)
    rows = [
        Balance(account_id=account.id, current=current, date=latest - timedelta(days=i))
        for i in range(count)
    ]
    db.add_all(rows)
    db.commit()
    return rows


@pytest.fixture
def connection(db: Session) -> InstitutionConnection:
    """Create an active Plaid connection for testing."""
    return create_connection(db)


@pytest.fixture
def account(db: Session, connection: InstitutionConnection) -> Account:
    """Create a checking account for testing."""
    return create_account(db, connection, "acc-checking")


@pytest.fixture
def savings_account(db: Session, connection: InstitutionConnection) -> Account:
    """Create a savings account for testing."""
    return create_account(
        db, connection, "acc-savings", name="Savings", subtype="savings", mask="5678"
    )


@pytest.fixture
def credit_account(db: Session, connection: InstitutionConnection) -> Account:
    """Create a credit card account with sign inversion for testing."""
    return create_account(
        db,
        connection,
        "acc-credit",
        name="Rewards Card",
        type="credit",
        subtype="credit card",
        mask="9999",
        invert_transactions=True,
    )
