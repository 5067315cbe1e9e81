"""Unit tests for DuplicateService."""

import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from models import Account, Balance, Transaction
from services.duplicate_service import DuplicateGroup, DuplicateService, identity_key
from tests.fixtures import add_balances, add_transactions, create_account, create_connection
from tests.fixtures.mocks import make_remote_account

BASE = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def linked_twice(db):
    """One checking account linked under an old and a new connection.

    The old row has 3 transactions and 2 balances, the new one 2 and 1,
    with more recent activity.
    """
    old_conn = create_connection(db, item_id="item-old", access_token="access-old")
    new_conn = create_connection(db, item_id="item-new", access_token="access-new")
    old = create_account(db, old_conn, "old123", created_at=BASE)
    new = create_account(db, new_conn, "new456", created_at=BASE + timedelta(days=30))
    add_transactions(db, old, 3, prefix="old")
    add_balances(db, old, 2)
    add_transactions(db, new, 2, prefix="new", start=date(2026, 2, 1))
    add_balances(db, new, 1, latest=datetime(2026, 2, 2, tzinfo=timezone.utc))
    return old, new


def _count(db, model, account_id):
    return db.query(model).filter(model.account_id == account_id).count()


# ---------------------------------------------------------------------------
# Identity key
# ---------------------------------------------------------------------------


def test_identity_key_with_mask():
    acct = make_remote_account("a", name="Everyday Checking", mask="1234")
    assert identity_key(acct) == "depository_checking_everyday checking_1234"


def test_identity_key_without_mask():
    acct = make_remote_account("a", name=" Savings ", subtype="Savings", mask=None)
    assert identity_key(acct) == "depository_savings_savings"


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


def test_detects_masked_group(db, linked_twice):
    old, new = linked_twice

    groups = DuplicateService.detect_duplicates(db, "ins_1")

    assert len(groups) == 1
    group = groups[0]
    assert set(group.account_ids) == {old.id, new.id}
    assert group.mask == "1234"
    assert group.should_merge is True


def test_no_duplicates(db, account, savings_account):
    assert DuplicateService.detect_duplicates(db, "ins_1") == []


def test_archived_accounts_are_not_duplicates(db, linked_twice):
    old, _ = linked_twice
    old.archived = True
    db.commit()

    assert DuplicateService.detect_duplicates(db, "ins_1") == []


def test_other_institutions_are_separate(db):
    conn_a = create_connection(db, item_id="item-a", institution_id="ins_a")
    conn_b = create_connection(db, item_id="item-b", institution_id="ins_b")
    create_account(db, conn_a, "a-1")
    create_account(db, conn_b, "b-1")

    assert DuplicateService.detect_duplicates(db, "ins_a") == []


def test_unmasked_group_is_reported_not_merged(db, caplog):
    conn_a = create_connection(db, item_id="item-a")
    conn_b = create_connection(db, item_id="item-b")
    create_account(db, conn_a, "a-1", mask=None)
    create_account(db, conn_b, "b-1", mask=None)

    with caplog.at_level(logging.INFO, logger="services.duplicate_service"):
        groups = DuplicateService.detect_duplicates(db, "ins_1")

    assert len(groups) == 1
    assert groups[0].mask is None
    assert groups[0].should_merge is False
    assert "not auto-merged" in caplog.text


# ---------------------------------------------------------------------------
# Survivor choice
# ---------------------------------------------------------------------------


def test_survivor_is_most_recently_active(db, linked_twice):
    old, new = linked_twice
    assert DuplicateService.choose_survivor(db, [old, new]).id == new.id


def test_survivor_uses_last_sync_time(db, linked_twice):
    old, new = linked_twice
    old.last_sync_time = datetime(2026, 3, 1, tzinfo=timezone.utc)
    db.commit()

    assert DuplicateService.choose_survivor(db, [old, new]).id == old.id


def test_survivor_tie_goes_to_earliest_created(db):
    conn_a = create_connection(db, item_id="item-a")
    conn_b = create_connection(db, item_id="item-b")
    later = create_account(db, conn_a, "a-1", created_at=BASE + timedelta(days=1))
    earlier = create_account(db, conn_b, "b-1", created_at=BASE)

    assert DuplicateService.choose_survivor(db, [later, earlier]).id == earlier.id


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def test_merge_moves_history_to_survivor(db, linked_twice):
    old, new = linked_twice
    group = DuplicateService.detect_duplicates(db, "ins_1")[0]

    result = DuplicateService.merge(db, group)

    assert result.survivor_id == new.id
    assert result.archived_ids == [old.id]
    assert result.transactions_moved == 3
    assert result.balances_moved == 2
    assert _count(db, Transaction, new.id) == 5
    assert _count(db, Balance, new.id) == 3
    assert _count(db, Transaction, old.id) == 0
    loser = db.get(Account, old.id)
    assert loser is not None
    assert loser.archived is True
    assert loser.remote_account_id == "old123"


def test_merge_is_idempotent(db, linked_twice):
    old, new = linked_twice
    group = DuplicateService.detect_duplicates(db, "ins_1")[0]
    DuplicateService.merge(db, group)

    again = DuplicateService.merge(db, group)

    assert again.archived_ids == []
    assert again.affected_rows == 0
    assert _count(db, Transaction, new.id) == 5
    assert DuplicateService.detect_duplicates(db, "ins_1") == []


def test_merge_drops_colliding_transactions(db, linked_twice):
    old, new = linked_twice
    add_transactions(db, old, 1, prefix="shared")
    add_transactions(db, new, 1, prefix="shared")
    group = DuplicateService.detect_duplicates(db, "ins_1")[0]

    result = DuplicateService.merge(db, group)

    assert result.transactions_dropped == 1
    assert result.transactions_moved == 3
    ids = [
        r for (r,) in db.query(Transaction.remote_transaction_id).filter_by(account_id=new.id)
    ]
    assert ids.count("shared-0") == 1
    assert len(ids) == 6


def test_unmasked_merge_requires_explicit_permission(db):
    conn_a = create_connection(db, item_id="item-a")
    conn_b = create_connection(db, item_id="item-b")
    first = create_account(db, conn_a, "a-1", mask=None, created_at=BASE)
    second = create_account(db, conn_b, "b-1", mask=None, created_at=BASE + timedelta(days=1))
    group = DuplicateService.detect_duplicates(db, "ins_1")[0]

    with pytest.raises(ValueError):
        DuplicateService.merge(db, group)
    assert db.get(Account, second.id).archived is False

    result = DuplicateService.merge(db, group, allow_unmasked=True)

    assert result.survivor_id == first.id
    assert db.get(Account, second.id).archived is True


def test_merge_institution_skips_unmasked_groups(db, linked_twice):
    old, new = linked_twice
    conn = create_connection(db, item_id="item-x")
    create_account(db, conn, "x-1", name="Savings", subtype="savings", mask=None)
    create_account(db, conn, "x-2", name="Savings", subtype="savings", mask=None)

    results = DuplicateService.merge_institution(db, "ins_1")

    assert len(results) == 1
    assert results[0].survivor_id == new.id
    remaining = DuplicateService.detect_duplicates(db, "ins_1")
    assert [g.should_merge for g in remaining] == [False]


def test_merge_of_stale_group_is_noop(db, account):
    group = DuplicateGroup(
        institution_id="ins_1", key="k", account_ids=[account.id, "gone"], mask="1234"
    )

    result = DuplicateService.merge(db, group)

    assert result.survivor_id == account.id
    assert result.archived_ids == []
