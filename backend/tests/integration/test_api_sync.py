"""Integration tests for sync API endpoints."""

from integrations.exceptions import ProviderAuthError
from models import Account, ManualSyncRequest, Transaction
from services.transaction_sync_service import TransactionSyncService
from tests.fixtures import create_account, create_connection
from tests.fixtures.mocks import make_page, make_remote_txn


def _script_checking(mock_plaid, count=2):
    mock_plaid.script(
        "acc-checking",
        make_page(
            "cursor-1",
            added=[make_remote_txn(f"t{i}", "acc-checking", day=i + 1) for i in range(count)],
        ),
    )


def test_sync_returns_camel_case_summary(client, db, account, mock_plaid):
    _script_checking(mock_plaid)

    response = client.post("/api/sync")

    assert response.status_code == 200
    data = response.json()
    assert data["synced"] == 1
    assert data["totalTransactions"] == 2
    assert data["cancelled"] is False
    result = data["results"][0]
    assert result["accountId"] == account.id
    assert result["accountName"] == "Checking"
    assert result["cursorAdvanced"] is True
    assert result["forced"] is True
    assert db.query(Transaction).filter_by(account_id=account.id).count() == 2


def test_account_failures_do_not_fail_the_request(client, db, account, savings_account, mock_plaid):
    for remote_id in ("acc-checking", "acc-savings"):
        mock_plaid.script(
            remote_id,
            ProviderAuthError("login required", "Plaid", error_code="ITEM_LOGIN_REQUIRED"),
        )

    response = client.post("/api/sync")

    assert response.status_code == 200
    data = response.json()
    assert data["errors"] == 2
    assert {r["errorCategory"] for r in data["results"]} == {"auth"}


def test_sixth_manual_sync_is_rate_limited(client, db, account):
    for _ in range(5):
        assert client.post("/api/sync").status_code == 200

    response = client.post("/api/sync")

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["error"] == "rate_limited"
    assert detail["limit"] == 5
    assert detail["count"] == 5
    assert detail["remaining"] == 0
    assert detail["resetTime"] is not None
    assert int(response.headers["Retry-After"]) > 0
    assert db.query(ManualSyncRequest).count() == 5


def test_scheduled_sync_is_not_rate_limited(client, db, account):
    for _ in range(7):
        response = client.post("/api/sync", json={"manual": False})
        assert response.status_code == 200
    assert db.query(ManualSyncRequest).count() == 0


def test_scheduled_sync_skips_recent_accounts(client, db, account, mock_plaid):
    _script_checking(mock_plaid)
    client.post("/api/sync", json={"manual": False})

    response = client.post("/api/sync", json={"manual": False})

    result = response.json()["results"][0]
    assert result["status"] == "skipped"
    assert result["error"] == "synced recently"


def test_limit_endpoint(client, db, account):
    client.post("/api/sync")

    response = client.get("/api/sync/limit")

    assert response.status_code == 200
    data = response.json()
    assert data["allowed"] is True
    assert data["count"] == 1
    assert data["remaining"] == 4
    assert data["resetTime"] is not None


def test_limit_is_per_user(client, db, account):
    client.post("/api/sync", headers={"X-User-Id": "alice"})

    assert client.get("/api/sync/limit").json()["count"] == 0
    assert client.get("/api/sync/limit", headers={"X-User-Id": "alice"}).json()["count"] == 1


def test_sync_only_current_users_accounts(client, db, account):
    bob_connection = create_connection(db, item_id="item-bob", user_id="bob")
    bobs = create_account(db, bob_connection, "acc-bob", mask="2222")

    response = client.post("/api/sync", headers={"X-User-Id": "bob"})

    assert [r["accountId"] for r in response.json()["results"]] == [bobs.id]


def test_sync_in_progress_returns_409(client, db, account):
    TransactionSyncService._sync_lock.acquire()
    try:
        response = client.post("/api/sync")
    finally:
        TransactionSyncService._sync_lock.release()

    assert response.status_code == 409
    assert "already in progress" in response.json()["detail"]
    assert db.query(ManualSyncRequest).count() == 0


def test_force_resync(client, db, account, mock_plaid):
    account.sync_cursor = "cursor-0"
    db.commit()
    _script_checking(mock_plaid)

    response = client.post("/api/sync/force-resync")

    assert response.status_code == 200
    assert response.json()["results"][0]["forced"] is True
    assert mock_plaid.cursors_requested("acc-checking") == [None]


# ---------------------------------------------------------------------------
# Single account
# ---------------------------------------------------------------------------


def test_sync_single_account(client, db, account, savings_account, mock_plaid):
    _script_checking(mock_plaid, count=3)

    response = client.post(f"/api/sync/accounts/{account.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["synced"] == 1
    assert data["totalTransactions"] == 3
    assert [r["accountId"] for r in data["results"]] == [account.id]
    assert mock_plaid.cursors_requested("acc-savings") == []


def test_sync_single_account_not_found(client):
    response = client.post("/api/sync/accounts/nonexistent")

    assert response.status_code == 404
    assert response.json()["detail"] == "Account not found"


def test_sync_archived_account_is_rejected(client, db, account):
    account.archived = True
    db.commit()

    response = client.post(f"/api/sync/accounts/{account.id}")

    assert response.status_code == 400
    assert "account is archived" in response.json()["detail"]
    assert db.query(ManualSyncRequest).count() == 0


def test_sync_status(client, db, account, mock_plaid):
    _script_checking(mock_plaid)
    client.post(f"/api/sync/accounts/{account.id}")

    response = client.get(f"/api/sync/accounts/{account.id}/status")

    assert response.status_code == 200
    data = response.json()
    assert data["accountId"] == account.id
    assert data["hasCursor"] is True
    assert data["lastSyncStatus"] == "success"
    assert data["needsSync"] is False
    assert data["activityLevel"] == "high"
    assert data["eligible"] is True


def test_sync_status_not_found(client):
    assert client.get("/api/sync/accounts/missing/status").status_code == 404


def test_sync_status_reports_reauth(client, db, account, connection):
    connection.requires_reauth = True
    db.commit()

    data = client.get(f"/api/sync/accounts/{account.id}/status").json()

    assert data["eligible"] is False
    assert data["ineligibilityReason"] == "connection requires re-authentication"
    assert db.get(Account, account.id) is not None
