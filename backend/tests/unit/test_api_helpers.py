"""Tests for shared API helpers."""

from unittest.mock import patch

import pytest
from fastapi import HTTPException

from api.helpers import get_current_user_id, get_or_404, sync_summary_dict
from integrations.provider_protocol import ErrorCategory
from models import Account, InstitutionConnection
from services.transaction_sync_service import AccountSyncResult, BatchSyncResult


class TestGetOr404:
    """Tests for get_or_404."""

    def test_returns_entity(self, db, account):
        """Returns the entity when it exists."""
        result = get_or_404(db, Account, account.id, "Account not found")
        assert result.id == account.id
        assert result.name == "Checking"

    def test_raises_404_when_missing(self, db):
        """Raises HTTPException 404 when the entity doesn't exist."""
        with pytest.raises(HTTPException) as exc_info:
            get_or_404(db, Account, "nonexistent-id", "Account not found")
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Account not found"

    def test_works_with_different_models(self, db, connection):
        """Works with InstitutionConnection model."""
        result = get_or_404(db, InstitutionConnection, connection.id)
        assert result.item_id == "item-1"


class TestGetCurrentUserId:
    def test_header_value(self):
        assert get_current_user_id(" alice ") == "alice"

    def test_falls_back_to_default_user(self):
        with patch("api.helpers.settings") as mock_settings:
            mock_settings.DEFAULT_USER_ID = "owner"
            assert get_current_user_id(None) == "owner"
            assert get_current_user_id("   ") == "owner"


class TestSyncSummaryDict:
    def test_counts_and_results(self):
        batch = BatchSyncResult(
            results=[
                AccountSyncResult(
                    account_id="a-1", account_name="Checking", status="success",
                    downloaded=7, modified=2, removed=1, cursor_advanced=True,
                ),
                AccountSyncResult(
                    account_id="a-2", account_name="Card", status="error",
                    error="login required", error_category=ErrorCategory.AUTH,
                ),
                AccountSyncResult(
                    account_id="a-3", account_name="Old", status="skipped",
                    error="account is archived",
                ),
            ],
        )

        summary = sync_summary_dict(batch)

        assert summary["synced"] == 1
        assert summary["errors"] == 1
        assert summary["skipped"] == 1
        assert summary["total_transactions"] == 7
        assert summary["cancelled"] is False
        first, second, third = summary["results"]
        assert first["cursor_advanced"] is True
        assert first["error_category"] is None
        assert second["error_category"] == "auth"
        assert third["error"] == "account is archived"

    def test_empty_batch(self):
        summary = sync_summary_dict(BatchSyncResult(cancelled=True))
        assert summary["results"] == []
        assert summary["cancelled"] is True
