"""Pytest configuration and fixtures."""

import threading

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from api.plaid import _get_plaid_client
from api.sync import get_sync_service
from database import Base, configure_sqlite, get_db
from main import app
from services.retry_policy import RetryPolicy
from services.transaction_sync_service import TransactionSyncService
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    account,
    connection,
    credit_account,
    savings_account,
)
from tests.fixtures.mocks import MockPlaidClient


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """Create an in-memory SQLite database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="file_session_factory")
def file_session_factory_fixture(tmp_path):
    """A file-backed database that several threads or sessions can share."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    configure_sqlite(engine)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture(name="mock_plaid")
def mock_plaid_fixture():
    """A scripted Plaid client with no accounts or transactions."""
    return MockPlaidClient()


@pytest.fixture(name="make_sync_service")
def make_sync_service_fixture(mock_plaid, session_factory):
    """Factory for a TransactionSyncService wired to the mock client.

    Runs inline with no retry delay and a private cancellation event so
    tests never touch the process-wide shutdown flag.
    """

    def factory(**kwargs):
        kwargs.setdefault("client", mock_plaid)
        kwargs.setdefault("session_factory", session_factory)
        kwargs.setdefault("max_workers", 1)
        kwargs.setdefault("retry_policy", RetryPolicy.no_retry())
        kwargs.setdefault("cancel_event", threading.Event())
        kwargs.setdefault("sleep", lambda seconds: None)
        return TransactionSyncService(**kwargs)

    return factory


@pytest.fixture(name="client")
def client_fixture(db, mock_plaid, make_sync_service):
    """Create a test client with the test database and mock Plaid client."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_sync_service():
        return make_sync_service()

    def override_get_plaid_client():
        return mock_plaid

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_service] = override_get_sync_service
    app.dependency_overrides[_get_plaid_client] = override_get_plaid_client
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
