"""Database setup and session management."""

import logging
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def configure_sqlite(engine) -> None:
    """Register SQLite connection listeners on ``engine``.

    - ``PRAGMA foreign_keys=ON`` so ``ON DELETE CASCADE`` works on purge.
    - pysqlite's implicit transaction handling is disabled and SQLAlchemy
      emits ``BEGIN`` itself, so ``Session.begin_nested()`` savepoints roll
      back correctly inside the enclosing transaction.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@lru_cache
def get_engine():
    """Get or create the database engine (cached)."""
    connect_args = {}
    database_url = settings.DATABASE_URL

    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=False,
    )
    if database_url.startswith("sqlite"):
        configure_sqlite(engine)

    return engine


def get_session_local():
    """Get a sessionmaker bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db(engine=None) -> None:
    """Create all tables that do not exist yet."""
    import models  # noqa: F401  (registers mappers on Base.metadata)

    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready")


def get_db():
    """Dependency that provides a database session.

    Transaction conventions:
    - Default: services ``flush()``, API layer ``commit()``
    - Exceptions that commit internally:
      - ``TransactionSyncService.sync_account()``: one transaction per account
        (data, cursor and download log commit together)
      - ``DuplicateService.merge()`` and ``ReconciliationService.reconcile()``:
        all-or-nothing per institution
      - ``CallLedger.record()``: its own session so audit rows survive a
        caller's rollback
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
