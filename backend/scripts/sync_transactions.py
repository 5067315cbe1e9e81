#!/usr/bin/env python
"""Scheduled transaction sync.

Runs an automatic batch sync of every eligible account. Automatic runs are
not counted against the manual sync limit and skip accounts synced within
the auto-sync threshold unless ``--force`` is given. SIGINT/SIGTERM finish
the accounts already in flight and start no new ones.

Exit status is 1 when any account errored, 0 otherwise.

Usage:
    python -m scripts.sync_transactions
    python -m scripts.sync_transactions --force
    python -m scripts.sync_transactions --account ACCOUNT_ID --account OTHER_ID
    python -m scripts.sync_transactions --workers 1
    python -m scripts.sync_transactions --verbose
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from database import get_session_local, init_db
from logging_config import setup_logging
from services.exceptions import SyncInProgressError
from services.transaction_sync_service import (
    BatchSyncResult,
    TransactionSyncService,
)

logger = logging.getLogger(__name__)


def install_signal_handlers() -> None:
    """Turn SIGINT/SIGTERM into a cooperative batch cancellation."""

    def handle(signum, frame):
        logger.warning("Received %s; finishing in-flight accounts", signal.Signals(signum).name)
        TransactionSyncService.request_shutdown()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def print_summary(batch: BatchSyncResult) -> None:
    print("-" * 60)
    for r in batch.results:
        line = f"  [{r.status:<7}] {r.account_name} ({r.account_id})"
        if r.status == "success":
            line += f": {r.downloaded} new, {r.modified} modified, {r.removed} removed"
            if r.forced:
                line += " (full resync)"
        elif r.error:
            line += f": {r.error}"
        print(line)
    print("-" * 60)
    print(
        f"Synced: {batch.synced}  Skipped: {batch.skipped}  Errors: {batch.errors}  "
        f"Transactions: {batch.total_transactions}"
    )
    if batch.cancelled:
        print("Batch was cancelled before every account was synced.")


def main(
    argv: list[str] | None = None,
    service: TransactionSyncService | None = None,
    session_factory=None,
) -> int:
    """Entry point: parse args, run the batch, return the exit status."""
    parser = argparse.ArgumentParser(
        description="Sync transactions for every eligible account.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Discard cursors and download full history",
    )
    parser.add_argument(
        "--account",
        "-a",
        action="append",
        dest="account_ids",
        metavar="ACCOUNT_ID",
        help="Only sync this account (repeatable)",
    )
    parser.add_argument(
        "--workers",
        "-w",
        type=int,
        default=None,
        help="Concurrent accounts (default: SYNC_MAX_WORKERS)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log at DEBUG regardless of LOG_LEVEL",
    )
    args = parser.parse_args(argv)

    if service is None:
        setup_logging("DEBUG" if args.verbose else None)
        init_db()
        install_signal_handlers()
        service = TransactionSyncService(max_workers=args.workers)

    SessionLocal = session_factory or get_session_local()
    db = SessionLocal()
    try:
        batch = service.sync_accounts(
            db,
            account_ids=args.account_ids,
            force_full_resync=args.force,
            skip_recent=not args.force,
        )
    except SyncInProgressError:
        print("Error: another sync is already in progress")
        return 1
    finally:
        db.close()

    print_summary(batch)
    return 1 if batch.errors else 0


if __name__ == "__main__":
    sys.exit(main())
