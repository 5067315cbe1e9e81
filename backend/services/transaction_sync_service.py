"""Transaction sync service - cursor-based transaction download per account.

One account sync fetches every page of the provider delta first, without
touching the database, then applies upserts, deletions, the advanced
cursor and the DownloadLog row in a single commit. A failure on any page
leaves the stored cursor exactly where it was, so the next attempt replays
the same delta; upserts keyed by remote transaction id make the replay
idempotent.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import ProviderAPIError, ProviderDataError, ProviderError
from integrations.provider_protocol import (
    AccountProviderClient,
    CallContext,
    ErrorCategory,
    RemoteTransaction,
    TransactionSyncPage,
    classify_error,
)
from models import Account, DownloadLog, InstitutionConnection, Transaction
from services.eligibility import (
    activity_level,
    ineligibility_reason,
    needs_force_sync,
    needs_sync,
    time_since_sync,
)
from services.exceptions import AccountNotEligibleError, SyncInProgressError
from services.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

MUTATION_DURING_PAGINATION = "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"

# Upper bound on pages per invocation; a provider that never clears has_more
# would otherwise loop forever.
MAX_PAGES = 1000

# Worker threads show up as sync_0, sync_1 in log lines.
SYNC_THREAD_PREFIX = "sync"

_IN_CHUNK = 500


@dataclass
class AccountSyncResult:
    """Outcome of syncing one account."""

    account_id: str
    account_name: str
    status: str  # "success" | "error" | "skipped"
    downloaded: int = 0
    modified: int = 0
    removed: int = 0
    cursor_advanced: bool = False
    forced: bool = False
    error: str | None = None
    error_category: ErrorCategory | None = None
    retriable: bool = False
    attempts: int = 1


@dataclass
class BatchSyncResult:
    """Per-account results of a batch sync. Never raised, always returned."""

    results: list[AccountSyncResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def synced(self) -> int:
        return sum(1 for r in self.results if r.status == "success")

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == "skipped")

    @property
    def errors(self) -> int:
        return sum(1 for r in self.results if r.status == "error")

    @property
    def total_transactions(self) -> int:
        return sum(r.downloaded for r in self.results)


@dataclass
class SyncStatus:
    account_id: str
    last_sync_time: datetime | None
    last_sync_status: str | None
    last_sync_error: str | None
    has_cursor: bool
    hours_since_sync: float | None
    needs_sync: bool
    needs_force_sync: bool
    activity_level: str
    eligible: bool
    ineligibility_reason: str | None


@dataclass
class _SyncInputs:
    """Values read from the session before remote I/O begins."""

    account_id: str
    account_name: str
    remote_account_id: str
    connection_id: str
    access_token: str
    cursor_before: str | None
    invert: bool
    context: CallContext


class TransactionSyncService:
    """Drives incremental and forced transaction downloads."""

    # Class-level lock shared across all instances so only one batch runs per
    # process. Single-process deployments only; multiple workers need a
    # database or file lock.
    _sync_lock = threading.Lock()

    # Serializes the database apply phase across worker threads. Remote
    # fetches run in parallel; SQLite allows one writer at a time.
    _apply_lock = threading.Lock()

    # Set on process shutdown. Batches finish the in-flight accounts and start
    # no new ones.
    _shutdown_event = threading.Event()

    def __init__(
        self,
        client: AccountProviderClient | None = None,
        session_factory=None,
        max_workers: int | None = None,
        retry_policy: RetryPolicy | None = None,
        auto_sync_threshold: timedelta | None = None,
        force_sync_threshold: timedelta | None = None,
        stalled_threshold: int | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize with optional collaborators for dependency injection.

        Args:
            client: Remote provider client. Defaults to a ledger-backed
                PlaidClient created on first use.
            session_factory: Creates the per-worker sessions used when
                ``max_workers > 1``.
            max_workers: Bounded worker pool size for batch syncs.
            retry_policy: Retry rounds for transient failures in batches.
            auto_sync_threshold: Automatic batches skip accounts synced more
                recently than this.
            force_sync_threshold: Accounts not synced for this long (or never)
                get a full resync.
            stalled_threshold: Consecutive no-progress syncs before warning.
            cancel_event: Overrides the process-wide shutdown event.
            sleep: Waits between retry rounds (tests pass a no-op).
            clock: Returns the current UTC time.
        """
        self._client = client
        self._session_factory = session_factory
        self.max_workers = max_workers if max_workers is not None else settings.SYNC_MAX_WORKERS
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.auto_sync_threshold = auto_sync_threshold or timedelta(
            hours=settings.AUTO_SYNC_THRESHOLD_HOURS
        )
        self.force_sync_threshold = force_sync_threshold or timedelta(
            days=settings.FORCE_SYNC_THRESHOLD_DAYS
        )
        self.stalled_threshold = stalled_threshold or settings.STALLED_SYNC_THRESHOLD
        self._cancel_event = cancel_event or self._shutdown_event
        self._sleep = sleep or self._interruptible_sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._halted_lock = threading.Lock()

    @classmethod
    def is_sync_in_progress(cls) -> bool:
        """Check if a batch sync is currently in progress."""
        acquired = cls._sync_lock.acquire(blocking=False)
        if acquired:
            cls._sync_lock.release()
            return False
        return True

    @classmethod
    def request_shutdown(cls) -> None:
        """Ask running batches to stop after their in-flight accounts."""
        cls._shutdown_event.set()

    @classmethod
    def reset_shutdown(cls) -> None:
        cls._shutdown_event.clear()

    @property
    def client(self) -> AccountProviderClient:
        """Get the provider client, creating the default if not provided."""
        if self._client is None:
            from integrations.plaid_client import PlaidClient
            from services.call_ledger import CallLedger

            self._client = PlaidClient(ledger=CallLedger(self._session_factory))
        return self._client

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _interruptible_sleep(self, seconds: float) -> None:
        self._cancel_event.wait(seconds)

    def _new_session(self) -> Session:
        if self._session_factory is None:
            from database import get_session_local

            self._session_factory = get_session_local()
        return self._session_factory()

    # ------------------------------------------------------------------
    # Single account
    # ------------------------------------------------------------------

    def sync_account(
        self,
        db: Session,
        account: Account,
        force_full_resync: bool = False,
    ) -> AccountSyncResult:
        """Download new, modified and removed transactions for one account.

        Commits internally: transaction rows, the advanced cursor and the
        DownloadLog row land in one commit, or none of them do.

        Args:
            db: Database session.
            account: The account to sync.
            force_full_resync: Ignore the stored cursor and request the full
                history. Also applies when the account has never synced.

        Returns:
            AccountSyncResult with ``status`` "success" or "error". Provider
            errors, including credential errors, are reported in the result
            rather than raised.

        Raises:
            AccountNotEligibleError: If the account is archived, hidden,
                manual, or its connection is not active.
        """
        reason = ineligibility_reason(account)
        if reason:
            raise AccountNotEligibleError(account.id, reason)

        connection = account.connection
        inputs = _SyncInputs(
            account_id=account.id,
            account_name=account.display_name,
            remote_account_id=account.remote_account_id,
            connection_id=connection.id,
            access_token=connection.access_token,
            cursor_before=account.sync_cursor,
            invert=bool(account.invert_transactions),
            context=CallContext(
                institution_id=connection.institution_id,
                account_id=account.id,
                user_id=account.user_id,
            ),
        )
        forced = force_full_resync or not inputs.cursor_before
        start_cursor = None if forced else inputs.cursor_before

        # Release read locks before remote I/O.
        db.commit()

        logger.info(
            "Syncing transactions for %s (%s)%s",
            inputs.account_name, inputs.account_id, " [full resync]" if forced else "",
        )

        try:
            pages, next_cursor = self._fetch_all_pages(inputs, start_cursor)
        except Exception as exc:
            return self._record_failure(db, inputs, forced, exc)

        with self._apply_lock:
            try:
                result = self._apply(db, inputs, pages, next_cursor, forced)
            except Exception as exc:
                db.rollback()
                return self._record_failure(db, inputs, forced, exc, locked=True)
            self._check_stalled(db, inputs)
        return result

    def _fetch_all_pages(
        self, inputs: _SyncInputs, start_cursor: str | None
    ) -> tuple[list[TransactionSyncPage], str]:
        """Fetch pages until ``has_more`` is false. No database access.

        Restarts once from ``start_cursor`` if the provider reports that the
        data changed mid-pagination; buffered pages are discarded.
        """
        for attempt in (1, 2):
            pages: list[TransactionSyncPage] = []
            cursor = start_cursor
            try:
                while True:
                    page = self.client.sync_transactions(
                        inputs.access_token,
                        cursor,
                        account_id=inputs.remote_account_id,
                        context=inputs.context,
                    )
                    pages.append(page)
                    cursor = page.next_cursor
                    if not page.has_more:
                        return pages, cursor
                    if len(pages) >= MAX_PAGES:
                        raise ProviderDataError(
                            f"Transaction sync exceeded {MAX_PAGES} pages",
                            "Plaid",
                        )
            except ProviderAPIError as exc:
                if exc.error_code == MUTATION_DURING_PAGINATION and attempt == 1:
                    logger.info(
                        "Transactions changed during pagination for %s, restarting",
                        inputs.account_id,
                    )
                    continue
                raise
        raise AssertionError("unreachable")

    def _apply(
        self,
        db: Session,
        inputs: _SyncInputs,
        pages: list[TransactionSyncPage],
        next_cursor: str,
        forced: bool,
    ) -> AccountSyncResult:
        """Apply fetched pages, advance the cursor and log, in one commit."""
        upserts, added_ids, removed_ids = self._collapse_pages(
            pages, inputs.remote_account_id
        )

        existing = self._existing_transactions(db, inputs.account_id, upserts.keys())
        added = modified = 0
        dates: list[date] = []
        for remote in upserts.values():
            amount = -remote.amount if inputs.invert else remote.amount
            dates.append(remote.date)
            row = existing.get(remote.id)
            if row is not None:
                self._update_row(row, remote, amount)
            else:
                self._insert_row(db, inputs.account_id, remote, amount)
            if remote.id in added_ids:
                added += 1
            else:
                modified += 1

        removed = self._delete_removed(db, inputs.account_id, removed_ids)

        account = db.get(Account, inputs.account_id)
        now = self._clock()
        account.sync_cursor = next_cursor
        account.last_sync_time = now
        account.last_sync_status = "success"
        account.last_sync_error = None

        db.add(DownloadLog(
            account_id=inputs.account_id,
            start_date=min(dates) if dates else None,
            end_date=max(dates) if dates else None,
            num_transactions=added,
            num_modified=modified,
            num_removed=removed,
            cursor_before=inputs.cursor_before,
            cursor_after=next_cursor,
            forced=forced,
            status="success",
            created_at=now,
        ))
        db.commit()

        logger.info(
            "Synced %s: %d added, %d modified, %d removed",
            inputs.account_name, added, modified, removed,
        )
        return AccountSyncResult(
            account_id=inputs.account_id,
            account_name=inputs.account_name,
            status="success",
            downloaded=added + modified,
            modified=modified,
            removed=removed,
            cursor_advanced=next_cursor != inputs.cursor_before,
            forced=forced,
        )

    @staticmethod
    def _collapse_pages(
        pages: list[TransactionSyncPage], remote_account_id: str
    ) -> tuple[dict[str, RemoteTransaction], set[str], set[str]]:
        """Reduce pages to final upserts and deletions; later pages win.

        Deltas for other accounts under the same item are ignored.
        """
        upserts: dict[str, RemoteTransaction] = {}
        added_ids: set[str] = set()
        removed_ids: set[str] = set()

        def ours(account_id: str | None) -> bool:
            return not account_id or account_id == remote_account_id

        for page in pages:
            for remote in page.added:
                if ours(remote.account_id):
                    upserts[remote.id] = remote
                    added_ids.add(remote.id)
                    removed_ids.discard(remote.id)
            for remote in page.modified:
                if ours(remote.account_id):
                    upserts[remote.id] = remote
                    removed_ids.discard(remote.id)
            for gone in page.removed:
                if ours(gone.account_id):
                    removed_ids.add(gone.id)
                    upserts.pop(gone.id, None)
        return upserts, added_ids, removed_ids

    @staticmethod
    def _existing_transactions(
        db: Session, account_id: str, remote_ids: Iterable[str]
    ) -> dict[str, Transaction]:
        ids = list(remote_ids)
        found: dict[str, Transaction] = {}
        for i in range(0, len(ids), _IN_CHUNK):
            chunk = ids[i:i + _IN_CHUNK]
            for row in db.query(Transaction).filter(
                Transaction.account_id == account_id,
                Transaction.remote_transaction_id.in_(chunk),
            ):
                found[row.remote_transaction_id] = row
        return found

    @staticmethod
    def _update_row(row: Transaction, remote: RemoteTransaction, amount: Decimal) -> None:
        row.date = remote.date
        row.authorized_date = remote.authorized_date
        row.name = remote.name
        row.merchant_name = remote.merchant_name
        row.amount = amount
        row.iso_currency_code = remote.iso_currency_code
        row.pending = remote.pending
        row.category = remote.category
        row.personal_finance_category = remote.personal_finance_category
        row.payment_channel = remote.payment_channel

    def _insert_row(
        self, db: Session, account_id: str, remote: RemoteTransaction, amount: Decimal
    ) -> None:
        """Insert one transaction; on a unique-key collision update the existing row."""
        row = Transaction(account_id=account_id, remote_transaction_id=remote.id)
        self._update_row(row, remote, amount)
        try:
            with db.begin_nested():
                db.add(row)
                db.flush()
        except IntegrityError:
            logger.warning(
                "Transaction %s already exists for account %s, updating instead",
                remote.id, account_id,
            )
            existing = (
                db.query(Transaction)
                .filter_by(account_id=account_id, remote_transaction_id=remote.id)
                .one()
            )
            self._update_row(existing, remote, amount)

    @staticmethod
    def _delete_removed(db: Session, account_id: str, removed_ids: set[str]) -> int:
        ids = list(removed_ids)
        deleted = 0
        for i in range(0, len(ids), _IN_CHUNK):
            deleted += (
                db.query(Transaction)
                .filter(
                    Transaction.account_id == account_id,
                    Transaction.remote_transaction_id.in_(ids[i:i + _IN_CHUNK]),
                )
                .delete(synchronize_session=False)
            )
        return deleted

    def _record_failure(
        self,
        db: Session,
        inputs: _SyncInputs,
        forced: bool,
        exc: Exception,
        locked: bool = False,
    ) -> AccountSyncResult:
        """Write a failed DownloadLog, flag the connection on credential errors.

        The stored cursor is never touched here.
        """
        category = classify_error(exc)
        retriable = bool(getattr(exc, "retriable", False))
        message = str(exc) or type(exc).__name__

        if category == ErrorCategory.AUTH:
            logger.warning(
                "Credential error for connection %s (institution %s) while syncing %s: %s",
                inputs.connection_id, inputs.context.institution_id, inputs.account_id, message,
            )
        elif isinstance(exc, ProviderError):
            logger.warning(
                "Sync failed for %s (%s) [%s]: %s",
                inputs.account_name, inputs.account_id, category.value, message,
            )
        else:
            logger.error(
                "Unexpected error syncing account %s (institution %s) at %s",
                inputs.account_id, inputs.context.institution_id, self._clock().isoformat(),
                exc_info=exc,
            )

        if locked:
            self._write_failure(db, inputs, forced, exc, category, message)
        else:
            with self._apply_lock:
                self._write_failure(db, inputs, forced, exc, category, message)

        return AccountSyncResult(
            account_id=inputs.account_id,
            account_name=inputs.account_name,
            status="error",
            forced=forced,
            error=message,
            error_category=category,
            retriable=retriable,
        )

    def _write_failure(
        self,
        db: Session,
        inputs: _SyncInputs,
        forced: bool,
        exc: Exception,
        category: ErrorCategory,
        message: str,
    ) -> None:
        try:
            account = db.get(Account, inputs.account_id)
            account.last_sync_status = "failed"
            account.last_sync_error = message[:500]
            if category == ErrorCategory.AUTH:
                connection = db.get(InstitutionConnection, inputs.connection_id)
                connection.requires_reauth = True
                connection.last_error_code = getattr(exc, "error_code", None)
            db.add(DownloadLog(
                account_id=inputs.account_id,
                num_transactions=0,
                cursor_before=inputs.cursor_before,
                cursor_after=inputs.cursor_before,
                forced=forced,
                status="failed",
                error_message=message[:500],
                created_at=self._clock(),
            ))
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to record sync failure for %s", inputs.account_id)
            return
        self._check_stalled(db, inputs)

    def _check_stalled(self, db: Session, inputs: _SyncInputs) -> None:
        """Warn when the last N download logs for an account made no progress."""
        try:
            recent = (
                db.query(DownloadLog)
                .filter(DownloadLog.account_id == inputs.account_id)
                .order_by(DownloadLog.created_at.desc())
                .limit(self.stalled_threshold)
                .all()
            )
        except SQLAlchemyError:
            db.rollback()
            logger.warning(
                "Could not check sync progress for account %s", inputs.account_id, exc_info=True
            )
            return
        if len(recent) >= self.stalled_threshold and not any(
            log.made_progress for log in recent
        ):
            logger.warning(
                "Account %s (%s) made no progress in its last %d syncs",
                inputs.account_name, inputs.account_id, len(recent),
            )

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def sync_accounts(
        self,
        db: Session,
        account_ids: list[str] | None = None,
        force_full_resync: bool = False,
        skip_recent: bool = False,
        user_id: str | None = None,
    ) -> BatchSyncResult:
        """Sync every eligible account (or the given ones), continuing past failures.

        Args:
            db: Database session (committed before workers start).
            account_ids: Restrict to these accounts; ``None`` means all
                non-archived accounts.
            force_full_resync: Full resync for every account.
            skip_recent: Skip accounts synced within the auto-sync threshold
                (automatic/scheduled runs).
            user_id: Restrict to one user's accounts.

        Returns:
            BatchSyncResult with one entry per considered account.

        Raises:
            SyncInProgressError: If another batch is already running.
        """
        if not self._sync_lock.acquire(blocking=False):
            raise SyncInProgressError("A batch sync is already in progress")
        try:
            return self._run_batch(db, account_ids, force_full_resync, skip_recent, user_id)
        finally:
            self._sync_lock.release()

    def _run_batch(
        self,
        db: Session,
        account_ids: list[str] | None,
        force_full_resync: bool,
        skip_recent: bool,
        user_id: str | None,
    ) -> BatchSyncResult:
        batch = BatchSyncResult()
        query = db.query(Account)
        if account_ids is not None:
            query = query.filter(Account.id.in_(account_ids))
        else:
            query = query.filter(Account.archived.is_(False))
        if user_id is not None:
            query = query.filter(Account.user_id == user_id)

        now = self._clock()
        pending: list[tuple[str, bool]] = []
        names: dict[str, str] = {}
        for account in query.order_by(Account.created_at, Account.id).all():
            names[account.id] = account.display_name
            reason = ineligibility_reason(account)
            if reason is None and skip_recent and not force_full_resync:
                if not needs_sync(account, self.auto_sync_threshold, now):
                    reason = "synced recently"
            if reason:
                batch.results.append(AccountSyncResult(
                    account_id=account.id,
                    account_name=account.display_name,
                    status="skipped",
                    error=reason,
                ))
                continue
            forced = force_full_resync or needs_force_sync(
                account, self.force_sync_threshold, now
            )
            pending.append((account.id, forced))
        db.commit()

        logger.info(
            "Batch sync: %d accounts to sync, %d skipped",
            len(pending), len(batch.results),
        )

        halted: set[str] = set()
        attempts: dict[str, int] = {}
        last_error: dict[str, AccountSyncResult] = {}
        attempt = 1
        while pending:
            if self.cancelled:
                break
            round_results = self._run_round(db, pending, halted)

            retry: list[tuple[str, bool]] = []
            forced_by_id = dict(pending)
            for account_id, result in round_results.items():
                attempts[account_id] = attempt
                result.attempts = attempt
                if (
                    result.status == "error"
                    and result.retriable
                    and self.retry_policy.should_retry(result.error_category, attempt)
                ):
                    retry.append((account_id, forced_by_id[account_id]))
                    last_error[account_id] = result
                else:
                    batch.results.append(result)

            not_started = [p for p in pending if p[0] not in round_results]
            if not_started:
                pending = not_started + retry
                break
            if not retry:
                pending = []
                break

            delay = self.retry_policy.delay_for(attempt)
            logger.info(
                "Retrying %d accounts after transient errors in %.1fs (round %d)",
                len(retry), delay, attempt + 1,
            )
            self._sleep(delay)
            pending = retry
            attempt += 1

        if pending:
            batch.cancelled = True
            for account_id, forced in pending:
                if account_id in last_error:
                    batch.results.append(last_error[account_id])
                    continue
                batch.results.append(AccountSyncResult(
                    account_id=account_id,
                    account_name=names.get(account_id, account_id),
                    status="skipped",
                    forced=forced,
                    error="sync cancelled",
                    attempts=attempts.get(account_id, 0),
                ))
            logger.warning("Batch sync cancelled with %d accounts not synced", len(pending))

        logger.info(
            "Batch sync complete: %d synced, %d skipped, %d errors, %d transactions",
            batch.synced, batch.skipped, batch.errors, batch.total_transactions,
        )
        return batch

    def _run_round(
        self,
        db: Session,
        pending: list[tuple[str, bool]],
        halted: set[str],
    ) -> dict[str, AccountSyncResult]:
        """Run one pass over ``pending``. Accounts not started are absent from the result."""
        results: dict[str, AccountSyncResult] = {}
        if self.max_workers <= 1 or len(pending) == 1:
            for account_id, forced in pending:
                if self.cancelled:
                    break
                results[account_id] = self._sync_one(db, account_id, forced, halted)
            return results

        def worker(account_id: str, forced: bool) -> AccountSyncResult | None:
            if self.cancelled:
                return None
            try:
                session = self._new_session()
            except Exception as exc:
                logger.exception("Could not open a session to sync account %s", account_id)
                return self._unexpected_failure(account_id, account_id, forced, exc)
            try:
                return self._sync_one(session, account_id, forced, halted)
            finally:
                session.close()

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix=SYNC_THREAD_PREFIX
        ) as executor:
            futures = {
                account_id: (executor.submit(worker, account_id, forced), forced)
                for account_id, forced in pending
            }
            for account_id, (future, forced) in futures.items():
                try:
                    result = future.result()
                except Exception as exc:
                    logger.exception("Sync worker for account %s failed", account_id)
                    result = self._unexpected_failure(account_id, account_id, forced, exc)
                if result is not None:
                    results[account_id] = result
        return results

    @staticmethod
    def _unexpected_failure(
        account_id: str, account_name: str, forced: bool, exc: BaseException
    ) -> AccountSyncResult:
        return AccountSyncResult(
            account_id=account_id,
            account_name=account_name,
            status="error",
            forced=forced,
            error=f"{type(exc).__name__}: {exc}",
            error_category=ErrorCategory.UNKNOWN,
        )

    def _sync_one(
        self,
        db: Session,
        account_id: str,
        forced: bool,
        halted: set[str],
    ) -> AccountSyncResult:
        """Sync one account inside a batch; never raises."""
        name = account_id
        try:
            account = db.get(Account, account_id)
            if account is None:
                return AccountSyncResult(
                    account_id=account_id,
                    account_name=account_id,
                    status="skipped",
                    error="account no longer exists",
                )
            name = account.display_name
            connection_id = account.connection_id
            with self._halted_lock:
                is_halted = connection_id in halted
            if is_halted:
                return AccountSyncResult(
                    account_id=account_id,
                    account_name=name,
                    status="error",
                    forced=forced,
                    error="connection requires re-authentication",
                    error_category=ErrorCategory.AUTH,
                )
            result = self.sync_account(db, account, force_full_resync=forced)
        except AccountNotEligibleError as exc:
            db.rollback()
            return AccountSyncResult(
                account_id=account_id,
                account_name=name,
                status="skipped",
                forced=forced,
                error=exc.reason,
            )
        except Exception as exc:
            # sync_account reports provider errors in its result; this is a
            # bug or a database failure. Keep sibling accounts going.
            db.rollback()
            logger.exception("Unexpected failure syncing account %s", account_id)
            return self._unexpected_failure(account_id, name, forced, exc)

        if result.error_category == ErrorCategory.AUTH:
            with self._halted_lock:
                halted.add(connection_id)
        return result

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def sync_status(self, account: Account) -> SyncStatus:
        """Report how fresh an account's transactions are."""
        now = self._clock()
        elapsed = time_since_sync(account, now)
        reason = ineligibility_reason(account)
        return SyncStatus(
            account_id=account.id,
            last_sync_time=account.last_sync_time,
            last_sync_status=account.last_sync_status,
            last_sync_error=account.last_sync_error,
            has_cursor=bool(account.sync_cursor),
            hours_since_sync=round(elapsed.total_seconds() / 3600, 2) if elapsed else None,
            needs_sync=needs_sync(account, self.auto_sync_threshold, now),
            needs_force_sync=needs_force_sync(account, self.force_sync_threshold, now),
            activity_level=activity_level(account),
            eligible=reason is None,
            ineligibility_reason=reason,
        )
