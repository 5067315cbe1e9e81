"""Call ledger - audit trail of every remote provider call.

Rows are written through a session of the ledger's own so they survive a
caller's rollback (a failed sync still leaves its calls on record). The
ledger is a pure side-effect sink: recording never raises and no sync
decision reads from it. Repeated failures for one institution escalate to
an operator-visible WARNING.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from config import settings
from integrations.provider_protocol import CallContext
from models import ApiCallLog

logger = logging.getLogger(__name__)


class CallLedger:
    """Records remote calls into ``plaid_api_call_logs``."""

    def __init__(
        self,
        session_factory=None,
        app_instance_id: str | None = None,
        failure_threshold: int | None = None,
        failure_window: timedelta | None = None,
    ):
        """Initialize the ledger.

        Args:
            session_factory: Callable returning a new Session. Defaults to the
                application's sessionmaker.
            app_instance_id: Identifies this process in multi-instance setups.
            failure_threshold: Failures per institution within
                ``failure_window`` that trigger an operator warning.
            failure_window: Look-back window for the escalation check.
        """
        self._session_factory = session_factory
        self._app_instance_id = app_instance_id or settings.APP_INSTANCE_ID
        self._failure_threshold = failure_threshold or settings.CALL_LEDGER_FAILURE_THRESHOLD
        self._failure_window = failure_window or timedelta(
            hours=settings.CALL_LEDGER_FAILURE_WINDOW_HOURS
        )

    def _new_session(self) -> Session:
        if self._session_factory is None:
            from database import get_session_local

            self._session_factory = get_session_local()
        return self._session_factory()

    def record(
        self,
        endpoint: str,
        response_status: int | None,
        duration_ms: int | None,
        context: CallContext | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Persist one call. Never raises."""
        context = context or CallContext()
        failed = response_status is None or response_status >= 400
        try:
            db = self._new_session()
        except Exception:
            logger.warning("Call ledger unavailable; dropping %s entry", endpoint, exc_info=True)
            return
        try:
            db.add(ApiCallLog(
                endpoint=endpoint,
                response_status=response_status,
                institution_id=context.institution_id,
                account_id=context.account_id,
                user_id=context.user_id,
                duration_ms=duration_ms,
                error_code=error_code,
                error_message=(error_message or "")[:1000] or None,
                app_instance_id=self._app_instance_id,
            ))
            db.commit()

            if failed and context.institution_id:
                self._check_escalation(db, context.institution_id, endpoint, error_code)
        except Exception:
            db.rollback()
            logger.warning("Failed to record %s call in ledger", endpoint, exc_info=True)
        finally:
            db.close()

    def _check_escalation(
        self, db: Session, institution_id: str, endpoint: str, error_code: str | None
    ) -> None:
        count = self.recent_failures(db, institution_id, self._failure_window)
        if count >= self._failure_threshold:
            logger.warning(
                "Institution %s has %d failed provider calls in the last %s "
                "(latest: %s %s) - operator attention needed",
                institution_id, count, self._failure_window, endpoint, error_code or "no code",
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def recent_failures(
        db: Session,
        institution_id: str,
        window: timedelta,
        now: datetime | None = None,
    ) -> int:
        """Count failed calls for an institution within ``window``."""
        since = (now or datetime.now(timezone.utc)) - window
        return (
            db.query(func.count(ApiCallLog.id))
            .filter(
                ApiCallLog.institution_id == institution_id,
                ApiCallLog.timestamp >= since,
                (ApiCallLog.response_status.is_(None)) | (ApiCallLog.response_status >= 400),
            )
            .scalar()
            or 0
        )

    @staticmethod
    def usage_summary(db: Session, since: datetime | None = None) -> list[dict]:
        """Per-endpoint call counts for billing audit.

        Returns:
            One dict per endpoint with ``endpoint``, ``total``, ``succeeded``,
            ``failed`` and ``avg_duration_ms``, busiest endpoint first.
        """
        succeeded = case(
            (
                (ApiCallLog.response_status >= 200) & (ApiCallLog.response_status < 300),
                1,
            ),
            else_=0,
        )
        query = db.query(
            ApiCallLog.endpoint,
            func.count(ApiCallLog.id),
            func.sum(succeeded),
            func.avg(ApiCallLog.duration_ms),
        )
        if since is not None:
            query = query.filter(ApiCallLog.timestamp >= since)
        rows = (
            query.group_by(ApiCallLog.endpoint)
            .order_by(func.count(ApiCallLog.id).desc(), ApiCallLog.endpoint)
            .all()
        )
        return [
            {
                "endpoint": endpoint,
                "total": total,
                "succeeded": int(ok or 0),
                "failed": total - int(ok or 0),
                "avg_duration_ms": round(float(avg), 1) if avg is not None else None,
            }
            for endpoint, total, ok, avg in rows
        ]
