"""Manual sync rate limiter - per-user sliding window over accepted requests."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.orm import Session

from config import settings
from models import ManualSyncRequest
from models.utils import as_utc

logger = logging.getLogger(__name__)


@dataclass
class RateLimitStatus:
    """Snapshot of a user's manual sync budget."""

    allowed: bool
    limit: int
    count: int
    remaining: int
    reset_time: datetime | None  # when the oldest counted request leaves the window

    @property
    def retry_after_seconds(self) -> int:
        if self.reset_time is None:
            return 0
        delta = (self.reset_time - datetime.now(timezone.utc)).total_seconds()
        return max(int(delta) + 1, 0)


class ManualSyncRateLimiter:
    """Bounds manual (user-triggered) syncs per user within a sliding window.

    Scheduled and automatic syncs never go through the limiter. Each
    accepted request is stored as a row, so the limit survives restarts
    and is shared by every worker using the same database.
    """

    def __init__(
        self,
        limit: int | None = None,
        window: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.limit = limit if limit is not None else settings.MANUAL_SYNC_DAILY_LIMIT
        self.window = window or timedelta(hours=settings.MANUAL_SYNC_WINDOW_HOURS)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _in_window(self, db: Session, user_id: str, now: datetime) -> list[datetime]:
        since = now - self.window
        rows = (
            db.query(ManualSyncRequest.requested_at)
            .filter(
                ManualSyncRequest.user_id == user_id,
                ManualSyncRequest.requested_at > since,
            )
            .order_by(ManualSyncRequest.requested_at)
            .all()
        )
        return [as_utc(r[0]) for r in rows]

    def _status(self, requests: list[datetime], allowed: bool) -> RateLimitStatus:
        count = len(requests)
        reset_time = requests[0] + self.window if requests else None
        return RateLimitStatus(
            allowed=allowed,
            limit=self.limit,
            count=count,
            remaining=max(self.limit - count, 0),
            reset_time=reset_time,
        )

    def get_status(self, db: Session, user_id: str) -> RateLimitStatus:
        """Report the current budget without consuming it."""
        requests = self._in_window(db, user_id, self._clock())
        return self._status(requests, allowed=len(requests) < self.limit)

    def check_and_consume(self, db: Session, user_id: str) -> RateLimitStatus:
        """Consume one manual sync if the budget allows it.

        The accepted request is flushed, not committed; the caller commits
        together with its own work.

        Returns:
            The status after this request. ``allowed`` is False when the
            request was rejected, in which case nothing is recorded.
        """
        now = self._clock()
        requests = self._in_window(db, user_id, now)
        if len(requests) >= self.limit:
            logger.info(
                "Manual sync limit reached for user %s (%d/%d)",
                user_id, len(requests), self.limit,
            )
            return self._status(requests, allowed=False)

        db.add(ManualSyncRequest(user_id=user_id, requested_at=now))
        db.flush()
        requests.append(now)
        return self._status(requests, allowed=True)
