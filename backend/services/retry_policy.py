"""Retry policy for the batch sync orchestrator."""

from dataclasses import dataclass, field

from config import settings
from integrations.provider_protocol import ErrorCategory

DEFAULT_RETRYABLE = frozenset({ErrorCategory.CONNECTION, ErrorCategory.RATE_LIMIT})


@dataclass(frozen=True)
class RetryPolicy:
    """How many times, and how long to wait, before re-running failed accounts.

    ``max_attempts`` counts the first attempt, so ``1`` disables retries.
    Only errors whose category is in ``retryable`` are retried; credential
    errors never are.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    backoff: float = 2.0
    max_delay: float = 60.0
    retryable: frozenset[ErrorCategory] = field(default=DEFAULT_RETRYABLE)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.SYNC_RETRY_MAX_ATTEMPTS,
            base_delay=settings.SYNC_RETRY_BASE_DELAY_SECONDS,
            backoff=settings.SYNC_RETRY_BACKOFF,
        )

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(max_attempts=1, base_delay=0.0)

    def should_retry(self, category: ErrorCategory | None, attempt: int) -> bool:
        """True if a failure of ``category`` on ``attempt`` (1-based) gets another round."""
        return category in self.retryable and attempt < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry round ``attempt + 1``."""
        if attempt < 1:
            return 0.0
        return min(self.base_delay * (self.backoff ** (attempt - 1)), self.max_delay)
