"""Per-institution exclusive sections for merge and reconciliation.

Two reconciliations (or a reconciliation and a merge) for the same
institution must never interleave: both rewrite the same identity-key
space. Locks are process-local, like ``TransactionSyncService._sync_lock``;
a multi-process deployment needs a database or file lock instead.
"""

import logging
import threading
from contextlib import contextmanager

from config import settings
from services.exceptions import InstitutionBusyError

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
_institution_locks: dict[str, threading.Lock] = {}


def _lock_for(institution_id: str) -> threading.Lock:
    with _registry_lock:
        lock = _institution_locks.get(institution_id)
        if lock is None:
            lock = threading.Lock()
            _institution_locks[institution_id] = lock
        return lock


@contextmanager
def institution_lock(institution_id: str, timeout: float | None = None):
    """Hold the exclusive section for ``institution_id``.

    Raises:
        InstitutionBusyError: If the lock was not acquired within ``timeout``.
    """
    if timeout is None:
        timeout = settings.INSTITUTION_LOCK_TIMEOUT_SECONDS
    lock = _lock_for(institution_id)
    if not lock.acquire(timeout=timeout):
        logger.warning("Timed out waiting for institution lock %s", institution_id)
        raise InstitutionBusyError(institution_id, timeout)
    try:
        yield
    finally:
        lock.release()


def is_institution_locked(institution_id: str) -> bool:
    """Check if an exclusive section is currently held for the institution."""
    lock = _lock_for(institution_id)
    acquired = lock.acquire(blocking=False)
    if acquired:
        lock.release()
        return False
    return True
