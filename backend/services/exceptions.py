"""Errors raised by the sync, merge and reconciliation engines."""


class AccountNotEligibleError(ValueError):
    """The account (or connection) cannot be synced right now."""

    def __init__(self, account_id: str, reason: str):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"Account {account_id} is not eligible for sync: {reason}")


class InstitutionBusyError(Exception):
    """Another merge or reconciliation holds the institution's exclusive section."""

    def __init__(self, institution_id: str, timeout: float):
        self.institution_id = institution_id
        self.timeout = timeout
        super().__init__(
            f"Institution {institution_id} is busy (waited {timeout:.1f}s for lock)"
        )


class ConnectionNotFoundError(LookupError):
    """No usable connection exists for the requested institution."""

    def __init__(self, institution_id: str):
        self.institution_id = institution_id
        super().__init__(f"No active connection for institution {institution_id}")


class SyncInProgressError(RuntimeError):
    """A batch sync is already running in this process."""

    pass
