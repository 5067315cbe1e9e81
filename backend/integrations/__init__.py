"""External API integrations.

This package contains:
- Provider protocol: Typed results and the client interface the sync engine uses
- Plaid client: Integration with the Plaid API
- Exceptions: Classified provider errors
"""

from integrations.provider_protocol import (
    AccountProviderClient,
    CallContext,
    ErrorCategory,
    RemoteAccount,
    RemoteTransaction,
    TransactionSyncPage,
    classify_error,
)

__all__ = [
    "AccountProviderClient",
    "CallContext",
    "ErrorCategory",
    "RemoteAccount",
    "RemoteTransaction",
    "TransactionSyncPage",
    "classify_error",
]
