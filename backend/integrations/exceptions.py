"""Typed exception hierarchy for provider errors.

Provides structured exceptions for differentiated error handling
(auth errors vs transient network errors vs data issues).
"""

# Plaid error codes that indicate a temporary condition on the remote side.
TRANSIENT_ERROR_CODES = frozenset(
    {
        "INSTITUTION_DOWN",
        "INSTITUTION_NOT_RESPONDING",
        "INSTITUTION_NO_LONGER_SUPPORTED_TEMPORARILY",
        "INTERNAL_SERVER_ERROR",
        "PLANNED_MAINTENANCE",
        "RATE_LIMIT_EXCEEDED",
        "PRODUCT_NOT_READY",
    }
)

# Plaid error codes that require the user to re-authenticate the Item.
CREDENTIAL_ERROR_CODES = frozenset(
    {
        "ITEM_LOGIN_REQUIRED",
        "INVALID_ACCESS_TOKEN",
        "ITEM_EXPIRED",
        "ACCESS_NOT_GRANTED",
    }
)


class ProviderError(Exception):
    """Base exception for all provider-related errors.

    Carries the provider name and, when the provider reported one, its
    machine-readable error code.
    """

    def __init__(self, message: str, provider_name: str = "", error_code: str | None = None):
        self.provider_name = provider_name
        self.error_code = error_code
        super().__init__(message)


class ProviderAuthError(ProviderError):
    """Credentials missing, expired, or invalid (HTTP 401/403, ITEM_LOGIN_REQUIRED)."""

    pass


class ProviderConnectionError(ProviderError):
    """Network failures such as timeouts or refused connections.

    Retriable by default.
    """

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        retriable: bool = True,
        error_code: str | None = None,
    ):
        self.retriable = retriable
        super().__init__(message, provider_name, error_code)


class ProviderAPIError(ProviderError):
    """HTTP 4xx/5xx responses from the provider API."""

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider_name, error_code)

    @property
    def retriable(self) -> bool:
        """429 (rate limit), 5xx and transient institution errors are retriable."""
        if self.error_code in TRANSIENT_ERROR_CODES:
            return True
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class ProviderDataError(ProviderError):
    """Malformed or unparseable response from the provider."""

    pass
