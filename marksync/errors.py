"""Error taxonomy shared by providers, the sync engine and the scheduler.

Providers and the engine raise these unchanged; only the scheduler decides
whether a failure is retried or terminal.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every failure the sync pipeline reports."""

    retryable: bool = True


class ConfigurationError(SyncError):
    """Provider disabled, no target folder, or unknown provider.

    Requires user action, never retried.
    """

    retryable = False


class AuthenticationError(SyncError):
    """Missing or rejected credentials, or an aborted interactive flow.

    Attributes:
        provider_id: Provider the credentials belong to.
        cancelled:   True when the user closed or denied the authorization
                     flow. Cancellations are not retried.
    """

    def __init__(
        self, message: str, provider_id: str | None = None, cancelled: bool = False
    ) -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.cancelled = cancelled
        self.retryable = not cancelled


class NetworkError(SyncError):
    """A remote call failed or returned a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderContractError(SyncError):
    """A provider returned items that break the (provider_id, id) contract."""

    retryable = False


class RetryExhaustedError(SyncError):
    """Terminal failure for one cycle after the retry budget is spent.

    The provider stays eligible for the next periodic sweep.
    """

    retryable = False

    def __init__(self, provider_id: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"Sync for '{provider_id}' failed after {attempts} retries: {last_error}"
        )
        self.provider_id = provider_id
        self.attempts = attempts
        self.last_error = last_error
