"""Custom exceptions for Earnflow."""


class EarnflowError(Exception):
    """Base exception for all Earnflow errors."""

    def __init__(self, message: str, *args: object) -> None:
        self.message = message
        super().__init__(message, *args)


class ConfigurationError(EarnflowError):
    """Required configuration is missing or invalid. Fatal at startup."""


# Provider errors
class ProviderError(EarnflowError):
    """Base error for external data providers."""

    transient: bool = False

    def __init__(self, message: str, provider: str, status_code: int | None = None) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class ProviderTimeoutError(ProviderError):
    """Provider did not answer within the configured timeout."""

    transient = True


class ProviderRateLimitError(ProviderError):
    """Provider rejected the request with HTTP 429."""

    transient = True

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, provider, status_code)


class ProviderUnavailableError(ProviderError):
    """Provider returned 5xx or the connection failed."""

    transient = True


class ProviderNotFoundError(ProviderError):
    """Provider has no data for the requested symbol (HTTP 404)."""


class ProviderResponseError(ProviderError):
    """Provider returned a payload we could not parse or an unexpected status."""


# Storage errors
class StorageError(EarnflowError):
    """Base error for storage layer."""


class PersistenceError(StorageError):
    """A database write or read failed."""


class LockStoreError(StorageError):
    """The lock backing store could not be reached."""


class StateStoreError(StorageError):
    """The daily state could not be written."""


# Pipeline errors
class PipelineError(EarnflowError):
    """Base error for the fetch pipeline."""
