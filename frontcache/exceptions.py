"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class FrontcacheError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(FrontcacheError):
    """Raised for issues related to configuration loading or validation."""


class StoreError(FrontcacheError):
    """Base class for failures inside the encrypted store."""


class DecryptionError(StoreError):
    """
    Raised when a stored envelope cannot be authenticated or decoded with the
    current key. The store handles it by wiping itself.
    """


class MigrationError(StoreError):
    """Raised when the encryption format upgrade fails unexpectedly."""


class FetchError(FrontcacheError):
    """Base class for failures while fetching remote content."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class NotFoundError(FetchError):
    """Raised when the server answers 404 for a file. Never retried."""


class RateLimitedError(FetchError):
    """Raised when the server answers 429. Never retried so callers can cool down."""


class TransientFetchError(FetchError):
    """Raised when all retry attempts failed and no stale copy was available."""


class UnsafeUrlError(FetchError):
    """Raised when a request URL is rejected by the URL policy before any I/O."""
