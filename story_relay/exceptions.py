"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class StoryRelayError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(StoryRelayError):
    """Raised for missing or invalid configuration. Fatal at startup."""


class CatalogError(StoryRelayError):
    """Base class for failures while fetching a story catalog."""


class CatalogTransportError(CatalogError):
    """Raised when the catalog API cannot be reached or answers with an error status."""


class CatalogDecodeError(CatalogError):
    """Raised when the catalog API returns a payload that cannot be decoded."""


class MediaDownloadError(StoryRelayError):
    """Raised when a single media item cannot be downloaded."""


class MessagingError(StoryRelayError):
    """Raised when a Telegram Bot API call fails."""

    def __init__(
        self,
        message: str,
        error_code: int | None = None,
        retry_after: int | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.retry_after = retry_after


class RepositoryError(StoryRelayError):
    """Raised when a persistence operation fails."""
