"""
Exception types raised by the scraper core and its collaborators.
"""

from typing import Optional


class ScraperError(Exception):
    """Base class for scraper errors."""
    pass


class ConfigurationError(ScraperError, ValueError):
    """Invalid settings, rejected when the object is constructed."""
    pass


class FetchError(ScraperError):
    """
    A page could not be fetched.

    Covers transport failures, timeouts, HTTP error statuses and
    unusable content. Always retryable.
    """

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class RetryExhausted(ScraperError):
    """All retry attempts for a job failed."""

    def __init__(self, url: str, attempts: int, last_error: Optional[BaseException] = None):
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Giving up on {url} after {attempts} attempts: {self.last_message}")

    @property
    def last_message(self) -> str:
        if self.last_error is None:
            return "Maximum retries exceeded"
        return str(self.last_error)


class ShutdownAborted(ScraperError):
    """A job was interrupted because the scraper is shutting down."""

    def __init__(self, url: str, reason: str = "Scraper shutting down"):
        super().__init__(reason)
        self.url = url
        self.reason = reason
