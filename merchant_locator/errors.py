"""
Exception hierarchy for the merchant location pipeline.

Validation errors (InvalidViewport, NoRosterData) abort a session before any
provider call. Provider errors are caught per query by the search orchestrator
and never abort a session.
"""
from typing import Optional


class LocatorError(Exception):
    """Base class for every error raised by merchant_locator."""


class InvalidViewport(LocatorError):
    """Viewport bounds are missing or malformed."""


class NoRosterData(LocatorError):
    """The roster handed to a session is empty."""


class RosterLoadError(LocatorError):
    """The roster spreadsheet could not be read."""


class ProviderError(LocatorError):
    """
    Place-search provider failure (non-OK, non-zero-result status).

    Args:
        message: Human readable description.
        status: Provider or HTTP status, when known.
        retryable: Whether repeating the call may succeed.
    """

    def __init__(self, message: str, status: Optional[object] = None, retryable: bool = False):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class ProviderTimeout(LocatorError):
    """A provider call did not complete within the per-call timeout."""

    def __init__(self, message: str, timeout: Optional[float] = None):
        super().__init__(message)
        self.timeout = timeout


class CircuitOpenError(ProviderError):
    """The circuit breaker for a provider call is open."""

    def __init__(self, identifier: str):
        super().__init__(f"Circuit open for '{identifier}'", retryable=False)
        self.identifier = identifier


class MaxRetriesExceeded(ProviderError):
    """All retry attempts for a provider call failed."""

    def __init__(self, identifier: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"'{identifier}' failed after {attempts} attempts: {last_error}",
            status=getattr(last_error, "status", None),
            retryable=False,
        )
        self.identifier = identifier
        self.attempts = attempts
        self.last_error = last_error
