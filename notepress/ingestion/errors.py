"""
Classified errors raised by external source clients.

Callers branch on the class, never on messages or status codes:
- RateLimitedError: the service asked us to wait
- UnauthorizedError: credentials rejected or revoked
- NotFoundError: the requested object does not exist
- TransientError: 5xx, timeouts, broken connections
"""

import math

from notepress.errors import NotepressError


class SourceError(NotepressError):
    """Base class for errors coming from an external content source."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(SourceError):
    """The service refused the call until `retry_after_seconds` have passed."""

    def __init__(
        self,
        retry_after_seconds: float,
        message: str | None = None,
        status_code: int | None = None,
    ):
        if message is None:
            minutes = max(1, math.ceil(retry_after_seconds / 60))
            message = (
                f"Rate limited by external service. "
                f"Please wait {minutes} minute{'s' if minutes != 1 else ''}"
            )
        super().__init__(message, status_code=status_code)
        self.retry_after_seconds = float(retry_after_seconds)


class UnauthorizedError(SourceError):
    """Credentials are missing, expired or revoked."""

    pass


class NotFoundError(SourceError):
    """The requested notebook, note, resource or post does not exist."""

    pass


class TransientError(SourceError):
    """A failure worth retrying later: server error, timeout, connection reset."""

    pass
