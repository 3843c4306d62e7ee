"""Exception hierarchy for wtmigrate.

Validation problems are raised synchronously, before any asynchronous work
starts. Remote failures are local to the call or item that produced them and
never stop a work queue.
"""

from typing import Optional


class WtMigrateError(Exception):
    """Base class for all wtmigrate errors."""


class ValidationError(WtMigrateError, ValueError):
    """Raised for malformed constructor or call arguments."""


class RemoteError(WtMigrateError):
    """A remote call finished without a usable result."""

    def __init__(self, message: str, status: int = 0, body: Optional[object] = None):
        super().__init__(message)
        self.status = status
        self.body = body


class TerminalRemoteError(RemoteError):
    """Conflict or non-retryable client error. Never retried."""


class ExhaustedRetryError(RemoteError):
    """Raised when a transient failure persists for every allowed attempt."""

    def __init__(self, last_error: RemoteError, attempts: int):
        super().__init__(str(last_error), status=last_error.status, body=last_error.body)
        self.last_error = last_error
        self.attempts = attempts


class DispatcherClosedError(RemoteError):
    """The dispatcher was closed before the call completed."""


class DeploymentError(WtMigrateError):
    """A deployment operation failed; wraps the underlying remote error."""


class TokenNotFoundError(WtMigrateError):
    """No token is available for the requested tenant."""
