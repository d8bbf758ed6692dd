"""
Studio Transfer Error Types
===========================

Exception hierarchy shared by the resource client, the migration executor
and the worker dispatcher.

Setup failures (bad credentials, failed scans, worker builds) propagate as
exceptions. Per-item failures are caught by the executor and summarized.
User cancellation is modelled by MigrationStopped, which is not a failure.
"""

from typing import Any, Dict, Optional


class StudioTransferError(Exception):
    """Base class for all Studio Transfer errors."""


class ConfigError(StudioTransferError):
    """Invalid or incomplete configuration (missing credentials, bad values)."""


class PlanError(StudioTransferError):
    """A migration plan could not be loaded or is malformed."""


class BackendError(StudioTransferError):
    """
    Error response returned by a backend project.

    Attributes:
        code: HTTP status code (0 when the request never got a response)
        type: Backend error type string (e.g. 'document_not_found')
        response: Raw decoded response body, if any
    """

    def __init__(
        self,
        message: str,
        code: int = 0,
        type: Optional[str] = None,
        response: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.type = type
        self.response = response or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class NotFoundError(BackendError):
    """The requested resource does not exist (HTTP 404)."""


class ConflictError(BackendError):
    """The resource already exists (HTTP 409)."""


class AuthenticationError(BackendError):
    """Credentials were rejected (HTTP 401/403)."""


class RateLimitError(BackendError):
    """Too many requests (HTTP 429)."""


class MigrationStopped(StudioTransferError):
    """Raised when a running migration is force stopped by the user."""

    def __init__(self, message: str = "Migration force stopped by user."):
        super().__init__(message)


class UnsupportedAttributeError(StudioTransferError):
    """An attribute type or format with no known creation endpoint."""


class WorkerDeploymentError(StudioTransferError):
    """The ephemeral worker function could not be built or activated."""


class WorkerInvocationError(StudioTransferError):
    """A worker execution failed or reported an unsuccessful result."""


def error_message(err: BaseException) -> str:
    """Return the human-readable message of an exception."""
    if isinstance(err, BackendError):
        return err.message
    return str(err) or type(err).__name__
