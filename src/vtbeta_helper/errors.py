"""
Error types for the Vertical Tabs beta helper.

This module defines the UpgradeError base class and the classified failures
raised by every stage of an upgrade. Each stage either fully succeeds or
raises exactly one of these, so callers only ever deal with a single
terminal error describing the furthest stage reached.

Remote failures carry an ApiError kind that decides whether the retry engine
may try again:
- TransientRemoteError: server error, unknown error, rate limited
- BuildNotReadyError: build still pending, carries a retry_after hint
- PermanentRemoteError: unauthorized, not found
"""

from __future__ import annotations

from enum import Enum
from typing import Any, NoReturn


class UpgradeError(Exception):
    """
    Base exception class for upgrade errors.

    Attributes:
        error_code: Internal error code string (e.g., "api_error",
            "integrity_mismatch", "install_failed", "migration_failed").
        message: Human-readable error message.
        details: Optional structured details (e.g., tag, paths, phase).

    Example:
        >>> raise UpgradeError(
        ...     error_code="install_failed",
        ...     message="Installation failed: permission denied",
        ...     details={"target": "/vault/.obsidian/plugins/vertical-tabs"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpgradeError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Remote API Errors
# =============================================================================


class ApiError(str, Enum):
    """Classified outcome of a failed call to the build service."""

    UNKNOWN_ERROR = "UnknownError"
    UNAUTHORIZED = "Unauthorized"
    NOT_FOUND = "NotFound"
    SERVER_ERROR = "ServerError"
    BUILD_NOT_READY = "BuildNotReady"
    RATE_LIMITED = "RateLimited"


TRANSIENT_API_ERRORS = frozenset(
    {ApiError.SERVER_ERROR, ApiError.UNKNOWN_ERROR, ApiError.RATE_LIMITED}
)


class ApiException(UpgradeError):
    """
    Error raised when the build service returns a non-success response.

    Attributes:
        error: The classified ApiError kind.
        context: Extra data sent by the server (e.g., retry_after).
    """

    def __init__(
        self,
        error: ApiError,
        context: dict[str, Any] | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize an ApiException."""
        self.error = error
        self.context = context or {}
        super().__init__(
            error_code="api_error",
            message=message or f"API error: {error.value}",
            details={"api_error": error.value, **self.context},
        )

    @property
    def transient(self) -> bool:
        """Whether the failure is worth retrying with backoff."""
        return self.error in TRANSIENT_API_ERRORS


class TransientRemoteError(ApiException):
    """Server error, unknown error or rate limiting. Safe to retry."""


class PermanentRemoteError(ApiException):
    """Authorization or not-found failure. Never retried."""


class BuildNotReadyError(ApiException):
    """
    The requested build is still being prepared by the server.

    Attributes:
        retry_after: Seconds the server asked the client to wait, if given.
    """

    def __init__(self, retry_after: float | None = None) -> None:
        """Initialize a BuildNotReadyError."""
        self.retry_after = retry_after
        super().__init__(ApiError.BUILD_NOT_READY, {"retry_after": retry_after})


def raise_for_api_error(
    error: ApiError, context: dict[str, Any] | None = None
) -> NoReturn:
    """
    Raise the ApiException subclass matching a classified error kind.

    Args:
        error: The classified ApiError.
        context: Extra data sent by the server.

    Raises:
        BuildNotReadyError: For ApiError.BUILD_NOT_READY.
        TransientRemoteError: For server errors, unknown errors and rate limits.
        PermanentRemoteError: For every other kind.
    """
    context = context or {}
    if error is ApiError.BUILD_NOT_READY:
        raise BuildNotReadyError(context.get("retry_after"))
    if error in TRANSIENT_API_ERRORS:
        raise TransientRemoteError(error, context)
    raise PermanentRemoteError(error, context)


class MalformedResponseError(UpgradeError):
    """
    Error raised when a success response is missing required parts.

    A download response without a ZIP content type or without an integrity
    digest header is treated as malformed and is not retried.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a MalformedResponseError."""
        super().__init__(
            error_code="malformed_response", message=message, details=details
        )


# =============================================================================
# Upgrade Pipeline Errors
# =============================================================================


class DownloadFailedError(UpgradeError):
    """Error raised when a build could not be downloaded."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a DownloadFailedError."""
        super().__init__(error_code="download_failed", message=message, details=details)


class IntegrityMismatchError(UpgradeError):
    """Error raised when the downloaded payload does not match its digest."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an IntegrityMismatchError."""
        super().__init__(
            error_code="integrity_mismatch", message=message, details=details
        )


class MalformedArtifactError(UpgradeError):
    """Error raised when the downloaded archive is empty or unreadable."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a MalformedArtifactError."""
        super().__init__(
            error_code="malformed_artifact", message=message, details=details
        )


class InstallFailedError(UpgradeError):
    """
    Error raised when the staged build could not be swapped into place.

    When a previous install existed it has been restored before this error
    is raised, unless details contains "backup_path", in which case the
    rollback itself failed and the backup was left on disk.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InstallFailedError."""
        super().__init__(error_code="install_failed", message=message, details=details)


class MigrationFailedError(UpgradeError):
    """
    Error raised when a data migration task fails.

    details["phase"] is "pre_install" (nothing was installed) or
    "post_install" (the install already committed and stays in place).
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a MigrationFailedError."""
        super().__init__(
            error_code="migration_failed", message=message, details=details
        )


class ReloadFailedError(UpgradeError):
    """Error raised when the host could not reload the installed plugin."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ReloadFailedError."""
        super().__init__(error_code="reload_failed", message=message, details=details)


class StorageError(UpgradeError):
    """Error raised by the persisted local state stores."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a StorageError."""
        super().__init__(error_code="storage_error", message=message, details=details)
