"""Exception hierarchy for dicomsync.

Provides typed exceptions for different failure modes with clear error messages.
"""

from __future__ import annotations

from typing import Any


class DicomSyncError(Exception):
    """Base exception for all dicomsync errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(DicomSyncError):
    """Error in configuration (missing, invalid, or malformed)."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = repr(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class ProfileNotFoundError(ConfigurationError):
    """Requested profile does not exist."""

    def __init__(self, profile: str):
        super().__init__(f"Profile not found: {profile}", field="profile", value=profile)
        self.profile = profile


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(DicomSyncError):
    """Sign-in failed after exhausting all attempts."""

    def __init__(self, attempts: int, last_error: BaseException | None = None):
        msg = f"Sign-in failed after {attempts} attempts"
        if last_error:
            msg = f"{msg}: {last_error}"
        super().__init__(msg, {"attempts": attempts})
        self.attempts = attempts
        self.last_error = last_error


class AuthorizationDenied(DicomSyncError):
    """Remote store rejected the access token (HTTP 401/403)."""

    def __init__(self, url: str, status_code: int):
        reason = "Unauthorized" if status_code == 401 else "Forbidden"
        super().__init__(f"{reason} for {url}", {"status": status_code})
        self.url = url
        self.status_code = status_code


# =============================================================================
# Transfer Errors
# =============================================================================


class TransportError(DicomSyncError):
    """Network-level failure (DNS, TCP, TLS, timeout) talking to the store."""

    def __init__(self, url: str, cause: str | None = None):
        msg = f"Network error talking to {url}"
        if cause:
            msg = f"{msg}: {cause}"
        super().__init__(msg, {"url": url})
        self.url = url
        self.cause = cause


class RetryExhaustedError(TransportError):
    """All retry attempts for an idempotent request failed."""

    def __init__(self, url: str, attempts: int, last_error: Exception | None = None):
        super().__init__(url, f"failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class ProtocolError(DicomSyncError):
    """Malformed multipart framing or a truncated multipart stream."""

    def __init__(self, message: str, source: str | None = None):
        details = {"source": source} if source else {}
        super().__init__(message, details)
        self.source = source


class RemoteOperationError(DicomSyncError):
    """Cloud API answered with an error body."""

    def __init__(self, operation: str, message: str, status_code: int | None = None):
        details: dict[str, Any] = {"operation": operation}
        if status_code is not None:
            details["status"] = status_code
        super().__init__(message, details)
        self.operation = operation
        self.status_code = status_code
