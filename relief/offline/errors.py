"""
Client-side error taxonomy for the offline sync layer.

    SyncError
    ├── StorageError                  local persistence unavailable / full
    ├── NetworkError                  no connectivity or transport failure
    │   └── RequestTimeoutError       request exceeded the fixed timeout
    ├── ApiResponseError              server answered with an error status
    │   ├── ValidationError           400 / 422
    │   ├── AuthError                 401 / 403
    │   ├── RateLimitedError          429 (carries retry_after)
    │   └── ServerError               5xx / unclassified
    └── ConflictResolutionConfigError unknown conflict strategy

404 and 409 responses surface as plain ``ApiResponseError``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx


class SyncError(Exception):
    """Base class for all offline-sync failures."""

    def __init__(self, message: str = "Sync operation failed"):
        super().__init__(message)
        self.message = message


class StorageError(SyncError):
    """Backing storage is unavailable, full, or rejected the operation."""


class NetworkError(SyncError):
    """The server could not be reached."""

    def __init__(self, message: str = "Unable to connect to server"):
        super().__init__(message)


class RequestTimeoutError(NetworkError):
    """The request did not complete within the configured timeout."""

    def __init__(self, message: str = "Request timed out"):
        super().__init__(message)


class ApiResponseError(SyncError):
    """The server rejected the request with an HTTP error status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


class ValidationError(ApiResponseError):
    """Payload rejected by the server schema."""


class AuthError(ApiResponseError):
    """Authentication or authorization failed."""


class RateLimitedError(ApiResponseError):
    """Admission control rejected the request."""

    def __init__(
        self,
        message: str = "Too many requests. Please try again later",
        *,
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, status_code=429, details=details)
        self.retry_after = retry_after


class ServerError(ApiResponseError):
    """Server-side failure or an unclassified error status."""


class ConflictResolutionConfigError(SyncError):
    """An unknown conflict-resolution strategy was requested."""


ConfigurationError = ConflictResolutionConfigError


def error_from_response(response: httpx.Response) -> ApiResponseError:
    """Map an error response onto the taxonomy."""
    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    message = body.get("error") or response.reason_phrase or "An error occurred"
    if not isinstance(message, str):
        message = str(message)
    details = body.get("details") if isinstance(body.get("details"), dict) else None

    if status in (400, 422):
        return ValidationError(message, status_code=status, details=details)
    if status in (401, 403):
        return AuthError(message, status_code=status, details=details)
    if status == 429:
        retry_after = response.headers.get("Retry-After")
        return RateLimitedError(
            message,
            retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            details=details,
        )
    if status in (404, 409):
        return ApiResponseError(message, status_code=status, details=details)
    return ServerError(message, status_code=status, details=details)
