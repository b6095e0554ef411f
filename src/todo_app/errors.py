"""
Application error taxonomy.

Every error raised across the service boundary derives from AppError and is
rendered by a single exception handler in main.py as:

    {"error": "<class name>", "message": "<text>"}
"""
from __future__ import annotations

from typing import Dict, Optional


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return None


class AuthenticationError(AppError):
    """Bad credentials, unknown or expired token, invalid reset link."""

    status_code = 401
    default_message = "Not authenticated"

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return {"WWW-Authenticate": "Bearer"}


class AuthorizationError(AppError):
    """The session role does not permit the requested action."""

    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


class InvalidUploadError(AppError):
    """An uploaded file has an unsupported type or is too large."""

    status_code = 422
    default_message = "Invalid upload"


class BackendError(AppError):
    """A query or mutation against the backend failed. Never retried."""

    status_code = 502
    default_message = "Backend request failed"


class OwnerScopeError(AppError):
    """A todo query was attempted without an owner scope; rejected before execution."""

    status_code = 500
    default_message = "Query rejected: missing owner scope"
