"""
Error taxonomy for the grocery client.

Only NetworkFailure means "the server could not be reached"; it drives the
offline fallback. ApplicationError is the server saying no.
"""

from __future__ import annotations


class GroceryError(Exception):
    """Base class for all grocery client errors."""


class NetworkFailure(GroceryError):
    """The transport could not reach the server."""


class ApplicationError(GroceryError):
    """The server answered but rejected the request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.message} (HTTP {self.status_code})"


class ValidationError(ApplicationError):
    """Request payload was rejected (HTTP 400)."""


class NotFoundError(ApplicationError):
    """Target record does not exist (HTTP 404)."""


class ConflictError(ApplicationError):
    """Request conflicts with server state (HTTP 409)."""


class LocalPersistenceFailure(GroceryError):
    """The local cache could not be read or written."""


def error_for_status(status_code: int, message: str) -> ApplicationError:
    """Map an HTTP status to the matching ApplicationError subclass."""
    error_class = {
        400: ValidationError,
        404: NotFoundError,
        409: ConflictError,
    }.get(status_code, ApplicationError)
    return error_class(message, status_code=status_code)
