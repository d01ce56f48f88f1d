"""
Client Errors

Raised by the client synchronisation core. Stores catch ClientError
subclasses at their boundary, log them and turn them into non-blocking
alerts; nothing here is fatal to a screen.
"""

from typing import Any, Optional


class ClientError(Exception):
    """Base class for client-side failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail


class ApiUnavailableError(ClientError):
    """The server could not be reached or answered with a 5xx."""


class ApiAuthError(ClientError):
    """The bearer credential was rejected; the session has been cleared."""


class ApiRejectedError(ClientError):
    """The server refused the request (4xx other than 401)."""


class OrderValidationError(ClientError):
    """A submission failed local checks before any network call."""
