"""Error taxonomy for SharePoint Online operations.

Every failure aborts the running operation. Callers (CLI, web surface) catch
``ControlPlaneError`` to render a user-facing message.
"""
from __future__ import annotations

from typing import Optional


class ControlPlaneError(Exception):
    """Base class for errors surfaced to users.

    Attributes:
        message: Human readable description, passed through to output.
        status_code: HTTP status that caused the error, when there was one.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class AuthError(ControlPlaneError):
    """Missing or rejected credentials, token, or request digest."""


class NetworkError(ControlPlaneError):
    """Transport-level failure (DNS, TLS, connection reset, timeout)."""


class ProtocolError(ControlPlaneError):
    """Response does not have the shape the endpoint is documented to return."""


class RemoteOperationError(ControlPlaneError):
    """The server reported an ``ErrorInfo`` for the submitted CSOM batch.

    ``message`` is the server's ``ErrorMessage`` verbatim. ``hint`` carries
    optional guidance for the user and is not part of the server's message.
    """

    def __init__(
        self,
        message: str,
        hint: Optional[str] = None,
        error_code: Optional[int] = None,
        error_type: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.hint = hint
        self.error_code = error_code
        self.error_type = error_type
        self.correlation_id = correlation_id
