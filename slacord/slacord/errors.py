"""Exceptions shared by the relay, the gateways and the HTTP layer.

The HTTP layer maps each class to a status code in
:func:`slacord.http.api.create_app`; the relay pipeline catches them so a bad
event never escapes the coroutine that handles it.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for every error raised by slacord."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(RelayError):
    status_code = 400


class NotFoundError(RelayError):
    status_code = 404


class PermissionDeniedError(RelayError):
    status_code = 403


class ConflictError(RelayError):
    status_code = 409


class UpstreamError(RelayError):
    """A Slack or Discord call failed."""

    status_code = 502

    def __init__(self, message: str = "", *, service: str = "", code: str | None = None) -> None:
        super().__init__(message)
        self.service = service
        self.code = code
