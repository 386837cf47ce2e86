"""Session lifecycle exceptions.

Every exception carries the tenant token it concerns and the HTTP status an
outer request layer should answer with.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base exception for session lifecycle errors."""

    status_code: int = 500

    def __init__(self, message: str, *, token: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.token = token


class InitializationFailedError(SessionError):
    """Raised when credential loading, version negotiation or socket construction fails.

    Not retried automatically; the caller may call init() again.
    """

    status_code = 412


class CleanupFailedError(SessionError):
    """Raised when closing the socket or deleting credentials fails unexpectedly."""

    status_code = 500


class NotAllowedError(SessionError):
    """Raised when no live socket exists after an ensure-connection step."""

    status_code = 405


class PreconditionFailedError(SessionError):
    """Raised when the connection is not open when required.

    Also used for unhandled (fatal) disconnect reasons, in which case
    ``reason_code`` holds the code reported by the socket, and for failed
    group fetches.
    """

    status_code = 412

    def __init__(
        self,
        message: str,
        *,
        token: str | None = None,
        reason_code: int | None = None,
    ) -> None:
        super().__init__(message, token=token)
        self.reason_code = reason_code


class ServiceUnavailableError(SessionError):
    """Raised when waiting for a pairing code fails unexpectedly."""

    status_code = 503


class InternalServerError(SessionError):
    """Raised when a send fails while the connection was believed open."""

    status_code = 500
