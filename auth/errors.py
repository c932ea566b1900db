"""
auth/errors.py -- Exception taxonomy for the authentication subsystem.

Every exception carries an HTTP status_code, a stable machine-readable code,
and a message that is safe to show to the client. The API layer renders them
into the shared ErrorResponse envelope; nothing else about the failure crosses
the boundary.

InvalidCredentials deliberately covers unknown user, wrong password, and
locked account. Callers must never subclass it per cause -- a distinct class
or code per cause would re-open account enumeration.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors raised by auth services and dependencies."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        if message is not None:
            self.message = message
        self.detail = detail
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid username or password."


class Unauthorized(AuthError):
    status_code = 401
    code = "unauthorized"
    message = "Invalid or expired token."


class RateLimited(AuthError):
    """The caller's IP is currently blocked. retry_after is in seconds."""

    status_code = 429
    code = "rate_limited"
    message = "Too many requests."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = max(int(retry_after), 1)


class BadRequest(AuthError):
    status_code = 400
    code = "bad_request"
    message = "Bad request."


class InternalError(AuthError):
    """Server-side failure. The message is generic; the cause is logged."""


class StoreUnavailable(InternalError):
    """A counter-store call failed or timed out.

    operation names the failing call ("increment user attempts") so the
    server log says what was being attempted; the client only sees the
    generic InternalError message.
    """

    def __init__(self, operation: str) -> None:
        super().__init__()
        self.operation = operation

    def __str__(self) -> str:
        cause = f": {self.__cause__}" if self.__cause__ else ""
        return f"counter store failed during {self.operation}{cause}"
