"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial derived
properties). Stores, services, and routes do the work.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A local account that can log in with username + password.

    hashed_password is a bcrypt hash. It is the only field the auth subsystem
    ever writes (during password reset); every other field belongs to the
    user-management side of the application.
    """

    username: str
    email: str
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of an access or refresh token.

    Never persisted. The only server-side trace of a token is an optional
    blacklist entry keyed by jti.
    """

    jti: str
    subject: str  # str(user_id)
    issued_at: datetime
    expires_at: datetime
    issuer: str
    kind: str  # "access" or "refresh"

    @property
    def user_id(self) -> int:
        return int(self.subject)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime
    claims: TokenClaims


@dataclass(frozen=True)
class TokenPair:
    access: IssuedToken
    refresh: IssuedToken
    token_type: str = "Bearer"


@dataclass(frozen=True)
class LoginResult:
    user: User
    tokens: TokenPair
