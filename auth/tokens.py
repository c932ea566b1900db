"""
auth/tokens.py -- JWT access/refresh tokens and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens use different
       secrets and lifetimes, so one kind can never be replayed as the other.
       Every token carries a UUID4 jti -- the key used to blacklist it on
       logout. Verification returns None on any failure (malformed, bad
       signature, wrong algorithm, wrong issuer, expired) and never says which;
       the caller turns None into a generic "invalid token" outcome.

  Passwords: bcrypt, used directly (no passlib wrapper). make_dummy_hash()
       produces a valid hash of a random secret at the configured cost so the
       login flow can always run a full bcrypt comparison, even for unknown
       or locked users [C1].

  Secrets: TokenIssuer refuses to construct with a secret shorter than the
       configured minimum or a non-positive lifetime. That is a startup-time
       invariant; no per-call check exists.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import IssuedToken, TokenClaims, TokenPair
from core.config import Settings

logger = logging.getLogger("authguard.auth.tokens")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError for passwords longer than MAX_PASSWORD_BYTES; callers
    validate length before hashing.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password longer than {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Passwords over MAX_PASSWORD_BYTES never match, whatever the installed
    bcrypt would do with them (4.x truncates, 5.x raises).
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


def make_dummy_hash(rounds: int = 12) -> str:
    """Return a valid bcrypt hash that matches no password anyone can submit.

    The plaintext is 32 random bytes that are discarded immediately. Using
    the same cost factor as real hashes keeps the comparison time identical
    whether or not the username exists [C1].
    """
    return hash_password(secrets.token_urlsafe(32), rounds=rounds)


# ---------------------------------------------------------------------------
# JWT issuance and verification
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Mints and verifies access and refresh tokens.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        pair = issuer.issue_pair(user_id=42)
        claims = issuer.verify_access_token(pair.access.token)   # TokenClaims or None
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        *,
        issuer: str = "authguard",
        min_secret_size: int = 32,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if len(access_secret.encode("utf-8")) < min_secret_size or len(refresh_secret.encode("utf-8")) < min_secret_size:
            raise ValueError(f"invalid key size: must be at least {min_secret_size} bytes")
        if access_ttl <= timedelta(0) or refresh_ttl <= timedelta(0):
            raise ValueError("invalid token duration: must be greater than 0")
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {ACCESS: access_ttl, REFRESH: refresh_ttl}
        self.issuer = issuer
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenIssuer:
        return cls(
            settings.access_token_secret,
            settings.refresh_token_secret,
            timedelta(seconds=settings.access_token_expire_seconds),
            timedelta(seconds=settings.refresh_token_expire_seconds),
            issuer=settings.token_issuer,
            min_secret_size=settings.token_min_secret_size,
        )

    def _generate(self, kind: str, user_id: int) -> IssuedToken:
        # Whole seconds: JWT NumericDate claims are integers.
        now = self._clock().replace(microsecond=0)
        expires_at = now + self._ttls[kind]
        claims = TokenClaims(
            jti=str(uuid.uuid4()),
            subject=str(user_id),
            issued_at=now,
            expires_at=expires_at,
            issuer=self.issuer,
            kind=kind,
        )
        payload = {
            "sub": claims.subject,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": claims.issuer,
            "jti": claims.jti,
        }
        token = jwt.encode(payload, self._secrets[kind], algorithm=_ALGORITHM)
        return IssuedToken(token=token, expires_at=expires_at, claims=claims)

    def _verify(self, kind: str, token: str) -> TokenClaims | None:
        try:
            payload = jwt.decode(
                token,
                self._secrets[kind],
                algorithms=[_ALGORITHM],
                issuer=self.issuer,
                options={"require_exp": True, "require_iat": True, "require_sub": True, "require_jti": True},
            )
        except JWTError:
            return None
        try:
            return TokenClaims(
                jti=payload["jti"],
                subject=payload["sub"],
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                issuer=payload["iss"],
                kind=kind,
            )
        except (KeyError, TypeError, ValueError, OverflowError):
            return None

    def generate_access_token(self, user_id: int) -> IssuedToken:
        return self._generate(ACCESS, user_id)

    def generate_refresh_token(self, user_id: int) -> IssuedToken:
        return self._generate(REFRESH, user_id)

    def issue_pair(self, user_id: int) -> TokenPair:
        """Issue a fresh access token and refresh token for the same subject."""
        return TokenPair(access=self.generate_access_token(user_id), refresh=self.generate_refresh_token(user_id))

    def verify_access_token(self, token: str) -> TokenClaims | None:
        """Decode and verify an access token. Returns claims or None on any failure."""
        return self._verify(ACCESS, token)

    def verify_refresh_token(self, token: str) -> TokenClaims | None:
        """Decode and verify a refresh token. Returns claims or None on any failure."""
        return self._verify(REFRESH, token)

    def remaining_seconds(self, claims: TokenClaims) -> int:
        """Whole seconds until the token expires; 0 or less when already expired."""
        return int((claims.expires_at - self._clock()).total_seconds())
