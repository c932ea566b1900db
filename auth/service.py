"""
auth/service.py -- Login, token refresh, and logout.

Security design decisions:
  Login always runs exactly one bcrypt comparison. When the user is unknown,
  inactive, has no password, or is locked, the comparison target is a dummy
  hash computed once at construction with the configured cost [C1]. The
  outcome is only then decided, and every failure cause raises the same
  InvalidCredentials. Response time and body therefore say nothing about
  which usernames exist or which accounts are locked.

  A lockout flag beats a correct password. If the lockout check itself
  fails, login fails with StoreUnavailable: a broken counter store must not
  let a locked user in.

  Failure and success bookkeeping (counter increments, clears) is submitted
  to the BackgroundRunner so a client disconnect cannot cancel it and a
  store hiccup cannot turn a good login into an error.

  Logout revokes the access token first. The refresh token is revoked only
  if it verifies and belongs to the same subject.
"""

from __future__ import annotations

import logging

from auth.background import BackgroundRunner
from auth.errors import BadRequest, InvalidCredentials, Unauthorized
from auth.models import LoginResult, TokenClaims, TokenPair
from auth.ratelimit import LoginThrottle
from auth.revocation import TokenBlacklist
from auth.store import CredentialStore
from auth.tokens import TokenIssuer, make_dummy_hash, verify_password

logger = logging.getLogger("authguard.auth")


class AuthService:
    def __init__(
        self,
        users: CredentialStore,
        issuer: TokenIssuer,
        throttle: LoginThrottle,
        blacklist: TokenBlacklist,
        runner: BackgroundRunner,
        *,
        bcrypt_rounds: int = 12,
    ) -> None:
        self.users = users
        self.issuer = issuer
        self.throttle = throttle
        self.blacklist = blacklist
        self.runner = runner
        self._dummy_hash = make_dummy_hash(bcrypt_rounds)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, username: str, password: str, ip: str) -> LoginResult:
        """Verify credentials and issue a token pair.

        Raises InvalidCredentials for every failure cause.
        Raises StoreUnavailable if the lockout flag cannot be read.
        """
        locked = self.throttle.is_user_locked(username)
        user = self.users.get_by_username(username)

        usable = user is not None and user.is_active and bool(user.hashed_password) and not locked
        target = user.hashed_password if usable else self._dummy_hash
        matched = verify_password(password, target)

        if not (usable and matched):
            if locked:
                logger.info("Login refused for locked user %r from %s", username, ip)
            self.runner.submit("record login failure", self._record_failure, username, ip)
            raise InvalidCredentials()

        self.runner.submit("clear login failures", self._clear_failures, username, ip)
        tokens = self.issuer.issue_pair(user.id)
        logger.info("User %r logged in from %s", username, ip)
        return LoginResult(user=user, tokens=tokens)

    def _record_failure(self, username: str, ip: str) -> None:
        # The IP track is recorded even when the user track fails.
        try:
            self.throttle.record_user_failure(username)
        finally:
            self.throttle.record_ip_failure(ip)

    def _clear_failures(self, username: str, ip: str) -> None:
        try:
            self.throttle.clear_user(username)
        finally:
            self.throttle.clear_ip(ip)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a valid refresh token for a new access + refresh pair.

        The presented refresh token stays valid until it expires or is
        logged out.
        """
        claims = self.issuer.verify_refresh_token(refresh_token)
        if claims is None:
            raise Unauthorized("Invalid or expired refresh token.")
        if self.blacklist.is_revoked(claims.jti):
            logger.warning("Revoked refresh token presented for user %s", claims.subject)
            raise Unauthorized("Token has been logged out.")
        try:
            user_id = claims.user_id
        except ValueError:
            raise Unauthorized("Invalid or expired refresh token.") from None
        user = self.users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise Unauthorized("Invalid or expired refresh token.")
        return self.issuer.issue_pair(user.id)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, access_claims: TokenClaims, refresh_token: str) -> None:
        """Revoke the access token and, when it matches, the refresh token.

        Raises BadRequest if the refresh token verifies but belongs to a
        different subject. An unverifiable refresh token is not an error:
        there is nothing left to revoke.
        """
        self.blacklist.revoke(access_claims.jti, self.issuer.remaining_seconds(access_claims))

        refresh_claims = self.issuer.verify_refresh_token(refresh_token)
        if refresh_claims is None:
            logger.info("Logout for user %s with an invalid refresh token", access_claims.subject)
            return
        if refresh_claims.subject != access_claims.subject:
            logger.warning(
                "Logout token mismatch: access subject %s, refresh subject %s",
                access_claims.subject,
                refresh_claims.subject,
            )
            raise BadRequest("Token mismatch.")
        self.blacklist.revoke(refresh_claims.jti, self.issuer.remaining_seconds(refresh_claims))
        logger.info("User %s logged out", access_claims.subject)
