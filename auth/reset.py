"""
auth/reset.py -- Single-use password reset tokens.

Flow:
  forget_password(email)     -> store reset:password:{token} = user id with a
                                TTL, email the link in the background.
  verify_reset_token(token)  -> read-only existence check for the reset page.
  reset_password(token, pw)  -> consume the token, replace the password hash.

Security design decisions:
  forget_password answers the same way whether or not the email is known,
  and whether or not the lookup or store call worked. The route returns one
  fixed message.

  Tokens are secrets.token_urlsafe(32) (256 bits). Only the first 8
  characters ever appear in a log line.

  A token is consumed by deleting its key. delete() returns how many keys it
  removed, so of two concurrent resets with the same token exactly one sees 1
  and proceeds; the other gets the generic invalid-token error. Consumption
  happens after validation and after the new hash is computed, so a too-short
  password leaves the token usable. If the hash update then finds no row, the
  caller gets the generic error and no "password changed" email goes out.

  Every invalid-token outcome (unknown, expired, consumed, user gone) raises
  the same BadRequest message.
"""

from __future__ import annotations

import logging
import secrets
from urllib.parse import quote

from auth.background import BackgroundRunner
from auth.errors import BadRequest, StoreUnavailable
from auth.notifications import NotificationService, redact_email
from auth.ratelimit import LoginThrottle
from auth.store import CredentialStore
from auth.tokens import MAX_PASSWORD_BYTES, hash_password
from cache import keys
from cache.store import CounterStore, CounterStoreError
from core.config import Settings

logger = logging.getLogger("authguard.reset")

_INVALID_TOKEN = "Invalid or expired reset token."


def _prefix(token: str) -> str:
    return token[:8] + "..."


class PasswordResetService:
    def __init__(
        self,
        users: CredentialStore,
        store: CounterStore,
        throttle: LoginThrottle,
        notifications: NotificationService,
        runner: BackgroundRunner,
        settings: Settings,
    ) -> None:
        self.users = users
        self.store = store
        self.throttle = throttle
        self.notifications = notifications
        self.runner = runner
        self.token_ttl = settings.reset_token_expire_seconds
        self.min_password_length = settings.min_password_length
        self.bcrypt_rounds = settings.bcrypt_rounds
        self.frontend_url = settings.frontend_url.rstrip("/")

    def reset_link(self, token: str) -> str:
        return f"{self.frontend_url}/reset-password?token={quote(token)}"

    # ------------------------------------------------------------------
    # Request a reset
    # ------------------------------------------------------------------

    def forget_password(self, email: str) -> None:
        """Start a reset for email. Never raises and never reveals whether email exists."""
        try:
            user = self.users.get_by_email(email)
        except Exception:
            logger.exception("User lookup failed during forget-password")
            return
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown email %s", redact_email(email))
            return

        token = secrets.token_urlsafe(32)
        try:
            self.store.set(keys.RESET_PASSWORD.format(token), str(user.id), self.token_ttl)
        except CounterStoreError:
            logger.exception("Could not store reset token for user %s", user.id)
            return

        logger.info("Password reset token %s issued for user %s", _prefix(token), user.id)
        self.runner.submit(
            "send password reset email",
            self.notifications.send_password_reset_email,
            user.email,
            self.reset_link(token),
        )

    # ------------------------------------------------------------------
    # Verify / consume
    # ------------------------------------------------------------------

    def _lookup(self, token: str) -> int:
        if not token:
            raise BadRequest(_INVALID_TOKEN)
        try:
            raw = self.store.get(keys.RESET_PASSWORD.format(token))
        except CounterStoreError as exc:
            raise StoreUnavailable("get reset token") from exc
        if raw is None:
            raise BadRequest(_INVALID_TOKEN)
        try:
            return int(raw)
        except ValueError:
            logger.error("Malformed reset token entry %s", _prefix(token))
            raise BadRequest(_INVALID_TOKEN) from None

    def verify_reset_token(self, token: str) -> None:
        """Raise BadRequest unless token is live. Does not consume it."""
        self._lookup(token)

    def reset_password(self, token: str, new_password: str, ip: str) -> None:
        user_id = self._lookup(token)

        if len(new_password) < self.min_password_length:
            raise BadRequest(f"Password must be at least {self.min_password_length} characters long.")
        if len(new_password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise BadRequest(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.")

        user = self.users.get_by_id(user_id)
        if user is None:
            raise BadRequest(_INVALID_TOKEN)

        hashed = hash_password(new_password, rounds=self.bcrypt_rounds)

        try:
            consumed = self.store.delete(keys.RESET_PASSWORD.format(token))
        except CounterStoreError as exc:
            raise StoreUnavailable("delete reset token") from exc
        if not consumed:
            logger.warning("Reset token %s already consumed", _prefix(token))
            raise BadRequest(_INVALID_TOKEN)

        if not self.users.update_password_hash(user.id, hashed):
            # Row vanished between lookup and update; the token is spent either way.
            logger.error("Password update failed for user %s; no row was changed", user.id)
            raise BadRequest(_INVALID_TOKEN)
        logger.info("Password reset completed for user %s", user.id)

        self.runner.submit("clear login failures after reset", self._clear_failures, user.username, ip)
        self.runner.submit("send password changed email", self.notifications.send_password_changed_email, user.email)

    def _clear_failures(self, username: str, ip: str) -> None:
        try:
            self.throttle.clear_user(username)
        finally:
            self.throttle.clear_ip(ip)
