"""
auth/ratelimit.py -- Per-user lockout and per-IP exponential backoff.

Two independent tracks share one primitive, _record_failure(): INCR the
failure counter and, only when the new value is 1, start its TTL window. The
window therefore decays on a fixed cadence from the first failure instead of
being pushed forward by every new hit.

  User track: threshold user_lockout_threshold within
      user_failure_window_seconds. On reaching it the user gets a lockout
      flag for user_lockout_seconds and the counter is deleted, so the next
      window starts clean once the lock expires.

  IP track: threshold ip_rate_limit_attempts within
      ip_rate_limit_window_seconds. On reaching it the IP's block level is
      incremented and the IP is blocked for
          ip_backoff_base_seconds * 2 ** (level - 1)
      seconds. The level never expires on its own; only a successful login or
      password reset from that IP (or an operator) clears it.

No locks are taken here. Each store call is atomic on its own; two concurrent
failures may both see the threshold and both write the lock flag, which is
harmless. Exact counting would need a distributed lock and is not a goal.

Every counter-store error surfaces as StoreUnavailable with the operation
name attached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.errors import StoreUnavailable
from cache import keys
from cache.store import CounterStore, CounterStoreError
from core.config import Settings

logger = logging.getLogger("authguard.ratelimit")


@dataclass(frozen=True)
class IPFailureResult:
    """Outcome of recording one IP failure.

    blocked is True only when this very failure triggered a new block;
    retry_after is the block duration in seconds (for a Retry-After header).
    """

    blocked: bool = False
    retry_after: int = 0
    level: int = 0


class LoginThrottle:
    def __init__(self, store: CounterStore, settings: Settings) -> None:
        self.store = store
        self.user_threshold = settings.user_lockout_threshold
        self.user_window = settings.user_failure_window_seconds
        self.user_lockout = settings.user_lockout_seconds
        self.ip_threshold = settings.ip_rate_limit_attempts
        self.ip_window = settings.ip_rate_limit_window_seconds
        self.backoff_base = settings.ip_backoff_base_seconds

    def _record_failure(self, key: str, window: int) -> int:
        count = self.store.incr(key)
        if count == 1:
            self.store.expire(key, window)
        return count

    def backoff_seconds(self, level: int) -> int:
        return self.backoff_base * 2 ** (max(level, 1) - 1)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def is_user_locked(self, username: str) -> bool:
        try:
            return self.store.exists(keys.USER_LOCK.format(username))
        except CounterStoreError as exc:
            raise StoreUnavailable("check locked user") from exc

    def lockout_ttl(self, username: str) -> int:
        """Seconds left on the user's lockout; 0 when not locked."""
        try:
            return max(self.store.ttl(keys.USER_LOCK.format(username)), 0)
        except CounterStoreError as exc:
            raise StoreUnavailable("get user lockout TTL") from exc

    def ip_block_ttl(self, ip: str) -> int:
        """Seconds left on the IP's block; 0 when not blocked."""
        try:
            return max(self.store.ttl(keys.IP_BLOCK.format(ip)), 0)
        except CounterStoreError as exc:
            raise StoreUnavailable("get block IP TTL") from exc

    def ip_block_level(self, ip: str) -> int:
        try:
            raw = self.store.get(keys.IP_BLOCK_LEVEL.format(ip))
        except CounterStoreError as exc:
            raise StoreUnavailable("get IP block level") from exc
        return int(raw) if raw else 0

    # ------------------------------------------------------------------
    # Failures
    # ------------------------------------------------------------------

    def record_user_failure(self, username: str) -> bool:
        """Count one failed login for username. Returns True if this locked the user."""
        attempts_key = keys.USER_ATTEMPTS.format(username)
        try:
            count = self._record_failure(attempts_key, self.user_window)
            if count < self.user_threshold:
                return False
            self.store.set(keys.USER_LOCK.format(username), "1", self.user_lockout)
            self.store.delete(attempts_key)
        except CounterStoreError as exc:
            raise StoreUnavailable("record user failure") from exc
        logger.warning("User %r locked for %ds after %d failed logins", username, self.user_lockout, count)
        return True

    def record_ip_failure(self, ip: str) -> IPFailureResult:
        """Count one failed attempt from ip, blocking it when the threshold is reached."""
        attempts_key = keys.IP_ATTEMPTS.format(ip)
        try:
            count = self._record_failure(attempts_key, self.ip_window)
            if count < self.ip_threshold:
                return IPFailureResult()
            level = self.store.incr(keys.IP_BLOCK_LEVEL.format(ip))
            duration = self.backoff_seconds(level)
            self.store.set(keys.IP_BLOCK.format(ip), "1", duration)
            self.store.delete(attempts_key)
        except CounterStoreError as exc:
            raise StoreUnavailable("record IP failure") from exc
        logger.warning("IP %s blocked for %ds (level %d)", ip, duration, level)
        return IPFailureResult(blocked=True, retry_after=duration, level=level)

    # ------------------------------------------------------------------
    # Clearing
    # ------------------------------------------------------------------

    def clear_user(self, username: str) -> None:
        """Forget the user's failed attempts (after a successful login or reset)."""
        try:
            self.store.delete(keys.USER_ATTEMPTS.format(username))
        except CounterStoreError as exc:
            raise StoreUnavailable("delete user attempts") from exc

    def clear_ip(self, ip: str) -> None:
        """Forget the IP's failed attempts and reset its backoff level.

        An active block is left in place: it simply runs out.
        """
        try:
            self.store.delete(keys.IP_ATTEMPTS.format(ip), keys.IP_BLOCK_LEVEL.format(ip))
        except CounterStoreError as exc:
            raise StoreUnavailable("delete IP attempts") from exc

    def unlock_user(self, username: str) -> bool:
        """Operator action: lift a lockout early. Returns True if a lock existed."""
        try:
            removed = self.store.delete(keys.USER_LOCK.format(username), keys.USER_ATTEMPTS.format(username))
        except CounterStoreError as exc:
            raise StoreUnavailable("unlock user") from exc
        return removed > 0

    def unblock_ip(self, ip: str) -> bool:
        """Operator action: lift an IP block and reset its level."""
        try:
            removed = self.store.delete(
                keys.IP_BLOCK.format(ip), keys.IP_ATTEMPTS.format(ip), keys.IP_BLOCK_LEVEL.format(ip)
            )
        except CounterStoreError as exc:
            raise StoreUnavailable("unblock IP") from exc
        return removed > 0
