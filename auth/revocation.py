"""
auth/revocation.py -- Token blacklist keyed by jti.

Revocation is distinct from expiry: a blacklisted token still has a valid
signature and an unexpired exp claim, but is refused anyway. Entries live
only as long as the token itself would have, so the blacklist never outgrows
the set of tokens that are still alive.
"""

from __future__ import annotations

from auth.errors import StoreUnavailable
from cache import keys
from cache.store import CounterStore, CounterStoreError


class TokenBlacklist:
    def __init__(self, store: CounterStore) -> None:
        self.store = store

    def revoke(self, jti: str, ttl_seconds: int) -> bool:
        """Blacklist jti for ttl_seconds. Returns False (and stores nothing) if ttl <= 0."""
        if ttl_seconds <= 0:
            return False
        try:
            self.store.set(keys.BLACKLISTED_TOKEN.format(jti), "1", ttl_seconds)
        except CounterStoreError as exc:
            raise StoreUnavailable("blacklist token") from exc
        return True

    def is_revoked(self, jti: str) -> bool:
        try:
            return self.store.exists(keys.BLACKLISTED_TOKEN.format(jti))
        except CounterStoreError as exc:
            raise StoreUnavailable("check if token is blacklisted") from exc
