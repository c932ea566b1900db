"""
cache/store.py -- Ephemeral counter store for failure counters, lockout flags,
IP blocks, the token blacklist, and password-reset tokens.

Two implementations share the CounterStore protocol:

  RedisCounterStore  -- production. Every command carries a socket timeout so
                        no request (or background job) can hang on Redis.
  MemoryCounterStore -- single-process development, the admin CLI in tests,
                        and the test suite. A clock can be injected so tests
                        can move time forward without sleeping.

Semantics follow Redis: incr() creates the key at 0 before incrementing,
ttl() returns -2 for a missing key and -1 for a key without expiry, and every
individual call is atomic. Callers combine calls (INCR then EXPIRE) and accept
the small race between them.

Usage:
    store = MemoryCounterStore()
    store.incr("attempts:user:bob")        # 1
    store.expire("attempts:user:bob", 900)
    store.ttl("attempts:user:bob")         # 900
    store.purge_expired()                  # call periodically to trim old entries

Layer rule: no imports from api/, auth/, or core/.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from typing import Protocol

import redis


class CounterStoreError(Exception):
    """A counter-store command failed (connection refused, timeout, bad reply)."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"counter store {operation} failed")
        self.operation = operation


class CounterStore(Protocol):
    def incr(self, key: str) -> int: ...

    def expire(self, key: str, seconds: int) -> bool: ...

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    def get(self, key: str) -> str | None: ...

    def delete(self, *keys: str) -> int: ...

    def ttl(self, key: str) -> int: ...

    def exists(self, key: str) -> bool: ...

    def ping(self) -> bool: ...

    def purge_expired(self) -> int: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# In-process implementation
# ---------------------------------------------------------------------------


class MemoryCounterStore:
    """Thread-safe dict-backed store with per-key expiry.

    Entries map key -> (value, expires_at) where expires_at is None for keys
    without a TTL. Expired entries are dropped lazily on access and in bulk by
    purge_expired().
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> tuple[str, float | None] | None:
        # Caller holds self._lock.
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def incr(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                value, expires_at = 0, None
            else:
                try:
                    value = int(entry[0])
                except ValueError:
                    raise CounterStoreError("incr") from None
                expires_at = entry[1]
            value += 1
            self._data[key] = (str(value), expires_at)
            return value

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            self._data[key] = (entry[0], self._clock() + seconds)
            return True

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
            self._data[key] = (str(value), expires_at)

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._live(key) is not None:
                    del self._data[key]
                    removed += 1
        return removed

    def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return -2
            if entry[1] is None:
                return -1
            # Round up so a key with 0.4s left still reports as present.
            return max(math.ceil(entry[1] - self._clock()), 1)

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    def ping(self) -> bool:
        return True

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of entries removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, (_, exp) in self._data.items() if exp is not None and exp <= now]
            for key in stale:
                del self._data[key]
        return len(stale)

    def close(self) -> None:
        with self._lock:
            self._data.clear()


# ---------------------------------------------------------------------------
# Redis implementation
# ---------------------------------------------------------------------------


class RedisCounterStore:
    """Thin synchronous Redis wrapper.

    decode_responses=True so every value comes back as str, matching
    MemoryCounterStore. socket_timeout bounds each command; redis-py raises
    TimeoutError (a RedisError) when it elapses.
    """

    def __init__(self, redis_url: str, *, timeout: float = 3.0) -> None:
        self.client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )

    def incr(self, key: str) -> int:
        try:
            return int(self.client.incr(key))
        except redis.RedisError as exc:
            raise CounterStoreError("incr") from exc

    def expire(self, key: str, seconds: int) -> bool:
        try:
            return bool(self.client.expire(key, seconds))
        except redis.RedisError as exc:
            raise CounterStoreError("expire") from exc

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            self.client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as exc:
            raise CounterStoreError("set") from exc

    def get(self, key: str) -> str | None:
        try:
            return self.client.get(key)
        except redis.RedisError as exc:
            raise CounterStoreError("get") from exc

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(self.client.delete(*keys))
        except redis.RedisError as exc:
            raise CounterStoreError("delete") from exc

    def ttl(self, key: str) -> int:
        try:
            return int(self.client.ttl(key))
        except redis.RedisError as exc:
            raise CounterStoreError("ttl") from exc

    def exists(self, key: str) -> bool:
        try:
            return bool(self.client.exists(key))
        except redis.RedisError as exc:
            raise CounterStoreError("exists") from exc

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    def purge_expired(self) -> int:
        # Redis expires keys on its own.
        return 0

    def close(self) -> None:
        self.client.close()


def open_counter_store(redis_url: str, *, timeout: float = 3.0) -> CounterStore:
    """Return a RedisCounterStore when redis_url is set, else a MemoryCounterStore."""
    if redis_url:
        return RedisCounterStore(redis_url, timeout=timeout)
    return MemoryCounterStore()
