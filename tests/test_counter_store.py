"""
tests/test_counter_store.py -- Unit tests for cache/store.py.

MemoryCounterStore is exercised directly with a FakeClock. RedisCounterStore
is exercised with a mocked redis client: only the error translation and the
argument mapping are ours, the commands themselves are Redis'.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import redis

from cache.store import CounterStoreError, MemoryCounterStore, RedisCounterStore, open_counter_store

# ---------------------------------------------------------------------------
# MemoryCounterStore
# ---------------------------------------------------------------------------


def test_incr_creates_and_counts(counter_store):
    assert counter_store.incr("k") == 1
    assert counter_store.incr("k") == 2
    assert counter_store.get("k") == "2"


def test_ttl_missing_and_persistent(counter_store):
    assert counter_store.ttl("missing") == -2
    counter_store.set("k", "v")
    assert counter_store.ttl("k") == -1


def test_expire_then_key_disappears(counter_store, clock):
    counter_store.incr("k")
    assert counter_store.expire("k", 10)
    assert counter_store.ttl("k") == 10
    clock.advance(9.5)
    assert counter_store.ttl("k") == 1
    assert counter_store.exists("k")
    clock.advance(0.5)
    assert not counter_store.exists("k")
    assert counter_store.get("k") is None


def test_expire_missing_key_is_false(counter_store):
    assert counter_store.expire("nope", 10) is False


def test_incr_keeps_existing_expiry(counter_store, clock):
    counter_store.incr("k")
    counter_store.expire("k", 10)
    clock.advance(4)
    counter_store.incr("k")
    assert counter_store.ttl("k") == 6


def test_incr_after_expiry_starts_over(counter_store, clock):
    counter_store.incr("k")
    counter_store.incr("k")
    counter_store.expire("k", 5)
    clock.advance(5)
    assert counter_store.incr("k") == 1
    assert counter_store.ttl("k") == -1


def test_incr_non_integer_raises(counter_store):
    counter_store.set("k", "not-a-number")
    with pytest.raises(CounterStoreError):
        counter_store.incr("k")


def test_set_with_ttl(counter_store, clock):
    counter_store.set("flag", "1", 30)
    assert counter_store.ttl("flag") == 30
    clock.advance(31)
    assert not counter_store.exists("flag")


def test_delete_counts_only_live_keys(counter_store, clock):
    counter_store.set("a", "1")
    counter_store.set("b", "1", 1)
    clock.advance(2)
    assert counter_store.delete("a", "b", "c") == 1
    assert counter_store.delete("a") == 0


def test_purge_expired(counter_store, clock):
    counter_store.set("short", "1", 1)
    counter_store.set("long", "1", 100)
    counter_store.set("forever", "1")
    clock.advance(2)
    assert counter_store.purge_expired() == 1
    assert counter_store.exists("long")
    assert counter_store.exists("forever")


def test_ping_and_close():
    store = MemoryCounterStore()
    store.set("k", "v")
    assert store.ping()
    store.close()
    assert not store.exists("k")


def test_open_counter_store_defaults_to_memory():
    assert isinstance(open_counter_store(""), MemoryCounterStore)
    assert isinstance(open_counter_store("redis://localhost:6379/0"), RedisCounterStore)


# ---------------------------------------------------------------------------
# RedisCounterStore
# ---------------------------------------------------------------------------


@pytest.fixture
def redis_store() -> RedisCounterStore:
    # from_url does not connect; the client is replaced before any command.
    store = RedisCounterStore("redis://localhost:6379/0", timeout=0.5)
    store.client = MagicMock()
    return store


def test_redis_set_passes_ttl_as_ex(redis_store):
    redis_store.set("lock:user:bob", "1", 1800)
    redis_store.client.set.assert_called_once_with("lock:user:bob", "1", ex=1800)


def test_redis_incr_and_ttl(redis_store):
    redis_store.client.incr.return_value = 3
    redis_store.client.ttl.return_value = 42
    assert redis_store.incr("k") == 3
    assert redis_store.ttl("k") == 42


def test_redis_delete_without_keys_skips_call(redis_store):
    assert redis_store.delete() == 0
    redis_store.client.delete.assert_not_called()


@pytest.mark.parametrize("method,args", [("incr", ("k",)), ("exists", ("k",)), ("set", ("k", "v", 10))])
def test_redis_errors_are_wrapped(redis_store, method, args):
    getattr(redis_store.client, method).side_effect = redis.ConnectionError("refused")
    with pytest.raises(CounterStoreError) as excinfo:
        getattr(redis_store, method)(*args)
    assert excinfo.value.operation == method
    assert isinstance(excinfo.value.__cause__, redis.ConnectionError)


def test_redis_timeout_is_wrapped(redis_store):
    redis_store.client.ttl.side_effect = redis.TimeoutError("slow")
    with pytest.raises(CounterStoreError):
        redis_store.ttl("k")


def test_redis_ping_failure_is_false(redis_store):
    redis_store.client.ping.side_effect = redis.ConnectionError("down")
    assert redis_store.ping() is False
