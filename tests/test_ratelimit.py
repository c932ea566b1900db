"""
tests/test_ratelimit.py -- Unit tests for auth/ratelimit.py.

Covers:
  - user lockout at the threshold, fixed failure window, lockout expiry
  - IP exponential backoff (base, 2x, 4x) and level reset
  - clear / unlock / unblock helpers
  - store errors surface as StoreUnavailable
"""

from __future__ import annotations

import pytest

from auth.errors import StoreUnavailable
from auth.ratelimit import LoginThrottle


def test_user_locks_on_threshold(throttle, counter_store):
    for _ in range(9):
        assert throttle.record_user_failure("bob") is False
    assert not throttle.is_user_locked("bob")
    assert throttle.record_user_failure("bob") is True
    assert throttle.is_user_locked("bob")
    assert throttle.lockout_ttl("bob") == 30 * 60
    # The counter is dropped once the lock is set.
    assert counter_store.get("attempts:user:bob") is None


def test_failure_window_is_fixed_from_first_failure(throttle, counter_store, clock):
    throttle.record_user_failure("bob")
    clock.advance(600)
    throttle.record_user_failure("bob")
    # Later failures do not push the window forward.
    assert counter_store.ttl("attempts:user:bob") == 300


def test_failures_spread_beyond_window_never_lock(throttle, clock):
    for _ in range(9):
        throttle.record_user_failure("bob")
    clock.advance(15 * 60)
    assert throttle.record_user_failure("bob") is False
    assert not throttle.is_user_locked("bob")


def test_lockout_expires(throttle, clock):
    for _ in range(10):
        throttle.record_user_failure("bob")
    clock.advance(30 * 60 - 1)
    assert throttle.is_user_locked("bob")
    clock.advance(1)
    assert not throttle.is_user_locked("bob")
    assert throttle.lockout_ttl("bob") == 0


def test_ip_backoff_doubles_per_level(throttle, clock):
    durations = []
    for _ in range(3):
        result = None
        for _ in range(50):
            result = throttle.record_ip_failure("203.0.113.7")
        assert result.blocked
        durations.append(result.retry_after)
        assert throttle.ip_block_ttl("203.0.113.7") == result.retry_after
        clock.advance(result.retry_after)
        assert throttle.ip_block_ttl("203.0.113.7") == 0
    assert durations == [60, 120, 240]
    assert throttle.ip_block_level("203.0.113.7") == 3


def test_ip_below_threshold_not_blocked(throttle):
    for _ in range(49):
        result = throttle.record_ip_failure("198.51.100.1")
        assert not result.blocked
        assert result.retry_after == 0
    assert throttle.ip_block_ttl("198.51.100.1") == 0
    assert throttle.ip_block_level("198.51.100.1") == 0


def test_clear_ip_resets_level(throttle):
    for _ in range(50):
        throttle.record_ip_failure("10.0.0.1")
    throttle.clear_ip("10.0.0.1")
    assert throttle.ip_block_level("10.0.0.1") == 0
    for _ in range(50):
        result = throttle.record_ip_failure("10.0.0.1")
    assert result.level == 1
    assert result.retry_after == 60


def test_clear_user_drops_counter(throttle, counter_store):
    throttle.record_user_failure("bob")
    throttle.clear_user("bob")
    assert counter_store.get("attempts:user:bob") is None


def test_unlock_user(throttle):
    for _ in range(10):
        throttle.record_user_failure("bob")
    assert throttle.unlock_user("bob") is True
    assert not throttle.is_user_locked("bob")
    assert throttle.unlock_user("bob") is False


def test_unblock_ip(throttle):
    for _ in range(50):
        throttle.record_ip_failure("10.0.0.2")
    assert throttle.unblock_ip("10.0.0.2") is True
    assert throttle.ip_block_ttl("10.0.0.2") == 0
    assert throttle.ip_block_level("10.0.0.2") == 0


def test_backoff_seconds_formula(throttle):
    assert [throttle.backoff_seconds(level) for level in (1, 2, 3, 4)] == [60, 120, 240, 480]


def test_thresholds_come_from_settings(counter_store, settings):
    strict = LoginThrottle(counter_store, settings.model_copy(update={"user_lockout_threshold": 2}))
    assert strict.record_user_failure("eve") is False
    assert strict.record_user_failure("eve") is True


@pytest.mark.parametrize(
    "call",
    [
        lambda t: t.is_user_locked("bob"),
        lambda t: t.ip_block_ttl("1.2.3.4"),
        lambda t: t.record_user_failure("bob"),
        lambda t: t.record_ip_failure("1.2.3.4"),
        lambda t: t.clear_ip("1.2.3.4"),
    ],
)
def test_store_errors_raise_store_unavailable(failing_store, settings, call):
    throttle = LoginThrottle(failing_store, settings)
    with pytest.raises(StoreUnavailable) as excinfo:
        call(throttle)
    assert excinfo.value.status_code == 500
    assert "counter store" in str(excinfo.value)
