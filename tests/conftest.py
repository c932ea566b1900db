"""
tests/conftest.py -- Shared test fixtures for AuthGuard unit and integration tests.

This module provides:
  - FakeClock: a controllable monotonic clock for MemoryCounterStore, so
    windows, lockouts and blocks can expire without sleeping.
  - RecordingSender: a NotificationSender that keeps every message.
  - Component fixtures (settings, stores, runner, services) for unit tests.
  - _patch_lifespan(): wires test components into app.state, bypassing the
    real startup.
  - api_client: TestClient with isolated stores and one seeded user.

Design: each test gets its own file-backed SQLite DB under tmp_path. Plain
:memory: DBs are per-connection, and TestClient runs sync route handlers in
a thread pool, so every worker thread would see a blank schema.

Background bookkeeping runs on real threads. Tests call runner.drain()
before asserting on counter state.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import so
get_settings() generates dev secrets instead of raising, and hashing stays
fast.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, wire_services
from auth.background import BackgroundRunner
from auth.models import User
from auth.notifications import NotificationService
from auth.ratelimit import LoginThrottle
from auth.reset import PasswordResetService
from auth.revocation import TokenBlacklist
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer, hash_password
from cache.store import CounterStoreError, MemoryCounterStore
from core.config import Settings

BOB_PASSWORD = "correct-horse-battery"

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock for MemoryCounterStore. advance() moves time forward."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))


class FailingStore:
    """Counter store that behaves like an unreachable Redis."""

    def _fail(self, *args, **kwargs):
        raise CounterStoreError("command")

    incr = expire = set = get = delete = ttl = exists = _fail

    def ping(self) -> bool:
        return False

    def purge_expired(self) -> int:
        return 0

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        debug=True,
        bcrypt_rounds=4,
        access_token_secret="a" * 32 + "-access-secret",
        refresh_token_secret="r" * 32 + "-refresh-secret",
        frontend_url="https://app.example.com",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def counter_store(clock: FakeClock) -> MemoryCounterStore:
    return MemoryCounterStore(clock=clock)


@pytest.fixture
def user_store(tmp_path) -> Generator[UserStore, None, None]:
    store = UserStore(db_url=f"sqlite:///{tmp_path / 'auth.db'}")
    yield store
    store.close()


@pytest.fixture
def runner() -> Generator[BackgroundRunner, None, None]:
    bg = BackgroundRunner(max_workers=2, task_timeout=5.0)
    yield bg
    bg.shutdown(timeout=5.0)


@pytest.fixture
def issuer(settings: Settings) -> TokenIssuer:
    return TokenIssuer.from_settings(settings)


@pytest.fixture
def throttle(counter_store: MemoryCounterStore, settings: Settings) -> LoginThrottle:
    return LoginThrottle(counter_store, settings)


@pytest.fixture
def blacklist(counter_store: MemoryCounterStore) -> TokenBlacklist:
    return TokenBlacklist(counter_store)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def auth_service(user_store, issuer, throttle, blacklist, runner) -> AuthService:
    return AuthService(user_store, issuer, throttle, blacklist, runner, bcrypt_rounds=4)


@pytest.fixture
def reset_service(user_store, counter_store, throttle, sender, runner, settings) -> PasswordResetService:
    notifications = NotificationService(sender, settings.reset_token_expire_seconds)
    return PasswordResetService(user_store, counter_store, throttle, notifications, runner, settings)


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def bob_password() -> str:
    return BOB_PASSWORD


@pytest.fixture
def bob(user_store: UserStore) -> User:
    uid = user_store.create_user(
        User(username="bob", email="bob@example.com", hashed_password=hash_password(BOB_PASSWORD, rounds=4))
    )
    return user_store.get_by_id(uid)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, user_store: UserStore, counter_store: MemoryCounterStore, sender):
    """Return an async context manager that replaces the real lifespan.

    Uses the same wire_services() as production so routes see exactly the
    production component graph, only backed by isolated test stores.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, settings, user_store=user_store, counter_store=counter_store, sender=sender)
        yield
        app.state.runner.shutdown(timeout=5.0)

    return test_lifespan


@pytest.fixture
def api_client(settings, user_store, counter_store, sender, bob) -> Generator[TestClient, None, None]:
    """Yield a TestClient for API integration tests.

    The slowapi ceiling is disabled so tests can drive the failure counters
    past their thresholds; the counter-based IP backoff stays active.
    """
    limiter.enabled = False
    app.router.lifespan_context = _patch_lifespan(settings, user_store, counter_store, sender)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
    limiter.enabled = True
