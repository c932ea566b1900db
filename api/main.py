"""
api/main.py -- FastAPI application entry point for AuthGuard.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for the configured frontend
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  3. log_requests          -- request id + one access log line per request

Lifespan handles startup (stores, background runner, services, purge task)
and shutdown (cancel purge task, drain background jobs, close stores)
symmetrically. wire_services() is the single place where components are
constructed and attached to app.state; the test suite calls it too, with
its own stores.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.background import BackgroundRunner
from auth.errors import AuthError, RateLimited
from auth.notifications import NotificationSender, NotificationService, build_sender
from auth.ratelimit import LoginThrottle
from auth.reset import PasswordResetService
from auth.revocation import TokenBlacklist
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from cache.store import CounterStore, MemoryCounterStore, open_counter_store
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authguard.api")

# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def wire_services(
    app: FastAPI,
    settings: Settings,
    *,
    user_store: UserStore,
    counter_store: CounterStore,
    sender: NotificationSender | None = None,
) -> None:
    """Construct every auth component and attach it to app.state.

    Construction order follows dependencies: the issuer validates secrets
    first, so a misconfigured deployment fails before anything else starts.
    """
    issuer = TokenIssuer.from_settings(settings)
    runner = BackgroundRunner(
        max_workers=settings.background_workers,
        task_timeout=settings.background_task_timeout_seconds,
    )
    throttle = LoginThrottle(counter_store, settings)
    blacklist = TokenBlacklist(counter_store)
    notifications = NotificationService(
        sender if sender is not None else build_sender(settings),
        settings.reset_token_expire_seconds,
    )

    app.state.settings = settings
    app.state.user_store = user_store
    app.state.counter_store = counter_store
    app.state.runner = runner
    app.state.issuer = issuer
    app.state.throttle = throttle
    app.state.blacklist = blacklist
    app.state.notifications = notifications
    app.state.auth_service = AuthService(
        user_store, issuer, throttle, blacklist, runner, bcrypt_rounds=settings.bcrypt_rounds
    )
    app.state.reset_service = PasswordResetService(
        user_store, counter_store, throttle, notifications, runner, settings
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: float = 60.0) -> None:
    """Purge expired counter-store entries every minute.

    Only started for the in-process store; Redis expires keys on its own.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.counter_store.purge_expired()
        if removed:
            logger.debug("Purged %d expired counter-store entries", removed)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Background jobs are drained before the stores close so queued
    counter updates are not lost on a clean shutdown.
    """
    # Startup
    settings = get_settings()
    logger.info("AuthGuard API starting up")
    user_store = UserStore(settings.database_url)
    counter_store = open_counter_store(settings.redis_url, timeout=settings.store_timeout_seconds)
    if isinstance(counter_store, MemoryCounterStore):
        logger.warning("REDIS_URL not set -- using in-process counter store (single worker only)")
    elif not counter_store.ping():
        logger.warning("Counter store unreachable at startup -- login will fail until it recovers")
    wire_services(app, settings, user_store=user_store, counter_store=counter_store)
    app.state.purge_task = None
    if isinstance(counter_store, MemoryCounterStore):
        app.state.purge_task = asyncio.create_task(_purge_loop(app))
    logger.info("Auth initialized (has_users=%s)", user_store.has_users())

    yield

    # Shutdown
    if app.state.purge_task is not None:
        app.state.purge_task.cancel()
    app.state.runner.shutdown(timeout=settings.background_task_timeout_seconds)
    counter_store.close()
    user_store.close()
    logger.info("AuthGuard API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthGuard API",
    description="Login, JWT access/refresh tokens, brute-force protection, and password reset.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().frontend_url],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["Retry-After", "X-Request-ID"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request gets a request id: the caller's X-Request-ID when present,
# else a fresh one. It is echoed back on the response and appears in the
# access log line so a client report can be matched to server logs.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "%s %s %d %.1fms %s rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        request_id,
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render auth service errors.

    5xx causes are logged server-side and never echoed: the client sees only
    the class's generic message.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc, exc_info=exc)
        return _error_response(exc.status_code, exc.code, exc.message)
    response = _error_response(exc.status_code, exc.code, exc.message, exc.detail)
    if isinstance(exc, RateLimited):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when the slowapi ceiling is exceeded.

    slowapi does not expose the reset time on the exception, so Retry-After
    falls back to the limit's own period.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Only field locations and messages are returned; input values are dropped
    so a password never echoes back.
    """
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()
    )
    return _error_response(422, "validation_error", "Request validation failed.", problems)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness and whether the counter store answers."""
    if request.app.state.counter_store.ping():
        return HealthResponse(version=VERSION)
    return HealthResponse(status="degraded", version=VERSION, counter_store="unreachable")
