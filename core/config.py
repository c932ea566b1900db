"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthGuard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() or
accept a Settings instance at construction.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Runs cross-field validation once, at startup.
      Components receive an already-validated Settings object and never
      re-check secrets or durations per call.

Security notes:
  [M6] Token secrets shorter than token_min_secret_size are rejected outright.
       HS256 signing relies on key entropy -- a short key weakens it.

  [M7] In production mode (DEBUG not set or false), missing token secrets are
       a hard startup failure. Dev mode generates random secrets with a warning.

  Access and refresh secrets must differ, otherwise a refresh token would
  verify as an access token.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authguard.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'authguard.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL
    frontend_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates dev secrets or raises, so callers never see "".
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    token_issuer: str = "authguard"
    token_min_secret_size: int = 32

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    min_password_length: int = 8
    bcrypt_rounds: int = 12
    reset_token_expire_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Brute-force protection
    # ------------------------------------------------------------------

    user_lockout_threshold: int = 10
    user_failure_window_seconds: int = 15 * 60
    user_lockout_seconds: int = 30 * 60

    # One IP may front many legitimate users (NAT, proxies), so its limit is
    # much higher than the per-user limit.
    ip_rate_limit_attempts: int = 50
    ip_rate_limit_window_seconds: int = 10 * 60
    ip_backoff_base_seconds: int = 60

    # Coarse slowapi ceiling applied on top of the counters above.
    login_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Counter store and background work
    # ------------------------------------------------------------------

    # Empty string means "use the in-process counter store" (single worker only).
    redis_url: str = ""
    store_timeout_seconds: float = 3.0
    background_workers: int = 4
    background_task_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Mail (optional -- empty smtp_host means notifications are only logged)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = "no-reply@authguard.local"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the token secret policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate random secrets with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than token_min_secret_size bytes and
            identical access/refresh secrets.
        """
        if self.token_min_secret_size <= 0:
            raise ValueError("TOKEN_MIN_SECRET_SIZE must be positive.")
        for name in ("access_token_secret", "refresh_token_secret"):
            if getattr(self, name):
                continue
            if not self.debug:
                raise ValueError(
                    f"{name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, name, secrets.token_hex(32))
            logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", name.upper())
        for name in ("access_token_secret", "refresh_token_secret"):
            if len(getattr(self, name).encode("utf-8")) < self.token_min_secret_size:
                raise ValueError(f"{name.upper()} must be at least {self.token_min_secret_size} bytes.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        return self

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject non-positive durations, thresholds, and windows at startup."""
        positive = (
            "access_token_expire_seconds",
            "refresh_token_expire_seconds",
            "min_password_length",
            "reset_token_expire_seconds",
            "user_lockout_threshold",
            "user_failure_window_seconds",
            "user_lockout_seconds",
            "ip_rate_limit_attempts",
            "ip_rate_limit_window_seconds",
            "ip_backoff_base_seconds",
            "background_workers",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be greater than 0.")
        if self.store_timeout_seconds <= 0 or self.background_task_timeout_seconds <= 0:
            raise ValueError("Store and background timeouts must be greater than 0.")
        # bcrypt accepts cost factors 4..31
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
