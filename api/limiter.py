"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

This is a coarse per-IP request ceiling on the public auth endpoints, counted
in process memory. It sits in front of the failure-based IP backoff in
auth/ratelimit.py, which only counts failed attempts and is shared across
processes through the counter store.

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def auth_rate_limit() -> str:
    """Limit string for login and forget-password, read from settings at request time."""
    return get_settings().login_rate_limit
