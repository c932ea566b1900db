"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive only as "Authorization: Bearer <token>". Verification
order matters: signature, algorithm, expiry and issuer first, THEN the
blacklist. A forged token therefore never costs a counter-store round trip.

get_current_claims() raises Unauthorized; get_current_user() additionally
resolves the subject to an active User.

enforce_ip_gate() is attached to login and forget-password. It rejects a
blocked IP with RateLimited before any credential work happens. The gate
fails open: if the counter store is down, the request goes through and the
failure is logged, so an outage of the store does not lock everyone out.

Services are read from request.app.state, where api/main.py's lifespan put
them.

Layer rule: no imports from api/. auth/dependencies.py may import from
fastapi (for Request) because this module is part of the FastAPI dependency
injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request
from slowapi.util import get_remote_address

from auth.errors import RateLimited, StoreUnavailable, Unauthorized
from auth.models import TokenClaims, User

logger = logging.getLogger("authguard.auth")


def client_ip(request: Request) -> str:
    """Caller address as seen by the ASGI server (same key slowapi limits on)."""
    return get_remote_address(request) or "unknown"


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _verified_claims(request: Request) -> TokenClaims:
    token = bearer_token(request)
    if token is None:
        raise Unauthorized("Missing or malformed Authorization header.")
    claims = request.app.state.issuer.verify_access_token(token)
    if claims is None:
        raise Unauthorized()
    # StoreUnavailable propagates: a token that cannot be checked is not accepted.
    if request.app.state.blacklist.is_revoked(claims.jti):
        logger.warning("Logged-out token presented for user %s from %s", claims.subject, client_ip(request))
        raise Unauthorized("Token has been logged out.")
    return claims


def get_current_claims(request: Request) -> TokenClaims:
    """Require a valid, non-revoked access token.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(claims: TokenClaims = Depends(get_current_claims)): ...
    """
    return _verified_claims(request)


def get_current_user(request: Request) -> User:
    claims = _verified_claims(request)
    try:
        user = request.app.state.user_store.get_by_id(claims.user_id)
    except ValueError:
        raise Unauthorized() from None
    if user is None or not user.is_active:
        raise Unauthorized()
    return user


def enforce_ip_gate(request: Request) -> str:
    """Reject the request with 429 while the caller's IP is blocked.

    Returns the client IP so routes need not compute it again.
    """
    ip = client_ip(request)
    try:
        remaining = request.app.state.throttle.ip_block_ttl(ip)
    except StoreUnavailable:
        logger.exception("IP block check failed for %s; allowing request", ip)
        return ip
    if remaining > 0:
        logger.info("Blocked IP %s refused (%ds left)", ip, remaining)
        raise RateLimited(remaining, "Too many failed attempts. Try again later.")
    return ip
