"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login               -- username + password -> user + token pair
  POST /api/v1/auth/refresh             -- refresh token -> new token pair
  POST /api/v1/auth/logout              -- revoke access (+ matching refresh) token
  POST /api/v1/auth/forget-password     -- email a reset link; same answer for any email
  POST /api/v1/auth/verify-reset-token  -- is this reset token still live?
  POST /api/v1/auth/reset-password      -- consume reset token, set new password
  GET  /api/v1/auth/me                  -- current user info (requires auth)

Security:
  [C1] AuthService.login() provides timing equalization -- use it, never inline.
  Login and forget-password go through enforce_ip_gate (429 + Retry-After for
  a blocked IP) and the coarse slowapi ceiling.
  Cache-Control: no-store on every response that carries tokens.

Handlers are plain def: bcrypt and the stores are blocking, so FastAPI runs
them in its thread pool. Errors are raised as auth.errors.AuthError and
rendered by the handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import auth_rate_limit, limiter
from api.models import (
    ForgetPasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserInfo,
    VerifyResetTokenRequest,
)
from auth.dependencies import client_ip, enforce_ip_gate, get_current_claims, get_current_user
from auth.models import TokenClaims, User
from auth.reset import PasswordResetService
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/login:               public, IP gate
# - POST /api/v1/auth/refresh:             public -- the refresh token is the credential
# - POST /api/v1/auth/logout:              requires auth (get_current_claims)
# - POST /api/v1/auth/forget-password:     public, IP gate
# - POST /api/v1/auth/verify-reset-token:  public -- the reset token is the credential
# - POST /api/v1/auth/reset-password:      public -- the reset token is the credential
# - GET  /api/v1/auth/me:                  requires auth (get_current_user)
router = APIRouter()

FORGET_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def _no_store(content: dict) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Login / tokens
# ---------------------------------------------------------------------------


@limiter.limit(auth_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest, ip: str = Depends(enforce_ip_gate)) -> JSONResponse:
    """Authenticate with username and password; return the user and a token pair.

    Unknown user, wrong password and locked account all produce the same 401
    "invalid_credentials" body.
    """
    service: AuthService = request.app.state.auth_service
    result = service.login(body.username, body.password, ip)
    payload = LoginResponse(user=UserInfo.from_user(result.user), tokens=TokenResponse.from_pair(result.tokens))
    return _no_store(payload.model_dump(mode="json"))


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access + refresh token pair."""
    service: AuthService = request.app.state.auth_service
    pair = service.refresh(body.refresh_token)
    return _no_store(TokenResponse.from_pair(pair).model_dump(mode="json"))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    body: LogoutRequest,
    claims: TokenClaims = Depends(get_current_claims),
) -> MessageResponse:
    """Revoke the bearer access token and the given refresh token."""
    service: AuthService = request.app.state.auth_service
    service.logout(claims, body.refresh_token)
    return MessageResponse(message="Logged out.")


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(auth_rate_limit)
@router.post("/auth/forget-password", response_model=MessageResponse)
def forget_password(
    request: Request,
    body: ForgetPasswordRequest,
    ip: str = Depends(enforce_ip_gate),
) -> MessageResponse:
    """Send a reset link if the email belongs to an account. The answer never says which."""
    service: PasswordResetService = request.app.state.reset_service
    service.forget_password(body.email)
    return MessageResponse(message=FORGET_PASSWORD_MESSAGE)


@router.post("/auth/verify-reset-token", response_model=MessageResponse)
def verify_reset_token(request: Request, body: VerifyResetTokenRequest) -> MessageResponse:
    service: PasswordResetService = request.app.state.reset_service
    service.verify_reset_token(body.token)
    return MessageResponse(message="Reset token is valid.")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    service: PasswordResetService = request.app.state.reset_service
    service.reset_password(body.token, body.new_password, client_ip(request))
    return MessageResponse(message="Password has been reset.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserInfo)
def me(current_user: User = Depends(get_current_user)) -> UserInfo:
    """Return identity information for the currently authenticated user."""
    return UserInfo.from_user(current_user)
