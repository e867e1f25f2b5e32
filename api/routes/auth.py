"""
api/routes/auth.py -- Login, self-registration, and token refresh endpoints.

Routes:
  POST /api/auth/login      -- email/password login; returns user + token pair
  POST /api/auth/register   -- create a worker or doctor account
  POST /api/auth/refresh    -- exchange a refresh token for a new pair
  GET  /api/auth/me         -- identity and permissions from the access token

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline
  get_by_email() + verify_password().
  Wrong email and wrong password return the same 401 so the response does not
  reveal which emails are registered.
  Admin accounts cannot be self-registered here; they need an admin code
  (POST /api/admin/register).
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    TokensOut,
    UserOut,
)
from auth.dependencies import get_token_payload
from auth.models import TokenPayload, User
from auth.store import UserStore
from auth.tokens import authenticate_user, generate_tokens, hash_password, refresh_tokens
from core.config import get_settings

logger = logging.getLogger("migranthealth.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/auth/login:     public, rate limited
# - POST /api/auth/register:  public, rate limited
# - POST /api/auth/refresh:   public -- the refresh token is the credential
# - GET  /api/auth/me:        requires a valid access token
router = APIRouter()


def token_response(body: AuthResponse | RefreshResponse, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Inactive accounts fail exactly like a wrong password.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        logger.warning(
            "Failed login for %s from %s",
            body.email.strip().lower(),
            request.client.host if request.client else "unknown",
        )
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password"}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    user.last_login = user_store.update_last_login(user.id)
    tokens = generate_tokens(user)
    logger.info("User %d (%s) logged in", user.id, user.role)
    return token_response(AuthResponse(user=UserOut.from_user(user), tokens=TokensOut.from_tokens(tokens)))


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(_settings.register_rate_limit)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a worker or doctor account with no custom permissions.

    Role defaults still apply through the token's permission claim.
    """
    if body.role == "admin":
        raise HTTPException(
            status_code=403,
            detail={
                "code": "forbidden",
                "message": "Admin accounts must be registered with an admin code",
            },
        )

    user_store: UserStore = request.app.state.user_store
    if user_store.get_by_email(body.email) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "User with this email already exists"},
        )

    pw_hash, salt = hash_password(body.password)
    user_id = user_store.create_user(
        User(
            email=body.email,
            name=body.name,
            role=body.role,
            password_hash=pw_hash,
            password_salt=salt,
            profile_data=body.profile_data,
        )
    )
    user = user_store.get_by_id(user_id)
    logger.info("Registered %s account %d", user.role, user.id)
    tokens = generate_tokens(user)
    return token_response(
        AuthResponse(user=UserOut.from_user(user), tokens=TokensOut.from_tokens(tokens)),
        status_code=201,
    )


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    tokens = refresh_tokens(request.app.state.user_store, body.refresh_token)
    if tokens is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid or expired refresh token"},
        )
    return token_response(RefreshResponse(tokens=TokensOut.from_tokens(tokens)))


@router.get("/auth/me", response_model=MeResponse)
async def me(payload: TokenPayload = Depends(get_token_payload)) -> MeResponse:
    """Return the identity carried by the current access token."""
    return MeResponse(
        user_id=payload.user_id,
        email=payload.email,
        role=payload.role,
        permissions=payload.permissions,
    )
