"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Requests authenticate with an Authorization: Bearer <token> header carrying
an access token from /api/auth/login, /api/auth/register, or the portal
registration endpoints.

get_token_payload() verifies the token and returns its claims. It raises
HTTP 401 when the header is missing or the token does not verify.
require_permission() wraps it and raises HTTP 403 unless the token carries
at least one of the listed permissions.

Authorization reads the permission list embedded in the token, so these
helpers never touch the user store.

Layer rule: no imports from api/, records/, media/, or offline/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Callable

from fastapi import HTTPException, Request

from auth.models import TokenPayload
from auth.permissions import payload_has_any
from auth.tokens import decode_access_token


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def get_token_payload(request: Request) -> TokenPayload:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(payload: TokenPayload = Depends(get_token_payload)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "No token provided"},
        )
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid or expired token"},
        )
    return payload


def require_permission(*permissions: str) -> Callable[[Request], TokenPayload]:
    """Build a dependency that requires any one of the given permissions.

    Use as a FastAPI dependency:
        @router.get("/audit-logs")
        async def route(payload: TokenPayload = Depends(require_permission("read:audit_logs"))): ...
    """

    def dependency(request: Request) -> TokenPayload:
        payload = get_token_payload(request)
        if not payload_has_any(payload, *permissions):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient permissions"},
            )
        return payload

    return dependency
