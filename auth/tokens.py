"""
auth/tokens.py -- Password hashing, JWT issuance/verification, and secure IDs.

Security design decisions:
  JWT: python-jose with HS256. Access tokens carry userId, email, role and the
       effective permission list, plus issuer and audience claims. Refresh
       tokens carry only userId and type="refresh". Verification returns None
       on any failure -- the dependency layer turns that into a 401.

  Passwords: bcrypt. The salt from bcrypt.gensalt() is stored next to the
       hash so the record keeps an explicit (hash, salt) pair. Inputs are cut
       to bcrypt's 72-byte limit on both hash and verify so newer bcrypt
       releases, which reject longer inputs, behave the same as older ones.
       _DUMMY_HASH enables timing equalization in authenticate_user() so
       response time does not reveal whether an email is registered.

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup.

Layer rule: no imports from api/, records/, media/, or offline/. Import from
core/ is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import AuthTokens, TokenPayload
from auth.permissions import get_user_permissions
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("migranthealth.auth")

_settings = get_settings()

_ALGORITHM = "HS256"
_BCRYPT_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _password_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> tuple[str, str]:
    """Return (hash, salt) for the given plaintext password."""
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(_password_bytes(plain), salt)
    return hashed.decode("utf-8"), salt.decode("utf-8")


def verify_password(plain: str, hashed: str, salt: str = "") -> bool:
    """Return True if the plaintext password matches the stored hash.

    With a salt, the hash is recomputed and compared in constant time. Without
    one, bcrypt reads the salt embedded in the hash itself.
    """
    try:
        if salt:
            candidate = bcrypt.hashpw(_password_bytes(plain), salt.encode("utf-8"))
            return hmac.compare_digest(candidate, hashed.encode("utf-8"))
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH, _DUMMY_SALT = hash_password("migranthealth_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user: User, expire_seconds: int = 0) -> str:
    """Encode a signed access token for the user.

    The permissions claim is the user's effective permission set at issue
    time. Changes to a user's grants take effect on the next login or refresh.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user.id,
        "email": user.email,
        "role": user.role,
        "permissions": get_user_permissions(user),
        "iss": _settings.jwt_issuer,
        "aud": _settings.jwt_audience,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def create_refresh_token(user_id: int, expire_seconds: int = 0) -> str:
    duration = expire_seconds if expire_seconds > 0 else _settings.refresh_token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user_id,
        "type": "refresh",
        "iss": _settings.jwt_issuer,
        "aud": _settings.jwt_audience,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def generate_tokens(user: User) -> AuthTokens:
    """Issue a fresh access/refresh pair for the user."""
    return AuthTokens(
        access_token=create_access_token(user),
        refresh_token=create_refresh_token(user.id),
        expires_in=_settings.access_token_expire_seconds,
    )


def _decode(token: str) -> dict | None:
    try:
        return jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            audience=_settings.jwt_audience,
            issuer=_settings.jwt_issuer,
        )
    except JWTError as exc:
        logger.debug("Token verification failed: %s", exc)
        return None


def decode_access_token(token: str) -> TokenPayload | None:
    """Decode and verify an access token. Returns None on any failure.

    Refresh tokens are rejected here: they are signed with the same key but
    carry type="refresh" and no role claim.
    """
    payload = _decode(token)
    if payload is None or payload.get("type") == "refresh":
        return None
    if "userId" not in payload or "role" not in payload:
        return None
    return TokenPayload(
        user_id=payload["userId"],
        email=payload.get("email", ""),
        role=payload["role"],
        permissions=list(payload.get("permissions") or []),
        exp=payload.get("exp"),
    )


def refresh_tokens(store: UserStore, refresh_token: str) -> AuthTokens | None:
    """Exchange a refresh token for a new token pair.

    The user is re-read from the store, so a deactivated or deleted account
    cannot refresh, and the new access token reflects current permissions.
    """
    payload = _decode(refresh_token)
    if payload is None or payload.get("type") != "refresh":
        return None
    user = store.get_by_id(payload.get("userId"))
    if user is None or not user.is_active:
        return None
    return generate_tokens(user)


def is_token_expired(token: str) -> bool:
    """True when the token cannot be parsed or its exp claim is in the past.

    Signature is not checked. Clients use this to decide when to refresh.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return True
    exp = claims.get("exp")
    if not exp:
        return True
    return time.time() >= exp


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists, so response time does
    not reveal which emails are registered. Inactive users fail the same way
    as a wrong password.
    """
    user = store.get_by_email(email)
    if user is None or not user.password_hash:
        verify_password(password, _DUMMY_HASH, _DUMMY_SALT)
        return None
    if not verify_password(password, user.password_hash, user.password_salt):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def generate_secure_id(prefix: str = "SEC") -> str:
    """Return an ID of the form PREFIX_<epoch ms>_<16 hex chars>."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(8)}"
