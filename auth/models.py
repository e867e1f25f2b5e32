"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in records/models.py -- dataclasses own domain shape; stores and routes do
the work.

Layer rule: no imports from api/, records/, media/, or offline/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ROLES = ("worker", "doctor", "admin")


@dataclass
class User:
    """An account that can authenticate against the API.

    password_hash and password_salt are stored separately: the salt is the
    bcrypt salt string the hash was computed with.

    permissions holds the custom grants written at registration time. The
    effective permission set carried in tokens is the union of these and the
    role defaults (see auth.permissions.get_user_permissions).

    license_number is only set for doctors. It has its own UNIQUE column so
    the database rejects a second registration with the same licence.
    """

    email: str
    name: str
    role: str  # "worker", "doctor", "admin"
    password_hash: str = ""
    password_salt: str = ""
    id: int | None = None
    permissions: list[str] = field(default_factory=list)
    profile_data: dict = field(default_factory=dict)
    license_number: str | None = None
    is_active: bool = True
    is_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None


@dataclass
class AuthTokens:
    """An access/refresh token pair. expires_in is the access token lifetime in seconds."""

    access_token: str
    refresh_token: str
    expires_in: int


@dataclass
class TokenPayload:
    """The verified claims of an access token.

    Route handlers authorize against this object alone; no database lookup
    is needed to check a permission.
    """

    user_id: int
    email: str
    role: str
    permissions: list[str] = field(default_factory=list)
    exp: int | None = None
