"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper (same as records/store.py).
UserStore is the repository; _row_to_user is the mapper. Route and dependency
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email and licence uniqueness are UNIQUE constraints. create_user() lets
  IntegrityError propagate so callers can map a lost race to 409 even after
  their own pre-insert lookup passed.

DB path: auth/migranthealth_auth.db by default (see core.config).

Layer rule: no imports from api/, records/, media/, or offline/.
"""

from __future__ import annotations

import json

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, text
from sqlalchemy.engine import Engine

from auth.models import User
from core.config import get_settings, now_iso
from core.db import make_engine

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lowercased
    Column("password_hash", Text, nullable=False),
    Column("password_salt", Text, nullable=False),
    Column("name", String(255), nullable=False),
    Column("role", String(20), nullable=False),
    Column("permissions", Text),  # JSON array of custom grants
    Column("profile_data", Text),  # JSON object
    Column("license_number", String(100), unique=True),  # doctors only; NULLs never collide
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        pw_hash, salt = hash_password("secret123")
        store.create_user(User(email="a@b.org", name="A", role="admin",
                               password_hash=pw_hash, password_salt=salt))
        user = store.get_by_email("a@b.org")
        store.close()
    """

    # Columns update_user() accepts. Anything else is a programming error.
    _MUTABLE_FIELDS: set = {
        "name",
        "role",
        "permissions",
        "profile_data",
        "is_active",
        "is_verified",
        "password_hash",
        "password_salt",
    }

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().auth_db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email or licence number
        already exists.
        """
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.strip().lower(),
                    password_hash=user.password_hash,
                    password_salt=user.password_salt,
                    name=user.name,
                    role=user.role,
                    permissions=json.dumps(user.permissions),
                    profile_data=json.dumps(user.profile_data),
                    license_number=user.license_number,
                    is_active=1 if user.is_active else 0,
                    is_verified=1 if user.is_verified else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. Matching is case-insensitive."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_license(self, license_number: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.license_number == license_number)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, role: str | None = None) -> list[User]:
        """Return all users ordered by email, optionally filtered by role."""
        query = _users.select().order_by(_users.c.email)
        if role is not None:
            query = query.where(_users.c.role == role)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Booleans are converted to 0/1 and list/dict fields to JSON.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        for key in ("is_active", "is_verified"):
            if key in fields:
                fields[key] = 1 if fields[key] else 0
        for key in ("permissions", "profile_data"):
            if key in fields:
                fields[key] = json.dumps(fields[key])
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted.

        Used to roll back a worker account when its profile insert fails.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> str:
        """Stamp and return the current UTC timestamp as last_login."""
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=stamp))
            conn.commit()
        return stamp

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        password_salt=row.password_salt,
        name=row.name,
        role=row.role,
        permissions=json.loads(row.permissions) if row.permissions else [],
        profile_data=json.loads(row.profile_data) if row.profile_data else {},
        license_number=row.license_number,
        is_active=bool(row.is_active),
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )
