"""
tests/conftest.py -- Shared test fixtures for Migrant Health Records integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for users + records
  - _make_media(): a MagicMock media uploader that never touches the network
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api: module-scoped ApiContext (TestClient + stores + media mock)
  - make_user: fixture returning a helper that inserts a user of any role
    and returns (user, auth headers)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any app import: DEBUG so
get_settings() auto-generates SECRET_KEY, ALLOWED_HOSTS so TrustedHost
accepts the TestClient's "testserver" host, and RATE_LIMIT_ENABLED so
repeated logins from one address are not throttled.
"""

from __future__ import annotations

import os
import time
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

# CRITICAL: Set these before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from media.uploader import UploadResult
from records.store import RecordStore

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, RecordStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (the module name is used).
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    records_url = f"sqlite:///file:test_records_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=auth_url), RecordStore(db_url=records_url)


def _fake_upload(data, folder, public_id, tags=None, context=None, filename="upload", resource_type="auto"):
    return UploadResult(
        public_id=f"{folder}/{public_id}",
        secure_url=f"https://media.test/secure/{folder}/{public_id}",
        url=f"http://media.test/{folder}/{public_id}",
        bytes=len(data),
        folder=folder,
    )


def _make_media() -> MagicMock:
    """MagicMock uploader with realistic return values.

    upload() echoes back an UploadResult; the URL builders return strings so
    response models can serialize them.
    """
    media = MagicMock()
    media.enabled = True
    media.upload.side_effect = _fake_upload
    media.thumbnail_url.side_effect = lambda public_id, width=150, height=150: f"https://media.test/thumb/{public_id}"
    media.optimized_url.side_effect = lambda public_id: f"https://media.test/opt/{public_id}"
    return media


def _patch_lifespan(user_store: UserStore, record_store: RecordStore, media: MagicMock):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.started_at = time.monotonic()
        app.state.user_store = user_store
        app.state.record_store = record_store
        app.state.media = media
        yield

    return test_lifespan


def _create_user(
    user_store: UserStore,
    role: str,
    email: str,
    password: str = "testpass123",
    permissions: list[str] | None = None,
) -> tuple[User, dict[str, str]]:
    """Insert a user and return it with a ready-made Authorization header."""
    pw_hash, salt = hash_password(password)
    uid = user_store.create_user(
        User(
            email=email,
            name=email.split("@")[0],
            role=role,
            password_hash=pw_hash,
            password_salt=salt,
            permissions=permissions or [],
        )
    )
    user = user_store.get_by_id(uid)
    token = create_access_token(user, expire_seconds=3600)
    return user, {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    user_store: UserStore
    record_store: RecordStore
    media: MagicMock


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store, record_store = _make_test_stores(suffix)
    media = _make_media()

    app.router.lifespan_context = _patch_lifespan(user_store, record_store, media)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, user_store=user_store, record_store=record_store, media=media)

    record_store.close()
    user_store.close()


@pytest.fixture(scope="session")
def make_user():
    """Return the user factory: make_user(user_store, role, email, ...) -> (user, headers)."""
    return _create_user
