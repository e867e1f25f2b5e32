"""Unit tests for auth/tokens.py -- hashing, JWT round trips, and secure IDs."""

import re
import time

from jose import jwt

from auth.models import User
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    generate_secure_id,
    generate_tokens,
    hash_password,
    is_token_expired,
    refresh_tokens,
    verify_password,
)
from core.config import get_settings


def _user(**overrides) -> User:
    fields = {"id": 7, "email": "nurse@example.com", "name": "Nurse", "role": "doctor", "permissions": ["read:documents"]}
    fields.update(overrides)
    return User(**fields)


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def test_hash_and_verify_with_salt():
    pw_hash, salt = hash_password("correct horse")
    assert pw_hash.startswith(salt)
    assert verify_password("correct horse", pw_hash, salt)
    assert not verify_password("wrong horse", pw_hash, salt)


def test_verify_without_salt_uses_embedded_salt():
    pw_hash, _ = hash_password("correct horse")
    assert verify_password("correct horse", pw_hash)


def test_verify_with_malformed_hash_is_false():
    assert not verify_password("anything", "not-a-bcrypt-hash")


def test_passwords_longer_than_72_bytes_are_truncated_consistently():
    long_pw = "x" * 100
    pw_hash, salt = hash_password(long_pw)
    assert verify_password(long_pw, pw_hash, salt)
    assert verify_password("x" * 72 + "different tail", pw_hash, salt)


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------


def test_access_token_claims():
    settings = get_settings()
    token = create_access_token(_user())
    claims = jwt.get_unverified_claims(token)
    assert claims["userId"] == 7
    assert claims["iss"] == settings.jwt_issuer
    assert claims["aud"] == settings.jwt_audience
    assert "verify:documents" in claims["permissions"]
    assert "read:documents" in claims["permissions"]


def test_decode_access_token_round_trip():
    payload = decode_access_token(create_access_token(_user()))
    assert payload.user_id == 7
    assert payload.role == "doctor"
    assert payload.email == "nurse@example.com"


def test_decode_rejects_refresh_token():
    assert decode_access_token(create_refresh_token(7)) is None


def test_decode_rejects_wrong_audience():
    settings = get_settings()
    token = jwt.encode(
        {"userId": 1, "role": "admin", "iss": settings.jwt_issuer, "aud": "someone-else", "exp": int(time.time()) + 60},
        settings.secret_key,
        algorithm="HS256",
    )
    assert decode_access_token(token) is None


def test_decode_rejects_other_signing_key():
    token = jwt.encode({"userId": 1, "role": "admin"}, "x" * 40, algorithm="HS256")
    assert decode_access_token(token) is None


def test_generate_tokens_expires_in_seconds():
    tokens = generate_tokens(_user())
    assert tokens.expires_in == get_settings().access_token_expire_seconds
    assert not is_token_expired(tokens.access_token)


def test_is_token_expired():
    settings = get_settings()
    expired = jwt.encode({"userId": 1, "exp": int(time.time()) - 10}, settings.secret_key, algorithm="HS256")
    assert is_token_expired(expired)
    assert is_token_expired("garbage")


def test_refresh_tokens_requires_active_user():
    store = UserStore("sqlite:///:memory:")
    pw_hash, salt = hash_password("password123")
    uid = store.create_user(User(email="r@example.com", name="R", role="worker", password_hash=pw_hash, password_salt=salt))
    refresh = create_refresh_token(uid)

    assert refresh_tokens(store, refresh) is not None
    store.update_user(uid, is_active=False)
    assert refresh_tokens(store, refresh) is None
    assert refresh_tokens(store, create_access_token(store.get_by_id(uid))) is None
    store.close()


def test_authenticate_user():
    store = UserStore("sqlite:///:memory:")
    pw_hash, salt = hash_password("password123")
    store.create_user(User(email="auth@example.com", name="A", role="worker", password_hash=pw_hash, password_salt=salt))

    assert authenticate_user(store, "AUTH@example.com", "password123").email == "auth@example.com"
    assert authenticate_user(store, "auth@example.com", "nope") is None
    assert authenticate_user(store, "missing@example.com", "password123") is None
    store.close()


# ---------------------------------------------------------------------------
# IDs
# ---------------------------------------------------------------------------


def test_generate_secure_id_format():
    value = generate_secure_id("MW")
    assert re.fullmatch(r"MW_\d{13}_[0-9a-f]{16}", value)
    assert generate_secure_id("MW") != value
