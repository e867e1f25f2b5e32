"""Unit tests for auth/store.py -- UserStore CRUD and constraints."""

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import UserStore


@pytest.fixture
def store():
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


def _user(email="a@example.com", role="worker", **kw) -> User:
    return User(email=email, name="A", role=role, password_hash="h", password_salt="s", **kw)


def test_create_and_fetch(store):
    assert not store.has_users()
    uid = store.create_user(_user(permissions=["read:own_profile"], profile_data={"k": 1}))
    assert store.has_users()

    user = store.get_by_id(uid)
    assert user.email == "a@example.com"
    assert user.permissions == ["read:own_profile"]
    assert user.profile_data == {"k": 1}
    assert user.is_active is True
    assert user.is_verified is False
    assert user.created_at


def test_email_is_normalized_and_unique(store):
    store.create_user(_user(email="  Mixed@Example.COM "))
    assert store.get_by_email("mixed@example.com") is not None
    with pytest.raises(IntegrityError):
        store.create_user(_user(email="mixed@example.com"))


def test_license_is_unique(store):
    store.create_user(_user(email="d1@example.com", role="doctor", license_number="LIC-1"))
    assert store.get_by_license("LIC-1").email == "d1@example.com"
    with pytest.raises(IntegrityError):
        store.create_user(_user(email="d2@example.com", role="doctor", license_number="LIC-1"))


def test_workers_without_license_do_not_collide(store):
    store.create_user(_user(email="w1@example.com"))
    store.create_user(_user(email="w2@example.com"))
    assert len(store.list_users(role="worker")) == 2


def test_update_user(store):
    uid = store.create_user(_user())
    assert store.update_user(uid, is_verified=True, permissions=["x"], name="B")
    user = store.get_by_id(uid)
    assert user.is_verified is True
    assert user.permissions == ["x"]
    assert user.name == "B"
    assert not store.update_user(9999, name="nobody")


def test_update_user_rejects_unknown_fields(store):
    uid = store.create_user(_user())
    with pytest.raises(ValueError):
        store.update_user(uid, email="other@example.com")


def test_delete_and_last_login(store):
    uid = store.create_user(_user())
    stamp = store.update_last_login(uid)
    assert store.get_by_id(uid).last_login == stamp
    assert store.delete_user(uid)
    assert store.get_by_id(uid) is None
    assert not store.delete_user(uid)


def test_ping(store):
    assert store.ping() is True
