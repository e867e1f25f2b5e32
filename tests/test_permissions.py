"""Unit tests for auth/permissions.py -- role defaults, custom grants, and page access."""

import pytest

from auth.models import TokenPayload, User
from auth.permissions import (
    can_access,
    get_permissions,
    get_user_permissions,
    has_permission,
    payload_has_any,
    user_has_permission,
)


def test_role_defaults():
    assert has_permission("doctor", "verify:documents")
    assert not has_permission("worker", "verify:documents")
    assert has_permission("admin", "read:audit_logs")
    assert get_permissions("nobody") == []


def test_get_permissions_returns_a_copy():
    perms = get_permissions("worker")
    perms.append("delete:everything")
    assert "delete:everything" not in get_permissions("worker")


def test_user_permissions_merge_without_duplicates():
    user = User(email="w@example.com", name="W", role="worker", permissions=["read:own_profile", "read:documents"])
    merged = get_user_permissions(user)
    assert merged.count("read:own_profile") == 1
    assert merged[-1] == "read:documents"
    assert user_has_permission(user, "read:documents")
    assert user_has_permission(user, "upload:own_documents")
    assert not user_has_permission(user, "read:audit_logs")


def test_payload_has_any():
    payload = TokenPayload(user_id=1, email="", role="doctor", permissions=["a", "b"])
    assert payload_has_any(payload, "x", "b")
    assert not payload_has_any(payload, "x", "y")


@pytest.mark.parametrize(
    "path, role, expected",
    [
        ("/help", None, True),
        ("/workers/register", None, True),
        ("/unknown/page", None, True),
        ("/workers", None, False),
        ("/workers/dashboard", "worker", True),
        ("/doctors/patient", "worker", False),
        ("/doctors/patient", "doctor", True),
        ("/admin", "admin", True),
        ("/admin", "doctor", False),
        ("/security/audit-logs", "admin", True),
    ],
)
def test_can_access(path, role, expected):
    assert can_access(path, role) is expected


def test_can_access_with_extra_grant():
    assert not can_access("/storage/management", "doctor")
    assert can_access("/storage/management", "doctor", ["read:all_documents"])
