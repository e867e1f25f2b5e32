"""
auth/permissions.py -- Role-based permission strings.

Permissions are plain "<verb>:<resource>" strings. Every role has a static
default list; users may carry extra grants on their record. Tokens embed the
union of both, so routes only need a membership check against the payload.

Layer rule: no imports from api/, records/, media/, or offline/.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.models import TokenPayload, User

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "worker": [
        "read:own_profile",
        "update:own_profile",
        "read:own_health_records",
        "upload:own_documents",
        "read:own_documents",
        "delete:own_documents",
        "read:own_prescriptions",
        "read:own_appointments",
    ],
    "doctor": [
        "read:patient_profiles",
        "update:patient_health_records",
        "create:prescriptions",
        "read:prescriptions",
        "update:prescriptions",
        "create:appointments",
        "read:appointments",
        "update:appointments",
        "read:patient_documents",
        "verify:documents",
        "create:medical_visits",
        "read:medical_visits",
        "update:medical_visits",
    ],
    "admin": [
        "read:all_users",
        "create:users",
        "update:users",
        "delete:users",
        "read:all_health_records",
        "update:all_health_records",
        "delete:health_records",
        "read:all_documents",
        "delete:documents",
        "read:audit_logs",
        "read:system_status",
        "update:system_settings",
        "manage:doctors",
        "manage:workers",
        "export:system_data",
        "import:system_data",
    ],
}

# Custom grants written onto the user record at registration, per portal.
WORKER_REGISTRATION_PERMISSIONS = ["read:own_profile", "update:own_profile"]

DOCTOR_REGISTRATION_PERMISSIONS = [
    "read:patient_profiles",
    "create:medical_visits",
    "update:medical_visits",
    "read:medical_visits",
    "create:prescriptions",
    "update:prescriptions",
    "read:documents",
    "verify:documents",
]

ADMIN_REGISTRATION_PERMISSIONS = [
    "read:all_users",
    "create:users",
    "update:users",
    "delete:users",
    "read:patient_profiles",
    "update:patient_profiles",
    "read:medical_visits",
    "update:medical_visits",
    "read:documents",
    "verify:documents",
    "create:audit_logs",
    "read:audit_logs",
    "manage:system_settings",
    "verify:doctors",
    "manage:permissions",
]

# Portal page -> permissions that open it. An empty list marks a public page.
ROUTE_PERMISSIONS: dict[str, list[str]] = {
    "/workers": ["read:own_profile"],
    "/workers/dashboard": ["read:own_profile"],
    "/workers/register": [],
    "/workers/documents": ["read:own_documents"],
    "/workers/health-card": ["read:own_profile"],
    "/doctors": ["read:patient_profiles"],
    "/doctors/patient": ["read:patient_profiles"],
    "/doctors/qr-scanner": ["read:patient_profiles"],
    "/admin": ["read:all_users", "read:system_status"],
    "/admin/hospital": ["read:all_users", "manage:doctors"],
    "/security/audit-logs": ["read:audit_logs"],
    "/storage/management": ["read:all_documents"],
    "/system-status": ["read:system_status"],
    "/govt": ["read:all_users", "read:system_status"],
    "/help": [],
}


def get_permissions(role: str) -> list[str]:
    """Return the default permissions for a role (empty for unknown roles)."""
    return list(ROLE_PERMISSIONS.get(role, []))


def has_permission(role: str, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, [])


def user_has_permission(user: User, permission: str) -> bool:
    """True if the user holds the permission via a custom grant or their role."""
    return permission in user.permissions or has_permission(user.role, permission)


def get_user_permissions(user: User) -> list[str]:
    """Union of role and custom permissions, role defaults first, no duplicates."""
    merged: list[str] = []
    seen: set[str] = set()
    for perm in [*get_permissions(user.role), *user.permissions]:
        if perm not in seen:
            seen.add(perm)
            merged.append(perm)
    return merged


def payload_has_any(payload: TokenPayload, *permissions: str) -> bool:
    return any(p in payload.permissions for p in permissions)


def can_access(path: str, role: str | None, extra_permissions: list[str] | None = None) -> bool:
    """Decide whether a role (plus extra grants) may open a portal page.

    Unknown paths and public pages (empty requirement list) are open. Any
    single matching permission is enough.
    """
    required = ROUTE_PERMISSIONS.get(path)
    if not required:
        return True
    if role is None:
        return False
    extra = extra_permissions or []
    return any(has_permission(role, p) or p in extra for p in required)
