"""
API request and response models for the Migrant Health Records REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
records/models.py, which own the internal domain representation. Route
handlers map between the two.

All bodies use camelCase keys on the wire. CamelModel generates the aliases;
populate_by_name lets handlers build models with snake_case field names.

Separation of concerns: domain models = domain truth; api/ models = API contract.
"""

import re
from dataclasses import asdict
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import AuthTokens, User
from core.config import get_settings
from records.models import AuditLogEntry, MedicalDocument, WorkerProfile

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Human labels for required-field errors where the wire name reads poorly.
REQUIRED_LABELS: dict[str, str] = {
    "emergencyContactName": "Emergency contact name",
    "emergencyContactRelationship": "Emergency contact relationship",
    "emergencyContactPhone": "Emergency contact phone",
}


def check_email_format(value: str) -> str:
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email format")
    return value


def check_password_strength(value: str) -> str:
    minimum = get_settings().min_password_length
    if len(value) < minimum:
        raise ValueError(f"Password must be at least {minimum} characters long")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(CamelModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024)


class RegisterRequest(CamelModel):
    """Request body for POST /api/auth/register."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024)
    name: str = Field(min_length=1, max_length=255)
    role: Literal["worker", "doctor", "admin"]
    profile_data: dict[str, Any] = Field(default_factory=dict)

    check_email = field_validator("email")(check_email_format)
    check_password = field_validator("password")(check_password_strength)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Portal registration -- requests
# ---------------------------------------------------------------------------


class AdminRegisterRequest(CamelModel):
    """Request body for POST /api/admin/register.

    Only presence is checked here. The handler compares admin_code against
    ADMIN_REGISTRATION_CODES first, then checks email format and password
    strength, so a wrong code is always a 403.
    """

    full_name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024)
    admin_code: str = Field(min_length=1)
    department: str = Field(min_length=1, max_length=255)
    employee_id: str = ""
    phone_number: str = ""


class DoctorRegisterRequest(CamelModel):
    """Request body for POST /api/doctors/register."""

    full_name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024)
    phone_number: str = Field(min_length=1, max_length=32)
    medical_license: str = Field(min_length=1, max_length=100)
    specialization: str = Field(min_length=1, max_length=255)
    hospital_affiliation: str = ""
    department: str = ""
    experience: str = ""
    qualifications: list[str] = Field(default_factory=list)
    consultation_hours: dict[str, Any] = Field(default_factory=dict)

    check_email = field_validator("email")(check_email_format)
    check_password = field_validator("password")(check_password_strength)


class WorkerRegisterRequest(CamelModel):
    """Request body for POST /api/workers/register.

    Flat form fields, as the registration page submits them. Email is not
    collected: workers get a generated placeholder address. allergies is a
    comma-separated string and is split by the handler.
    """

    full_name: str = Field(min_length=1, max_length=255)
    date_of_birth: str = Field(min_length=1, max_length=32)
    gender: str = Field(min_length=1, max_length=20)
    phone_number: str = Field(min_length=1, max_length=32)
    password: str = Field(min_length=1, max_length=1024)
    emergency_contact_name: str = Field(min_length=1, max_length=255)
    emergency_contact_relationship: str = Field(min_length=1, max_length=100)
    emergency_contact_phone: str = Field(min_length=1, max_length=32)
    current_address: str = ""
    current_city: str = ""
    native_state: str = ""
    pincode: str = ""
    permanent_address: str = ""
    permanent_city: str = ""
    permanent_pincode: str = ""
    blood_group: str = ""
    allergies: str = ""
    current_medication: str = ""
    employer: str = ""
    job_title: str = ""
    work_location: str = ""
    contract_start_date: str = ""
    contract_end_date: str = ""

    check_password = field_validator("password")(check_password_strength)


# ---------------------------------------------------------------------------
# Worker profiles -- requests
# ---------------------------------------------------------------------------


class WorkerCreateRequest(CamelModel):
    """Request body for POST /api/workers (profile for the calling user)."""

    full_name: str = Field(min_length=1, max_length=255)
    date_of_birth: str = Field(min_length=1, max_length=32)
    gender: str = Field(min_length=1, max_length=20)
    phone_number: str = Field(min_length=1, max_length=32)
    emergency_contact: dict[str, Any] = Field(default_factory=dict)
    current_address: Optional[dict[str, Any]] = None
    permanent_address: Optional[dict[str, Any]] = None
    blood_group: str = ""
    allergies: list[str] = Field(default_factory=list)
    medical_conditions: list[str] = Field(default_factory=list)
    employment_details: dict[str, Any] = Field(default_factory=dict)


class WorkerUpdateRequest(CamelModel):
    """Request body for PUT /api/workers/{workerId}.

    Every field is optional; handlers apply only the fields the client sent
    (model_dump(exclude_unset=True)). Identifiers are not updatable and are
    ignored if present.
    """

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    date_of_birth: Optional[str] = Field(default=None, min_length=1, max_length=32)
    gender: Optional[str] = Field(default=None, min_length=1, max_length=20)
    phone_number: Optional[str] = Field(default=None, min_length=1, max_length=32)
    emergency_contact: Optional[dict[str, Any]] = None
    current_address: Optional[dict[str, Any]] = None
    permanent_address: Optional[dict[str, Any]] = None
    blood_group: Optional[str] = None
    allergies: Optional[list[str]] = None
    medical_conditions: Optional[list[str]] = None
    employment_details: Optional[dict[str, Any]] = None
    documents: Optional[dict[str, Any]] = None


class VerifyDocumentRequest(CamelModel):
    verified: bool
    notes: str = ""

    @field_validator("verified", mode="before")
    @classmethod
    def require_bool(cls, value: Any) -> bool:
        """Reject "true", 1, and friends. Only JSON booleans are accepted."""
        if not isinstance(value, bool):
            raise ValueError("Verification status must be boolean")
        return value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(CamelModel):
    id: int
    email: str
    name: str
    role: str
    is_active: bool
    is_verified: bool
    created_at: Optional[str] = None
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            is_active=user.is_active,
            is_verified=user.is_verified,
            created_at=user.created_at,
            last_login=user.last_login,
        )


class TokensOut(CamelModel):
    access_token: str
    refresh_token: str
    expires_in: int

    @classmethod
    def from_tokens(cls, tokens: AuthTokens) -> "TokensOut":
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.expires_in,
        )


class AuthResponse(CamelModel):
    """Response for login, register, and the portal registration endpoints.

    message and the role-specific block (admin/doctor/worker) are only set by
    the portal registration endpoints.
    """

    success: bool = True
    message: Optional[str] = None
    user: UserOut
    admin: Optional[dict[str, Any]] = None
    doctor: Optional[dict[str, Any]] = None
    worker: Optional[dict[str, Any]] = None
    tokens: TokensOut


class RefreshResponse(CamelModel):
    success: bool = True
    tokens: TokensOut


class MeResponse(CamelModel):
    user_id: int
    email: str
    role: str
    permissions: list[str]


class WorkerOut(CamelModel):
    worker_id: str
    user_id: int
    full_name: str
    date_of_birth: str
    gender: str
    phone_number: str
    emergency_contact: dict[str, Any]
    current_address: dict[str, Any]
    permanent_address: dict[str, Any]
    blood_group: str
    allergies: list[str]
    medical_conditions: list[str]
    employment_details: dict[str, Any]
    documents: dict[str, Any]
    qr_code_data: str
    is_active: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_profile(cls, profile: WorkerProfile) -> "WorkerOut":
        return cls(**asdict(profile))


class WorkerResponse(CamelModel):
    success: bool = True
    worker: WorkerOut
    qr_code_data: Optional[str] = None


class DocumentOut(CamelModel):
    """A medical document as returned to clients.

    media_public_id is never exposed; clients get delivery URLs instead.
    """

    document_id: str
    worker_id: str
    uploaded_by: int
    file_name: str
    file_type: str
    document_type: str
    description: str
    file_size: int
    checksum: str
    is_verified: bool
    verified_by: Optional[int] = None
    verified_at: Optional[str] = None
    tags: list[str]
    access_log: list[dict[str, Any]]
    media_secure_url: str
    media_url: str
    media_folder: str
    is_active: bool
    created_at: str
    updated_at: str
    thumbnail_url: Optional[str] = None
    optimized_url: Optional[str] = None

    @classmethod
    def from_document(
        cls,
        document: MedicalDocument,
        thumbnail_url: Optional[str] = None,
        optimized_url: Optional[str] = None,
    ) -> "DocumentOut":
        data = asdict(document)
        data.pop("media_public_id")
        return cls(**data, thumbnail_url=thumbnail_url, optimized_url=optimized_url)


class DocumentResponse(CamelModel):
    success: bool = True
    document: DocumentOut


class DocumentListResponse(CamelModel):
    success: bool = True
    documents: list[DocumentOut]


class AuditLogOut(CamelModel):
    log_id: str
    user_id: int
    action: str
    resource: str
    resource_id: str
    metadata: dict[str, Any]
    ip_address: str
    user_agent: str
    session_id: str
    severity: str
    category: str
    timestamp: str

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLogOut":
        return cls(**asdict(entry))


class AuditLogListResponse(CamelModel):
    success: bool = True
    logs: list[AuditLogOut]


class StatusResponse(CamelModel):
    """Response for GET /api/status."""

    name: str
    version: str
    uptime_ms: int
    status: str
    now: str
    components: dict[str, str] = Field(default_factory=dict)


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail
