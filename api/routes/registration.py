"""
api/routes/registration.py -- Portal registration for admins, doctors, and workers.

Routes:
  POST /api/admin/register    -- requires a valid admin registration code
  POST /api/doctors/register  -- email and medical licence must be unique
  POST /api/workers/register  -- phone number must be unique; creates the
                                 user account and the worker profile together

Each endpoint writes the portal's custom permission list onto the new user
and returns a token pair, so the client is logged in straight away.

Uniqueness is checked with a lookup first for a specific 409 message. The
UNIQUE constraints still decide races; api/main.py turns the resulting
IntegrityError into a generic 409.
"""

from __future__ import annotations

import hmac
import json
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AdminRegisterRequest,
    AuthResponse,
    DoctorRegisterRequest,
    TokensOut,
    UserOut,
    WorkerRegisterRequest,
    check_email_format,
    check_password_strength,
)
from api.routes.auth import token_response
from auth.models import User
from auth.permissions import (
    ADMIN_REGISTRATION_PERMISSIONS,
    DOCTOR_REGISTRATION_PERMISSIONS,
    WORKER_REGISTRATION_PERMISSIONS,
)
from auth.store import UserStore
from auth.tokens import generate_secure_id, generate_tokens, hash_password
from core.config import get_settings, now_iso
from records.models import WorkerProfile
from records.store import RecordStore

logger = logging.getLogger("migranthealth.registration")

_settings = get_settings()

router = APIRouter()


def _conflict(message: str) -> HTTPException:
    return HTTPException(status_code=409, detail={"code": "conflict", "message": message})


def _ensure_email_free(user_store: UserStore, email: str) -> None:
    if user_store.get_by_email(email) is not None:
        raise _conflict("User with this email already exists")


def _valid_admin_code(code: str) -> bool:
    # Compare against every configured code so timing does not reveal a prefix match.
    matches = [hmac.compare_digest(code.encode(), valid.encode()) for valid in _settings.admin_registration_codes]
    return any(matches)


def _registered(user: User, message: str, status_code: int = 201, **extra) -> JSONResponse:
    tokens = generate_tokens(user)
    return token_response(
        AuthResponse(
            message=message,
            user=UserOut.from_user(user),
            tokens=TokensOut.from_tokens(tokens),
            **extra,
        ),
        status_code=status_code,
    )


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.post("/admin/register", response_model=AuthResponse, status_code=201)
@limiter.limit(_settings.register_rate_limit)
def register_admin(request: Request, body: AdminRegisterRequest) -> JSONResponse:
    """Create a pre-verified admin account.

    The admin code is checked before email format and password strength, so
    a caller without a valid code learns nothing else about the request.
    """
    if not _valid_admin_code(body.admin_code):
        logger.warning(
            "Rejected admin registration with invalid code from %s",
            request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Invalid admin registration code"},
        )

    for check, value in ((check_email_format, body.email), (check_password_strength, body.password)):
        try:
            check(value)
        except ValueError as e:
            raise HTTPException(status_code=400, detail={"code": "validation_error", "message": str(e)}) from e

    user_store: UserStore = request.app.state.user_store
    _ensure_email_free(user_store, body.email)

    pw_hash, salt = hash_password(body.password)
    user_id = user_store.create_user(
        User(
            email=body.email,
            name=body.full_name,
            role="admin",
            password_hash=pw_hash,
            password_salt=salt,
            permissions=list(ADMIN_REGISTRATION_PERMISSIONS),
            profile_data={
                "department": body.department,
                "employeeId": body.employee_id,
                "phoneNumber": body.phone_number,
                "accessLevel": "system_admin",
            },
            is_verified=True,
        )
    )
    user = user_store.get_by_id(user_id)
    logger.info("Registered admin account %d (%s)", user.id, body.department)
    return _registered(
        user,
        "Admin registered successfully",
        admin={"department": body.department, "accessLevel": "system_admin"},
    )


# ---------------------------------------------------------------------------
# Doctor
# ---------------------------------------------------------------------------


@router.post("/doctors/register", response_model=AuthResponse, status_code=201)
@limiter.limit(_settings.register_rate_limit)
def register_doctor(request: Request, body: DoctorRegisterRequest) -> JSONResponse:
    """Create a doctor account. It starts unverified, pending admin review."""
    user_store: UserStore = request.app.state.user_store
    _ensure_email_free(user_store, body.email)
    if user_store.get_by_license(body.medical_license) is not None:
        raise _conflict("Doctor with this medical license already exists")

    pw_hash, salt = hash_password(body.password)
    user_id = user_store.create_user(
        User(
            email=body.email,
            name=body.full_name,
            role="doctor",
            password_hash=pw_hash,
            password_salt=salt,
            permissions=list(DOCTOR_REGISTRATION_PERMISSIONS),
            license_number=body.medical_license,
            profile_data={
                "phoneNumber": body.phone_number,
                "medicalLicense": body.medical_license,
                "specialization": body.specialization,
                "hospitalAffiliation": body.hospital_affiliation,
                "department": body.department,
                "experience": body.experience,
                "qualifications": body.qualifications,
                "consultationHours": body.consultation_hours,
                "isAvailable": True,
                "verificationStatus": "pending",
            },
        )
    )
    user = user_store.get_by_id(user_id)
    logger.info("Registered doctor account %d (verification pending)", user.id)
    return _registered(
        user,
        "Doctor registered successfully. Account pending verification.",
        doctor={
            "medicalLicense": body.medical_license,
            "specialization": body.specialization,
            "verificationStatus": "pending",
        },
    )


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


def profile_from_registration(body: WorkerRegisterRequest, worker_id: str, user_id: int) -> WorkerProfile:
    """Build a WorkerProfile from the flat registration form.

    Permanent address fields fall back to the current address ones. Both
    addresses take their state from nativeState.
    """
    now = now_iso()
    return WorkerProfile(
        worker_id=worker_id,
        user_id=user_id,
        full_name=body.full_name,
        date_of_birth=body.date_of_birth,
        gender=body.gender,
        phone_number=body.phone_number,
        emergency_contact={
            "name": body.emergency_contact_name,
            "relationship": body.emergency_contact_relationship,
            "phoneNumber": body.emergency_contact_phone,
        },
        current_address={
            "street": body.current_address,
            "city": body.current_city,
            "state": body.native_state,
            "pincode": body.pincode,
            "country": "India",
        },
        permanent_address={
            "street": body.permanent_address or body.current_address,
            "city": body.permanent_city or body.current_city,
            "state": body.native_state,
            "pincode": body.permanent_pincode or body.pincode,
            "country": "India",
        },
        blood_group=body.blood_group,
        allergies=[a.strip() for a in body.allergies.split(",") if a.strip()],
        medical_conditions=[body.current_medication] if body.current_medication else [],
        employment_details={
            "employer": body.employer,
            "jobTitle": body.job_title,
            "workLocation": body.work_location,
            "contractStartDate": body.contract_start_date or now,
            "contractEndDate": body.contract_end_date or None,
        },
        documents={
            "idProof": {"type": "", "number": "", "verified": False, "uploadedAt": now},
            "medicalClearance": {"verified": False, "issuedBy": "", "validUntil": now, "uploadedAt": now},
        },
        qr_code_data=json.dumps(
            {
                "id": worker_id,
                "name": body.full_name,
                "phoneNumber": body.phone_number,
                "bloodGroup": body.blood_group or "Unknown",
            }
        ),
    )


@router.post("/workers/register", response_model=AuthResponse, status_code=201)
@limiter.limit(_settings.register_rate_limit)
def register_worker(request: Request, body: WorkerRegisterRequest) -> JSONResponse:
    """Create a worker's user account and health profile in one step.

    Workers often have no email address, so the account gets a generated
    placeholder one. The phone number is the worker's unique key.

    The two inserts go to different stores. If the profile insert fails, the
    user row is deleted again before the error propagates.
    """
    user_store: UserStore = request.app.state.user_store
    record_store: RecordStore = request.app.state.record_store

    if record_store.get_profile_by_phone(body.phone_number) is not None:
        raise _conflict("Worker with this phone number already exists")

    pw_hash, salt = hash_password(body.password)
    placeholder_email = f"{generate_secure_id('USER').lower()}+worker@no-reply.local"
    user_id = user_store.create_user(
        User(
            email=placeholder_email,
            name=body.full_name,
            role="worker",
            password_hash=pw_hash,
            password_salt=salt,
            permissions=list(WORKER_REGISTRATION_PERMISSIONS),
        )
    )

    worker_id = generate_secure_id("MW")
    try:
        profile = record_store.create_profile(profile_from_registration(body, worker_id, user_id))
    except Exception:
        user_store.delete_user(user_id)
        logger.warning("Rolled back user %d after worker profile insert failed", user_id)
        raise

    user = user_store.get_by_id(user_id)
    logger.info("Registered worker %s for user %d", profile.worker_id, user.id)
    return _registered(
        user,
        "Worker registered successfully",
        worker={
            "workerId": profile.worker_id,
            "fullName": profile.full_name,
            "phoneNumber": profile.phone_number,
            "bloodGroup": profile.blood_group,
        },
    )
