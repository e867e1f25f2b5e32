"""
api/routes/workers.py -- Worker health profile endpoints.

Routes:
  POST /api/workers               -- create a profile for the calling user
  GET  /api/workers/{worker_id}   -- profile plus QR payload
  PUT  /api/workers/{worker_id}   -- partial update

Access rules (checked against the token's permission claim):
  read:    own profile, or read:patient_profiles, or read:all_users
  update:  own profile, or update:patient_health_records

Lookups happen before permission checks, so an unknown worker is a 404 for
everyone with a valid token.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import WorkerCreateRequest, WorkerOut, WorkerResponse, WorkerUpdateRequest
from auth.dependencies import get_token_payload
from auth.models import TokenPayload
from auth.permissions import payload_has_any
from auth.tokens import generate_secure_id
from records.models import WorkerProfile, empty_address
from records.store import RecordStore

logger = logging.getLogger("migranthealth.workers")

router = APIRouter()


def _forbidden() -> HTTPException:
    return HTTPException(status_code=403, detail={"code": "forbidden", "message": "Insufficient permissions"})


def load_worker(record_store: RecordStore, worker_id: str) -> WorkerProfile:
    """Return the active profile or raise 404."""
    profile = record_store.get_profile(worker_id)
    if profile is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Worker not found"})
    return profile


def qr_payload(profile: WorkerProfile) -> str:
    """Emergency data encoded on the health card: identity, blood group, allergies, contact."""
    return json.dumps(
        {
            "id": profile.worker_id,
            "name": profile.full_name,
            "bloodGroup": profile.blood_group,
            "allergies": profile.allergies,
            "emergencyContact": profile.emergency_contact,
        }
    )


@router.post("/workers", response_model=WorkerResponse, status_code=201)
def create_worker(
    request: Request,
    body: WorkerCreateRequest,
    payload: TokenPayload = Depends(get_token_payload),
) -> JSONResponse:
    record_store: RecordStore = request.app.state.record_store
    if record_store.get_profile_by_user(payload.user_id) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "Worker profile already exists for this user"},
        )
    if record_store.get_profile_by_phone(body.phone_number) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "Worker with this phone number already exists"},
        )

    worker_id = generate_secure_id("MW")
    profile = record_store.create_profile(
        WorkerProfile(
            worker_id=worker_id,
            user_id=payload.user_id,
            full_name=body.full_name,
            date_of_birth=body.date_of_birth,
            gender=body.gender,
            phone_number=body.phone_number,
            emergency_contact=body.emergency_contact,
            current_address=body.current_address or empty_address(),
            permanent_address=body.permanent_address or empty_address(),
            blood_group=body.blood_group,
            allergies=body.allergies,
            medical_conditions=body.medical_conditions,
            employment_details=body.employment_details,
            qr_code_data=json.dumps({"id": worker_id, "name": body.full_name}),
        )
    )
    logger.info("User %d created worker profile %s", payload.user_id, worker_id)
    return JSONResponse(
        status_code=201,
        content=WorkerResponse(worker=WorkerOut.from_profile(profile)).model_dump(by_alias=True, exclude_none=True),
    )


@router.get("/workers/{worker_id}", response_model=WorkerResponse)
def get_worker(
    request: Request,
    worker_id: str,
    payload: TokenPayload = Depends(get_token_payload),
) -> JSONResponse:
    profile = load_worker(request.app.state.record_store, worker_id)
    is_own = profile.user_id == payload.user_id
    if not is_own and not payload_has_any(payload, "read:patient_profiles", "read:all_users"):
        logger.warning("User %d denied read of worker %s", payload.user_id, worker_id)
        raise _forbidden()
    body = WorkerResponse(worker=WorkerOut.from_profile(profile), qr_code_data=qr_payload(profile))
    return JSONResponse(content=body.model_dump(by_alias=True, exclude_none=True))


@router.put("/workers/{worker_id}", response_model=WorkerResponse)
def update_worker(
    request: Request,
    worker_id: str,
    body: WorkerUpdateRequest,
    payload: TokenPayload = Depends(get_token_payload),
) -> JSONResponse:
    """Apply the fields the client sent. Explicit nulls are ignored."""
    record_store: RecordStore = request.app.state.record_store
    profile = load_worker(record_store, worker_id)
    is_own = profile.user_id == payload.user_id
    if not is_own and not payload_has_any(payload, "update:patient_health_records"):
        logger.warning("User %d denied update of worker %s", payload.user_id, worker_id)
        raise _forbidden()

    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if changes.get("phone_number") not in (None, profile.phone_number):
        other = record_store.get_profile_by_phone(changes["phone_number"])
        if other is not None:
            raise HTTPException(
                status_code=409,
                detail={"code": "conflict", "message": "Worker with this phone number already exists"},
            )
    updated = record_store.update_profile(worker_id, **changes) if changes else profile
    logger.info("User %d updated worker %s (%s)", payload.user_id, worker_id, ", ".join(sorted(changes)) or "no changes")
    return JSONResponse(
        content=WorkerResponse(worker=WorkerOut.from_profile(updated)).model_dump(by_alias=True, exclude_none=True)
    )
