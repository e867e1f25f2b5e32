"""
records/models.py -- Domain dataclasses for health records.

These are pure data containers with zero logic. Persistence lives in
records/store.py; request validation and response shaping live in api/.

Nested structures (addresses, emergency contact, employment, document
metadata) stay as plain dicts with camelCase keys. They are stored as JSON
text and returned to clients unchanged, so there is nothing to gain from
giving each one its own class.
"""

from dataclasses import dataclass, field
from typing import Optional

SEVERITIES = ("low", "medium", "high", "critical")


def empty_address() -> dict:
    return {"street": "", "city": "", "state": "", "pincode": "", "country": "India"}


@dataclass
class WorkerProfile:
    """Demographic and medical profile of a registered migrant worker.

    worker_id is the public identifier (MW_<ms>_<hex>) printed on the health
    card. user_id links to the auth account; each user owns at most one
    profile.

    qr_code_data is the JSON string encoded into the health card QR code.
    It is written at creation time and not regenerated on update.
    """

    worker_id: str
    user_id: int
    full_name: str
    date_of_birth: str  # ISO 8601 date
    gender: str  # "male" | "female" | "other"
    phone_number: str
    emergency_contact: dict = field(default_factory=dict)  # {name, relationship, phoneNumber}
    current_address: dict = field(default_factory=empty_address)
    permanent_address: dict = field(default_factory=empty_address)
    blood_group: str = ""
    allergies: list[str] = field(default_factory=list)
    medical_conditions: list[str] = field(default_factory=list)
    employment_details: dict = field(default_factory=dict)
    documents: dict = field(default_factory=dict)  # idProof / medicalClearance metadata
    qr_code_data: str = ""
    is_active: bool = True
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class MedicalDocument:
    """An uploaded medical document.

    The file itself lives on the media host; media_* fields record where.
    access_log is an append-only list of {accessedBy, accessedAt, action}.
    """

    document_id: str
    worker_id: str
    uploaded_by: int
    file_name: str
    file_type: str  # MIME type
    document_type: str
    description: str = ""
    file_size: int = 0
    checksum: str = ""  # base64 SHA-256 of the file bytes
    is_verified: bool = False
    verified_by: Optional[int] = None
    verified_at: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    access_log: list[dict] = field(default_factory=list)
    media_public_id: str = ""
    media_secure_url: str = ""
    media_url: str = ""
    media_folder: str = ""
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""


@dataclass
class AuditLogEntry:
    """One security-relevant event, written by upload and verification routes."""

    log_id: str
    user_id: int
    action: str
    resource: str
    resource_id: str = ""
    metadata: dict = field(default_factory=dict)
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    session_id: str = "unknown"
    severity: str = "low"  # one of SEVERITIES
    category: str = ""
    timestamp: str = ""
