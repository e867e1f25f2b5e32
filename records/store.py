"""
records/store.py -- SQLAlchemy Core persistence layer for health records.

Uses SQLAlchemy Core (not ORM) so the dataclasses in records/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. RecordStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL.

Uniqueness of worker_id, user_id (one profile per user), and phone_number is
enforced by UNIQUE constraints. Inserts let IntegrityError propagate so the
API layer can answer 409.

Usage:
    store = RecordStore()
    store.create_profile(profile)
    store.create_document(document)
    docs = store.list_documents(profile.worker_id)
    store.close()
"""

import json
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, text
from sqlalchemy.engine import Engine

from core.config import get_settings, now_iso
from core.db import make_engine
from records.models import AuditLogEntry, MedicalDocument, WorkerProfile

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_profiles = Table(
    "worker_profiles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("worker_id", String(64), nullable=False, unique=True),
    Column("user_id", Integer, nullable=False, unique=True),
    Column("full_name", String(255), nullable=False),
    Column("date_of_birth", String(32), nullable=False),
    Column("gender", String(20), nullable=False),
    Column("phone_number", String(32), nullable=False, unique=True),
    Column("emergency_contact", Text),  # JSON object
    Column("current_address", Text),  # JSON object
    Column("permanent_address", Text),  # JSON object
    Column("blood_group", String(8)),
    Column("allergies", Text),  # JSON array
    Column("medical_conditions", Text),  # JSON array
    Column("employment_details", Text),  # JSON object
    Column("documents", Text),  # JSON object
    Column("qr_code_data", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_documents = Table(
    "medical_documents",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("document_id", String(64), nullable=False, unique=True),
    Column("worker_id", String(64), nullable=False, index=True),
    Column("uploaded_by", Integer, nullable=False),
    Column("file_name", String(255), nullable=False),
    Column("file_type", String(100), nullable=False),
    Column("document_type", String(100), nullable=False),
    Column("description", Text),
    Column("file_size", Integer, nullable=False, server_default="0"),
    Column("checksum", String(64)),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("verified_by", Integer),
    Column("verified_at", String(32)),
    Column("tags", Text),  # JSON array
    Column("access_log", Text),  # JSON array
    Column("media_public_id", String(255)),
    Column("media_secure_url", Text),
    Column("media_url", Text),
    Column("media_folder", String(255)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("log_id", String(64), nullable=False, unique=True),
    Column("user_id", Integer, nullable=False),
    Column("action", String(100), nullable=False),
    Column("resource", String(100), nullable=False),
    Column("resource_id", String(64)),
    Column("metadata", Text),  # JSON object
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("session_id", String(128)),
    Column("severity", String(10), nullable=False, server_default="low"),
    Column("category", String(64)),
    Column("timestamp", String(32), nullable=False),
)

# JSON-encoded columns per table. Used by both writers and mappers.
_PROFILE_JSON = (
    "emergency_contact",
    "current_address",
    "permanent_address",
    "allergies",
    "medical_conditions",
    "employment_details",
    "documents",
)
_DOCUMENT_JSON = ("tags", "access_log")


def _encode(fields: dict, json_columns: tuple) -> dict:
    """Serialize JSON columns and booleans for a write. Returns a new dict."""
    out = dict(fields)
    for key in json_columns:
        if key in out:
            out[key] = json.dumps(out[key])
    for key in ("is_active", "is_verified"):
        if key in out and isinstance(out[key], bool):
            out[key] = 1 if out[key] else 0
    return out


def _loads(raw: Optional[str], default):
    return json.loads(raw) if raw else default


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RecordStore:
    """Repository for worker profiles, medical documents, and audit log entries."""

    # Fields callers may change through update_profile(). worker_id, user_id
    # and qr_code_data are fixed at creation.
    PROFILE_MUTABLE_FIELDS = frozenset(
        {
            "full_name",
            "date_of_birth",
            "gender",
            "phone_number",
            "emergency_contact",
            "current_address",
            "permanent_address",
            "blood_group",
            "allergies",
            "medical_conditions",
            "employment_details",
            "documents",
            "is_active",
        }
    )

    DOCUMENT_MUTABLE_FIELDS = frozenset(
        {"description", "is_verified", "verified_by", "verified_at", "tags", "access_log", "is_active"}
    )

    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().records_db_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Worker profiles
    # ------------------------------------------------------------------

    def create_profile(self, profile: WorkerProfile) -> WorkerProfile:
        """Insert a profile, stamping created_at/updated_at. Returns the stored profile.

        Raises sqlalchemy.exc.IntegrityError on a duplicate worker_id,
        user_id, or phone_number.
        """
        now = now_iso()
        values = _encode(
            {
                "worker_id": profile.worker_id,
                "user_id": profile.user_id,
                "full_name": profile.full_name,
                "date_of_birth": profile.date_of_birth,
                "gender": profile.gender,
                "phone_number": profile.phone_number,
                "emergency_contact": profile.emergency_contact,
                "current_address": profile.current_address,
                "permanent_address": profile.permanent_address,
                "blood_group": profile.blood_group,
                "allergies": profile.allergies,
                "medical_conditions": profile.medical_conditions,
                "employment_details": profile.employment_details,
                "documents": profile.documents,
                "qr_code_data": profile.qr_code_data,
                "is_active": profile.is_active,
                "created_at": now,
                "updated_at": now,
            },
            _PROFILE_JSON,
        )
        with self.engine.connect() as conn:
            conn.execute(_profiles.insert().values(**values))
            conn.commit()
        profile.created_at = now
        profile.updated_at = now
        return profile

    def get_profile(self, worker_id: str, active_only: bool = True) -> Optional[WorkerProfile]:
        query = _profiles.select().where(_profiles.c.worker_id == worker_id)
        if active_only:
            query = query.where(_profiles.c.is_active == 1)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_profile(row) if row is not None else None

    def get_profile_by_user(self, user_id: int) -> Optional[WorkerProfile]:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.user_id == user_id)).fetchone()
        return _row_to_profile(row) if row is not None else None

    def get_profile_by_phone(self, phone_number: str) -> Optional[WorkerProfile]:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.phone_number == phone_number)).fetchone()
        return _row_to_profile(row) if row is not None else None

    def list_profiles(self, active_only: bool = True) -> list[WorkerProfile]:
        query = _profiles.select().order_by(_profiles.c.full_name)
        if active_only:
            query = query.where(_profiles.c.is_active == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_profile(r) for r in rows]

    def update_profile(self, worker_id: str, **fields) -> Optional[WorkerProfile]:
        """Apply a partial update and return the refreshed profile.

        Returns None if worker_id does not exist. Raises ValueError for
        fields outside PROFILE_MUTABLE_FIELDS, and IntegrityError if a new
        phone_number collides with another worker.
        """
        unknown = set(fields) - self.PROFILE_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        values = _encode(fields, _PROFILE_JSON)
        values["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_profiles.update().where(_profiles.c.worker_id == worker_id).values(**values))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_profile(worker_id, active_only=False)

    # ------------------------------------------------------------------
    # Medical documents
    # ------------------------------------------------------------------

    def create_document(self, document: MedicalDocument) -> MedicalDocument:
        now = now_iso()
        values = _encode(
            {
                "document_id": document.document_id,
                "worker_id": document.worker_id,
                "uploaded_by": document.uploaded_by,
                "file_name": document.file_name,
                "file_type": document.file_type,
                "document_type": document.document_type,
                "description": document.description,
                "file_size": document.file_size,
                "checksum": document.checksum,
                "is_verified": document.is_verified,
                "verified_by": document.verified_by,
                "verified_at": document.verified_at,
                "tags": document.tags,
                "access_log": document.access_log,
                "media_public_id": document.media_public_id,
                "media_secure_url": document.media_secure_url,
                "media_url": document.media_url,
                "media_folder": document.media_folder,
                "is_active": document.is_active,
                "created_at": now,
                "updated_at": now,
            },
            _DOCUMENT_JSON,
        )
        with self.engine.connect() as conn:
            conn.execute(_documents.insert().values(**values))
            conn.commit()
        document.created_at = now
        document.updated_at = now
        return document

    def get_document(self, document_id: str, active_only: bool = True) -> Optional[MedicalDocument]:
        query = _documents.select().where(_documents.c.document_id == document_id)
        if active_only:
            query = query.where(_documents.c.is_active == 1)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_document(row) if row is not None else None

    def list_documents(self, worker_id: str) -> list[MedicalDocument]:
        """Active documents for a worker, newest first."""
        query = (
            _documents.select()
            .where(_documents.c.worker_id == worker_id, _documents.c.is_active == 1)
            .order_by(_documents.c.created_at.desc(), _documents.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_document(r) for r in rows]

    def update_document(self, document_id: str, **fields) -> Optional[MedicalDocument]:
        unknown = set(fields) - self.DOCUMENT_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown document fields: {sorted(unknown)!r}")
        values = _encode(fields, _DOCUMENT_JSON)
        values["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _documents.update().where(_documents.c.document_id == document_id).values(**values)
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_document(document_id, active_only=False)

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def add_audit_log(self, entry: AuditLogEntry) -> AuditLogEntry:
        if not entry.timestamp:
            entry.timestamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _audit_logs.insert().values(
                    log_id=entry.log_id,
                    user_id=entry.user_id,
                    action=entry.action,
                    resource=entry.resource,
                    resource_id=entry.resource_id,
                    metadata=json.dumps(entry.metadata),
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    session_id=entry.session_id,
                    severity=entry.severity,
                    category=entry.category,
                    timestamp=entry.timestamp,
                )
            )
            conn.commit()
        return entry

    def list_audit_logs(self, limit: int = 100) -> list[AuditLogEntry]:
        """Most recent audit entries first."""
        query = _audit_logs.select().order_by(_audit_logs.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit(r) for r in rows]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_profile(row) -> WorkerProfile:
    return WorkerProfile(
        worker_id=row.worker_id,
        user_id=row.user_id,
        full_name=row.full_name,
        date_of_birth=row.date_of_birth,
        gender=row.gender,
        phone_number=row.phone_number,
        emergency_contact=_loads(row.emergency_contact, {}),
        current_address=_loads(row.current_address, {}),
        permanent_address=_loads(row.permanent_address, {}),
        blood_group=row.blood_group or "",
        allergies=_loads(row.allergies, []),
        medical_conditions=_loads(row.medical_conditions, []),
        employment_details=_loads(row.employment_details, {}),
        documents=_loads(row.documents, {}),
        qr_code_data=row.qr_code_data or "",
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_document(row) -> MedicalDocument:
    return MedicalDocument(
        document_id=row.document_id,
        worker_id=row.worker_id,
        uploaded_by=row.uploaded_by,
        file_name=row.file_name,
        file_type=row.file_type,
        document_type=row.document_type,
        description=row.description or "",
        file_size=row.file_size,
        checksum=row.checksum or "",
        is_verified=bool(row.is_verified),
        verified_by=row.verified_by,
        verified_at=row.verified_at,
        tags=_loads(row.tags, []),
        access_log=_loads(row.access_log, []),
        media_public_id=row.media_public_id or "",
        media_secure_url=row.media_secure_url or "",
        media_url=row.media_url or "",
        media_folder=row.media_folder or "",
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_audit(row) -> AuditLogEntry:
    return AuditLogEntry(
        log_id=row.log_id,
        user_id=row.user_id,
        action=row.action,
        resource=row.resource,
        resource_id=row.resource_id or "",
        metadata=_loads(row._mapping["metadata"], {}),
        ip_address=row.ip_address or "unknown",
        user_agent=row.user_agent or "unknown",
        session_id=row.session_id or "unknown",
        severity=row.severity,
        category=row.category or "",
        timestamp=row.timestamp,
    )
