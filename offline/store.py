"""
offline/store.py -- Encrypted SQLite store used when the API is unreachable.

Records are JSON dicts (camelCase keys, same shape the API returns) kept in a
key/value table:

    healthrecord_worker_{workerId}     worker profile, sensitive fields encrypted
    healthrecord_document_{id}         document metadata
    healthrecord_pending_{id}          registration queued while offline

Sensitive worker fields (healthHistory, allergies, currentMedication) are
never written in clear text. save_worker() replaces each with a
"<field>_encrypted" AES-GCM ciphertext, stamps lastModified, and appends a
dataIntegrityHash. get_worker() checks the hash before decrypting.

The audit trail lives in its own table, capped at the most recent 2000
entries. Entries classified as critical are also copied to a 100-entry
critical log.

Usage:
    store = OfflineStore()
    store.save_worker({"workerId": "MW_1", "fullName": "A", "allergies": "dust"})
    worker = store.get_worker("MW_1")   # allergies decrypted again
    store.log_access("view_worker", "MW_1")
    store.close()
"""

import json
import logging
import secrets
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from core.config import get_settings
from offline import crypto

logger = logging.getLogger("migranthealth.offline")

PREFIX = "healthrecord_"
WORKER_PREFIX = f"{PREFIX}worker_"
DOCUMENT_PREFIX = f"{PREFIX}document_"
PENDING_PREFIX = f"{PREFIX}pending_"

SENSITIVE_FIELDS = ("healthHistory", "allergies", "currentMedication")
INTEGRITY_FIELD = "dataIntegrityHash"

MAX_STORAGE_BYTES = 50 * 1024 * 1024
CLEANUP_THRESHOLD = 0.8
AUDIT_LOG_LIMIT = 2000
AUDIT_LOG_TRIM_TO = 500
CRITICAL_LOG_LIMIT = 100

_MASTER_KEY_SETTING = "healthsystem_master_key"

_DDL = """
CREATE TABLE IF NOT EXISTS records (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS audit_log (
    id      INTEGER PRIMARY KEY AUTOINCREMENT,
    entry   TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS critical_log (
    id      INTEGER PRIMARY KEY AUTOINCREMENT,
    entry   TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS settings (
    name    TEXT PRIMARY KEY,
    value   TEXT NOT NULL
);
"""


class IntegrityCheckError(Exception):
    """A stored worker record no longer matches its dataIntegrityHash."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Audit classification
# ---------------------------------------------------------------------------


def action_severity(action: str) -> str:
    if any(word in action for word in ("failed", "unauthorized", "breach")):
        return "critical"
    if "prescription" in action or "medication" in action:
        return "high"
    if any(word in action for word in ("view", "access", "update")):
        return "medium"
    return "low"


def action_category(action: str) -> str:
    """Map an action name to an audit category. First matching rule wins."""
    rules = (
        (("prescription", "medication"), "medication"),
        (("diagnosis", "visit"), "clinical"),
        (("view", "access"), "access"),
        (("registration", "create"), "registration"),
        (("update", "modify"), "modification"),
        (("delete", "remove"), "deletion"),
        (("export", "download"), "data_export"),
        (("failed", "error"), "security"),
    )
    for words, category in rules:
        if any(word in action for word in words):
            return category
    return "general"


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class OfflineStore:
    def __init__(
        self,
        db_path: Union[str, Path, None] = None,
        master_key: Optional[str] = None,
        max_bytes: int = MAX_STORAGE_BYTES,
    ) -> None:
        settings = get_settings()
        path = db_path if db_path is not None else settings.offline_db_path
        self.max_bytes = max_bytes
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_DDL)
        self._conn.commit()
        self._key = master_key or settings.offline_master_key or self._load_or_create_key()
        self.session_id = f"session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"

    def _load_or_create_key(self) -> str:
        row = self._conn.execute("SELECT value FROM settings WHERE name = ?", (_MASTER_KEY_SETTING,)).fetchone()
        if row is not None:
            return row[0]
        key = crypto.generate_key()
        self._conn.execute("INSERT INTO settings (name, value) VALUES (?, ?)", (_MASTER_KEY_SETTING, key))
        self._conn.commit()
        logger.info("Generated new offline master key")
        return key

    # ------------------------------------------------------------------
    # Raw key/value access
    # ------------------------------------------------------------------

    def put(self, key: str, value: dict) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO records (key, value, updated_at) VALUES (?, ?, ?)",
            (key, json.dumps(value), time.time()),
        )
        self._conn.commit()

    def get(self, key: str) -> Optional[dict]:
        row = self._conn.execute("SELECT value FROM records WHERE key = ?", (key,)).fetchone()
        return json.loads(row[0]) if row is not None else None

    def delete(self, key: str) -> bool:
        cursor = self._conn.execute("DELETE FROM records WHERE key = ?", (key,))
        self._conn.commit()
        return cursor.rowcount > 0

    def _values_with_prefix(self, prefix: str) -> list[dict]:
        rows = self._conn.execute(
            "SELECT value FROM records WHERE key GLOB ? ORDER BY key",
            (prefix + "*",),
        ).fetchall()
        return [json.loads(r[0]) for r in rows]

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def encrypt_record(self, data: dict) -> dict:
        """Return a copy of data with sensitive fields encrypted and hashed."""
        record = {k: v for k, v in data.items() if k != INTEGRITY_FIELD}
        for name in SENSITIVE_FIELDS:
            value = record.pop(name, None)
            record[f"{name}_encrypted"] = crypto.encrypt(json.dumps(value), self._key) if value else ""
        record["lastModified"] = _now_iso()
        record[INTEGRITY_FIELD] = crypto.integrity_hash(record, self._key)
        return record

    def decrypt_record(self, record: dict) -> dict:
        """Reverse encrypt_record(). Raises crypto.DecryptionError on bad ciphertext."""
        data = {k: v for k, v in record.items() if k != INTEGRITY_FIELD}
        for name in SENSITIVE_FIELDS:
            token = data.pop(f"{name}_encrypted", "")
            data[name] = json.loads(crypto.decrypt(token, self._key)) if token else ""
        return data

    def verify_integrity(self, record: dict) -> bool:
        expected = record.get(INTEGRITY_FIELD)
        if not expected:
            return False
        body = {k: v for k, v in record.items() if k != INTEGRITY_FIELD}
        return crypto.integrity_hash(body, self._key) == expected

    def save_worker(self, data: dict) -> dict:
        """Encrypt and store a worker record. Returns the stored (encrypted) form."""
        worker_id = data.get("workerId")
        if not worker_id:
            raise ValueError("workerId is required")
        record = self.encrypt_record(data)
        self.put(f"{WORKER_PREFIX}{worker_id}", record)
        return record

    def get_worker(self, worker_id: str) -> Optional[dict]:
        """Return the decrypted worker record, or None if it is not stored.

        Raises IntegrityCheckError if the stored record was altered.
        """
        record = self.get(f"{WORKER_PREFIX}{worker_id}")
        if record is None:
            return None
        if not self.verify_integrity(record):
            self.log_access("integrity_check_failed", worker_id)
            raise IntegrityCheckError(f"Stored record for {worker_id} failed its integrity check")
        return self.decrypt_record(record)

    def list_workers(self) -> list[dict]:
        """Decrypted copies of every stored worker that passes its integrity check."""
        workers = []
        for record in self._values_with_prefix(WORKER_PREFIX):
            if not self.verify_integrity(record):
                logger.warning("Skipping tampered offline record %s", record.get("workerId"))
                continue
            workers.append(self.decrypt_record(record))
        return workers

    def delete_worker(self, worker_id: str) -> bool:
        """Remove a worker and every document stored for them."""
        removed = self.delete(f"{WORKER_PREFIX}{worker_id}")
        for doc in self.list_documents(worker_id):
            self.delete(f"{DOCUMENT_PREFIX}{doc['id']}")
        self.log_access("delete_worker", worker_id)
        return removed

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def save_document(self, document: dict) -> dict:
        doc_id = document.get("id")
        if not doc_id:
            raise ValueError("id is required")
        stored = dict(document)
        stored.setdefault("uploadDate", _now_iso())
        stored["lastAccessed"] = _now_iso()
        self.put(f"{DOCUMENT_PREFIX}{doc_id}", stored)
        return stored

    def list_documents(self, worker_id: Optional[str] = None) -> list[dict]:
        docs = self._values_with_prefix(DOCUMENT_PREFIX)
        if worker_id is not None:
            docs = [d for d in docs if d.get("workerId") == worker_id]
        return docs

    # ------------------------------------------------------------------
    # Pending registrations
    # ------------------------------------------------------------------

    def queue_pending(self, kind: str, payload: dict) -> str:
        pending_id = f"PENDING_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
        self.put(
            f"{PENDING_PREFIX}{pending_id}",
            {"id": pending_id, "kind": kind, "payload": payload, "queuedAt": _now_iso()},
        )
        return pending_id

    def list_pending(self) -> list[dict]:
        return self._values_with_prefix(PENDING_PREFIX)

    def remove_pending(self, pending_id: str) -> bool:
        return self.delete(f"{PENDING_PREFIX}{pending_id}")

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def log_access(
        self,
        action: str,
        worker_id: Optional[str] = None,
        user_type: str = "health_worker",
        metadata: Optional[dict] = None,
    ) -> dict:
        entry = {
            "timestamp": _now_iso(),
            "action": action,
            "workerId": worker_id or "unknown",
            "userType": user_type,
            "sessionId": self.session_id,
            "ipAddress": "local",
            "metadata": metadata or {},
            "severity": action_severity(action),
            "category": action_category(action),
        }
        self._conn.execute("INSERT INTO audit_log (entry) VALUES (?)", (json.dumps(entry),))
        self._trim("audit_log", AUDIT_LOG_LIMIT)
        if entry["severity"] == "critical":
            critical = {**entry, "alertLevel": "IMMEDIATE_ATTENTION_REQUIRED", "notificationSent": False}
            self._conn.execute("INSERT INTO critical_log (entry) VALUES (?)", (json.dumps(critical),))
            self._trim("critical_log", CRITICAL_LOG_LIMIT)
            logger.warning("Critical offline audit event: %s (worker %s)", action, entry["workerId"])
        self._conn.commit()
        return entry

    def _trim(self, table: str, keep: int) -> None:
        # table is one of two module constants, never user input.
        self._conn.execute(
            f"DELETE FROM {table} WHERE id NOT IN (SELECT id FROM {table} ORDER BY id DESC LIMIT ?)",
            (keep,),
        )

    def audit_logs(self) -> list[dict]:
        """Audit entries, oldest first."""
        rows = self._conn.execute("SELECT entry FROM audit_log ORDER BY id").fetchall()
        return [json.loads(r[0]) for r in rows]

    def critical_logs(self) -> list[dict]:
        rows = self._conn.execute("SELECT entry FROM critical_log ORDER BY id").fetchall()
        return [json.loads(r[0]) for r in rows]

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def storage_stats(self) -> dict:
        rows = self._conn.execute(
            "SELECT key, LENGTH(CAST(value AS BLOB)) FROM records WHERE key GLOB ?",
            (PREFIX + "*",),
        ).fetchall()
        used = sum(size for _, size in rows)
        return {
            "used": used,
            "available": self.max_bytes - used,
            "percentage": used / self.max_bytes * 100,
            "itemCount": len(rows),
            "workerCount": sum(1 for key, _ in rows if key.startswith(WORKER_PREFIX)),
            "documentCount": sum(1 for key, _ in rows if key.startswith(DOCUMENT_PREFIX)),
        }

    def cleanup(self) -> bool:
        """Free space once usage reaches the cleanup threshold.

        Trims the audit log to its most recent 500 entries and drops every
        temp_/cache_ key. Returns False without touching anything below the
        threshold.
        """
        if self.storage_stats()["percentage"] < CLEANUP_THRESHOLD * 100:
            return False
        self._trim("audit_log", AUDIT_LOG_TRIM_TO)
        cursor = self._conn.execute(
            "DELETE FROM records WHERE instr(key, 'temp_') > 0 OR instr(key, 'cache_') > 0"
        )
        self._conn.commit()
        logger.info("Offline storage cleanup removed %d temporary records", cursor.rowcount)
        self.log_access("storage_cleanup_performed")
        return True

    def export_data(self) -> dict:
        """Snapshot of all workers (encrypted form), documents, and audit logs."""
        payload = {
            "workers": self._values_with_prefix(WORKER_PREFIX),
            "documents": self._values_with_prefix(DOCUMENT_PREFIX),
            "auditLogs": self.audit_logs(),
            "exportedAt": _now_iso(),
        }
        self.log_access("export_system_data", metadata={"size": len(payload["workers"])})
        return payload

    def import_data(self, payload: dict) -> int:
        """Load an export_data() snapshot. Returns the number of records stored.

        Workers whose integrity hash does not verify under this store's key
        are skipped, so an export only imports into a store sharing its key.
        """
        if not isinstance(payload, dict):
            raise ValueError("Import payload must be a JSON object")
        imported = 0
        for record in payload.get("workers") or []:
            worker_id = record.get("workerId")
            if not worker_id:
                continue
            if not self.verify_integrity(record):
                logger.warning("Import skipped worker %s: integrity check failed", worker_id)
                continue
            self.put(f"{WORKER_PREFIX}{worker_id}", record)
            imported += 1
        for document in payload.get("documents") or []:
            if document.get("id"):
                self.put(f"{DOCUMENT_PREFIX}{document['id']}", document)
                imported += 1
        for entry in payload.get("auditLogs") or []:
            self._conn.execute("INSERT INTO audit_log (entry) VALUES (?)", (json.dumps(entry),))
        self._trim("audit_log", AUDIT_LOG_LIMIT)
        self._conn.commit()
        self.log_access("import_system_data", metadata={"imported": imported})
        return imported

    def close(self) -> None:
        self._conn.close()
