"""
tests/test_audit_status.py -- Integration tests for GET /api/audit-logs and GET /api/status.

Covers:
  - audit log: admin reads newest first, limit honoured and bounded,
    request metadata (IP, user agent, session ID) captured, doctors 403
  - status: public, reports components and uptime, degrades when a
    database ping fails
"""

from __future__ import annotations

from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from auth.tokens import generate_secure_id
from records.models import AuditLogEntry


def _seed(record_store, action: str, user_id: int = 1) -> AuditLogEntry:
    return record_store.add_audit_log(
        AuditLogEntry(
            log_id=generate_secure_id("AUDIT"),
            user_id=user_id,
            action=action,
            resource="document",
            resource_id="DOC_1",
            severity="low",
            category="test",
        )
    )


class TestAuditLogs:
    def test_admin_reads_newest_first(self, api, make_user) -> None:
        _, headers = make_user(api.user_store, "admin", "auditor@example.com")
        _seed(api.record_store, "first_action")
        _seed(api.record_store, "second_action")
        resp = api.client.get("/api/audit-logs", headers=headers)
        assert resp.status_code == 200, resp.text
        actions = [log["action"] for log in resp.json()["logs"]]
        assert actions.index("second_action") < actions.index("first_action")

    def test_limit_is_applied(self, api, make_user) -> None:
        _, headers = make_user(api.user_store, "admin", "auditor.limit@example.com")
        for i in range(3):
            _seed(api.record_store, f"bulk_{i}")
        resp = api.client.get("/api/audit-logs?limit=2", headers=headers)
        assert resp.status_code == 200
        assert len(resp.json()["logs"]) == 2

    def test_limit_out_of_range_is_400(self, api, make_user) -> None:
        _, headers = make_user(api.user_store, "admin", "auditor.range@example.com")
        assert api.client.get("/api/audit-logs?limit=0", headers=headers).status_code == 400
        assert api.client.get("/api/audit-logs?limit=5000", headers=headers).status_code == 400

    def test_doctor_is_403(self, api, make_user) -> None:
        _, headers = make_user(api.user_store, "doctor", "not.an.auditor@example.com")
        resp = api.client.get("/api/audit-logs", headers=headers)
        assert resp.status_code == 403

    def test_unauthenticated_is_401(self, api) -> None:
        assert api.client.get("/api/audit-logs").status_code == 401

    def test_request_metadata_is_captured(self, api, make_user) -> None:
        _, worker_headers = make_user(api.user_store, "worker", "meta.worker@example.com")
        _, admin_headers = make_user(api.user_store, "admin", "meta.admin@example.com")
        worker_id = api.client.post(
            "/api/workers",
            json={"fullName": "Meta", "dateOfBirth": "1991-01-01", "gender": "female", "phoneNumber": "9500000001"},
            headers=worker_headers,
        ).json()["worker"]["workerId"]
        api.client.post(
            f"/api/workers/{worker_id}/documents",
            files={"file": ("id.jpg", b"\xff\xd8 fake", "image/jpeg")},
            data={"documentType": "id_proof"},
            headers={
                **worker_headers,
                "X-Forwarded-For": "203.0.113.9, 10.0.0.1",
                "User-Agent": "field-tablet/1.0",
                "X-Session-Id": "sess-42",
            },
        )
        logs = api.client.get("/api/audit-logs", headers=admin_headers).json()["logs"]
        entry = next(log for log in logs if log["action"] == "document_uploaded")
        assert entry["ipAddress"] == "203.0.113.9"
        assert entry["userAgent"] == "field-tablet/1.0"
        assert entry["sessionId"] == "sess-42"


class TestStatus:
    def test_status_is_public(self, api) -> None:
        resp = api.client.get("/api/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["name"] == "migrant-worker-system"
        assert body["status"] == "ok"
        assert body["uptimeMs"] >= 0
        assert body["now"]
        assert body["components"] == {"authDb": "ok", "recordsDb": "ok", "media": "configured"}

    def test_status_degrades_when_database_fails(self, api) -> None:
        failure = OperationalError("SELECT 1", {}, Exception("disk I/O error"))
        with patch.object(api.record_store, "ping", side_effect=failure):
            resp = api.client.get("/api/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "degraded"
        assert body["components"]["recordsDb"] == "error"
        assert body["components"]["authDb"] == "ok"
