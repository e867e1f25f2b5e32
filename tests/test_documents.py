"""
tests/test_documents.py -- Integration tests for medical document routes.

The media uploader is the MagicMock from conftest, so no request leaves the
process. Covers:
  - POST /workers/{id}/documents: owner and doctor upload; admin and other
    worker 403; unknown worker 404; bad type / size / missing field 400;
    oversized files refused before they are read; media failure 502 with
    nothing stored; audit entry written
  - GET /workers/{id}/documents: newest first, delivery URLs, no public ID;
    access rules for own vs patient documents
  - PUT /documents/{id}/verify: doctor verifies or rejects; worker 403;
    unknown document 404; non-boolean status 400
"""

from __future__ import annotations

import pytest

import api.routes.documents as documents_routes
from media.uploader import MediaUploadError, validate_upload

PDF = ("lab.pdf", b"%PDF-1.4 test document", "application/pdf")


def _upload(api, worker_id, headers, file=PDF, document_type="lab_report", description="CBC panel"):
    data = {"description": description}
    if document_type is not None:
        data["documentType"] = document_type
    return api.client.post(
        f"/api/workers/{worker_id}/documents",
        files={"file": file},
        data=data,
        headers=headers,
    )


@pytest.fixture(scope="module")
def owner(api, make_user):
    """(headers, worker_id) for a worker with a profile."""
    _, headers = make_user(api.user_store, "worker", "doc.owner@example.com")
    resp = api.client.post(
        "/api/workers",
        json={"fullName": "Anil", "dateOfBirth": "1988-08-08", "gender": "male", "phoneNumber": "9600000001"},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return headers, resp.json()["worker"]["workerId"]


@pytest.fixture(scope="module")
def doctor(api, make_user):
    return make_user(api.user_store, "doctor", "dr.docs@example.com")


@pytest.fixture(scope="module")
def admin_headers(api, make_user):
    return make_user(api.user_store, "admin", "admin.docs@example.com")[1]


@pytest.fixture(scope="module")
def stranger_headers(api, make_user):
    return make_user(api.user_store, "worker", "nosy@example.com")[1]


class TestUpload:
    def test_owner_uploads_pdf(self, api, owner) -> None:
        headers, worker_id = owner
        resp = _upload(api, worker_id, headers)
        assert resp.status_code == 201, resp.text
        doc = resp.json()["document"]
        assert doc["documentId"].startswith("DOC_")
        assert doc["workerId"] == worker_id
        assert doc["fileName"] == "lab.pdf"
        assert doc["fileType"] == "application/pdf"
        assert doc["fileSize"] == len(PDF[1])
        assert doc["checksum"]
        assert doc["isVerified"] is False
        assert doc["accessLog"][0]["action"] == "uploaded"
        assert doc["thumbnailUrl"].startswith("https://media.test/thumb/")
        assert "mediaPublicId" not in doc

        kwargs = api.media.upload.call_args.kwargs
        assert kwargs["folder"] == f"medical-documents/{worker_id}"
        assert kwargs["public_id"] == doc["documentId"]
        assert "lab_report" in kwargs["tags"]

    def test_upload_writes_audit_entry(self, api, owner) -> None:
        headers, worker_id = owner
        doc_id = _upload(api, worker_id, headers, document_type="xray").json()["document"]["documentId"]
        entry = next(e for e in api.record_store.list_audit_logs() if e.resource_id == doc_id)
        assert entry.action == "document_uploaded"
        assert entry.severity == "medium"
        assert entry.category == "document_management"
        assert entry.metadata["documentType"] == "xray"

    def test_doctor_uploads_for_patient(self, api, owner, doctor) -> None:
        _, worker_id = owner
        _, headers = doctor
        resp = _upload(api, worker_id, headers, file=("scan.png", b"\x89PNG fake", "image/png"))
        assert resp.status_code == 201

    def test_admin_cannot_upload(self, api, owner, admin_headers) -> None:
        _, worker_id = owner
        assert _upload(api, worker_id, admin_headers).status_code == 403

    def test_other_worker_cannot_upload(self, api, owner, stranger_headers) -> None:
        _, worker_id = owner
        assert _upload(api, worker_id, stranger_headers).status_code == 403

    def test_unknown_worker_is_404(self, api, doctor) -> None:
        _, headers = doctor
        assert _upload(api, "MW_0_missing", headers).status_code == 404

    def test_disallowed_type_is_400(self, api, owner) -> None:
        headers, worker_id = owner
        resp = _upload(api, worker_id, headers, file=("notes.txt", b"hello", "text/plain"))
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == (
            "Invalid file type. Only PDF, JPG, PNG, and WebP files are allowed"
        )

    def test_oversized_file_is_400(self, api, owner) -> None:
        headers, worker_id = owner
        big = b"0" * (10 * 1024 * 1024 + 1)
        resp = _upload(api, worker_id, headers, file=("big.pdf", big, "application/pdf"))
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "File size exceeds 10MB limit"

    def test_oversized_file_rejected_on_declared_size(self, api, owner, monkeypatch) -> None:
        headers, worker_id = owner
        sizes = []

        def recording_validate(content_type, size, max_bytes=None):
            sizes.append(size)
            return validate_upload(content_type, size, max_bytes)

        monkeypatch.setattr(documents_routes, "validate_upload", recording_validate)
        big = b"0" * (10 * 1024 * 1024 + 5)
        resp = _upload(api, worker_id, headers, file=("big.pdf", big, "application/pdf"))
        assert resp.status_code == 400
        assert sizes == [len(big)]

    def test_missing_document_type_is_400(self, api, owner) -> None:
        headers, worker_id = owner
        resp = _upload(api, worker_id, headers, document_type=None)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "documentType is required"

    def test_media_failure_is_502_and_stores_nothing(self, api, owner) -> None:
        headers, worker_id = owner
        before = len(api.record_store.list_documents(worker_id))
        original = api.media.upload.side_effect
        api.media.upload.side_effect = MediaUploadError("Upload failed: connection reset")
        try:
            resp = _upload(api, worker_id, headers)
        finally:
            api.media.upload.side_effect = original
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "upload_failed"
        assert len(api.record_store.list_documents(worker_id)) == before


class TestList:
    def test_owner_lists_newest_first(self, api, owner) -> None:
        headers, worker_id = owner
        first = _upload(api, worker_id, headers, document_type="older").json()["document"]["documentId"]
        second = _upload(api, worker_id, headers, document_type="newer").json()["document"]["documentId"]
        resp = api.client.get(f"/api/workers/{worker_id}/documents", headers=headers)
        assert resp.status_code == 200, resp.text
        ids = [d["documentId"] for d in resp.json()["documents"]]
        assert ids.index(second) < ids.index(first)
        assert all("mediaPublicId" not in d for d in resp.json()["documents"])

    def test_doctor_and_admin_can_list(self, api, owner, doctor, admin_headers) -> None:
        _, worker_id = owner
        _, doctor_headers = doctor
        assert api.client.get(f"/api/workers/{worker_id}/documents", headers=doctor_headers).status_code == 200
        assert api.client.get(f"/api/workers/{worker_id}/documents", headers=admin_headers).status_code == 200

    def test_other_worker_is_403(self, api, owner, stranger_headers) -> None:
        _, worker_id = owner
        resp = api.client.get(f"/api/workers/{worker_id}/documents", headers=stranger_headers)
        assert resp.status_code == 403


class TestVerify:
    def test_doctor_verifies_document(self, api, owner, doctor) -> None:
        headers, worker_id = owner
        doctor_user, doctor_headers = doctor
        doc_id = _upload(api, worker_id, headers).json()["document"]["documentId"]

        resp = api.client.put(
            f"/api/documents/{doc_id}/verify",
            json={"verified": True, "notes": "Looks fine"},
            headers=doctor_headers,
        )
        assert resp.status_code == 200, resp.text
        doc = resp.json()["document"]
        assert doc["isVerified"] is True
        assert doc["verifiedBy"] == doctor_user.id
        assert doc["verifiedAt"]
        assert [a["action"] for a in doc["accessLog"]] == ["uploaded", "verified"]

        entry = next(e for e in api.record_store.list_audit_logs() if e.action == "document_verified")
        assert entry.resource_id == doc_id
        assert entry.severity == "high"
        assert entry.metadata["notes"] == "Looks fine"

    def test_rejection_is_logged(self, api, owner, doctor) -> None:
        headers, worker_id = owner
        _, doctor_headers = doctor
        doc_id = _upload(api, worker_id, headers).json()["document"]["documentId"]
        resp = api.client.put(f"/api/documents/{doc_id}/verify", json={"verified": False}, headers=doctor_headers)
        assert resp.status_code == 200
        assert resp.json()["document"]["accessLog"][-1]["action"] == "rejected"

    def test_worker_cannot_verify(self, api, owner) -> None:
        headers, worker_id = owner
        doc_id = _upload(api, worker_id, headers).json()["document"]["documentId"]
        resp = api.client.put(f"/api/documents/{doc_id}/verify", json={"verified": True}, headers=headers)
        assert resp.status_code == 403

    def test_unknown_document_is_404(self, api, doctor) -> None:
        _, headers = doctor
        resp = api.client.put("/api/documents/DOC_0_missing/verify", json={"verified": True}, headers=headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Document not found"

    def test_non_boolean_status_is_400(self, api, doctor) -> None:
        _, headers = doctor
        resp = api.client.put("/api/documents/DOC_0_any/verify", json={"verified": "yes"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Verification status must be boolean"
