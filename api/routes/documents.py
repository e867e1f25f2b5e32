"""
api/routes/documents.py -- Medical document upload, listing, and verification.

Routes:
  GET  /api/workers/{worker_id}/documents     -- active documents, newest first
  POST /api/workers/{worker_id}/documents     -- multipart upload (file, documentType, description)
  PUT  /api/documents/{document_id}/verify    -- mark verified or rejected (verify:documents)

Access rules:
  list:    read:patient_documents or read:all_documents for any worker;
           read:own_documents only for the caller's own profile
  upload:  create:medical_visits for any worker;
           upload:own_documents only for the caller's own profile

Files go to the media host; only metadata and delivery URLs are stored here.
The media public ID is never returned to clients.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from api.models import DocumentListResponse, DocumentOut, DocumentResponse, VerifyDocumentRequest
from api.routes.audit import record_audit
from api.routes.workers import load_worker
from auth.dependencies import get_token_payload, require_permission
from auth.models import TokenPayload
from auth.permissions import payload_has_any
from auth.tokens import generate_secure_id
from core.config import get_settings, now_iso
from media.uploader import InvalidUploadError, MediaUploader, validate_upload
from offline.crypto import sha256_b64
from records.models import MedicalDocument
from records.store import RecordStore

logger = logging.getLogger("migranthealth.documents")

router = APIRouter()


def _forbidden() -> HTTPException:
    return HTTPException(status_code=403, detail={"code": "forbidden", "message": "Insufficient permissions"})


def _owns_worker(record_store: RecordStore, payload: TokenPayload, worker_id: str) -> bool:
    profile = record_store.get_profile_by_user(payload.user_id)
    return profile is not None and profile.worker_id == worker_id


def _document_out(media: Optional[MediaUploader], document: MedicalDocument) -> DocumentOut:
    if media is not None and document.media_public_id:
        return DocumentOut.from_document(
            document,
            thumbnail_url=media.thumbnail_url(document.media_public_id),
            optimized_url=media.optimized_url(document.media_public_id),
        )
    return DocumentOut.from_document(document)


@router.get("/workers/{worker_id}/documents", response_model=DocumentListResponse)
def list_documents(
    request: Request,
    worker_id: str,
    payload: TokenPayload = Depends(get_token_payload),
) -> JSONResponse:
    record_store: RecordStore = request.app.state.record_store
    if not payload_has_any(payload, "read:patient_documents", "read:all_documents"):
        if not payload_has_any(payload, "read:own_documents") or not _owns_worker(record_store, payload, worker_id):
            logger.warning("User %d denied document list for %s", payload.user_id, worker_id)
            raise _forbidden()
    media = getattr(request.app.state, "media", None)
    docs = [_document_out(media, d) for d in record_store.list_documents(worker_id)]
    return JSONResponse(content=DocumentListResponse(documents=docs).model_dump(by_alias=True, exclude_none=True))


@router.post("/workers/{worker_id}/documents", response_model=DocumentResponse, status_code=201)
def upload_document(
    request: Request,
    worker_id: str,
    file: Annotated[UploadFile, File()],
    document_type: Annotated[str, Form(alias="documentType", min_length=1, max_length=100)],
    description: Annotated[str, Form(max_length=2000)] = "",
    payload: TokenPayload = Depends(get_token_payload),
) -> JSONResponse:
    """Validate, upload to the media host, then record metadata and an audit entry.

    Nothing is written locally if the media host rejects the file.
    """
    record_store: RecordStore = request.app.state.record_store
    if not payload_has_any(payload, "create:medical_visits"):
        if not payload_has_any(payload, "upload:own_documents") or not _owns_worker(record_store, payload, worker_id):
            logger.warning("User %d denied upload for %s", payload.user_id, worker_id)
            raise _forbidden()
    load_worker(record_store, worker_id)

    content_type = file.content_type or ""
    max_bytes = get_settings().max_upload_bytes
    try:
        # Reject on the declared size before buffering; the bounded read
        # covers uploads that arrive without one.
        if file.size is not None:
            validate_upload(content_type, file.size, max_bytes)
        data = file.file.read(max_bytes + 1)
        validate_upload(content_type, len(data), max_bytes)
    except InvalidUploadError as e:
        raise HTTPException(status_code=400, detail={"code": "invalid_file", "message": str(e)}) from e

    media: MediaUploader = request.app.state.media
    document_id = generate_secure_id("DOC")
    file_name = file.filename or document_id
    result = media.upload(
        data,
        folder=f"medical-documents/{worker_id}",
        public_id=document_id,
        tags=[document_type, worker_id, str(payload.user_id)],
        context={
            "workerId": worker_id,
            "documentType": document_type,
            "uploadedBy": payload.user_id,
            "originalName": file_name,
        },
        filename=file_name,
    )

    document = record_store.create_document(
        MedicalDocument(
            document_id=document_id,
            worker_id=worker_id,
            uploaded_by=payload.user_id,
            file_name=file_name,
            file_type=content_type,
            document_type=document_type,
            description=description,
            file_size=len(data),
            checksum=sha256_b64(data),
            tags=[document_type],
            access_log=[{"accessedBy": payload.user_id, "accessedAt": now_iso(), "action": "uploaded"}],
            media_public_id=result.public_id,
            media_secure_url=result.secure_url,
            media_url=result.url,
            media_folder=result.folder,
        )
    )
    record_audit(
        request,
        payload,
        action="document_uploaded",
        resource="document",
        resource_id=document_id,
        severity="medium",
        category="document_management",
        metadata={
            "fileName": file_name,
            "fileType": content_type,
            "documentType": document_type,
            "workerId": worker_id,
            "fileSize": len(data),
        },
    )
    return JSONResponse(
        status_code=201,
        content=DocumentResponse(document=_document_out(media, document)).model_dump(by_alias=True, exclude_none=True),
    )


@router.put("/documents/{document_id}/verify", response_model=DocumentResponse)
def verify_document(
    request: Request,
    document_id: str,
    body: VerifyDocumentRequest,
    payload: TokenPayload = Depends(require_permission("verify:documents")),
) -> JSONResponse:
    record_store: RecordStore = request.app.state.record_store
    document = record_store.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Document not found"})

    stamp = now_iso()
    access_log = [
        *document.access_log,
        {"accessedBy": payload.user_id, "accessedAt": stamp, "action": "verified" if body.verified else "rejected"},
    ]
    updated = record_store.update_document(
        document_id,
        is_verified=body.verified,
        verified_by=payload.user_id,
        verified_at=stamp,
        access_log=access_log,
    )
    record_audit(
        request,
        payload,
        action="document_verified",
        resource="document",
        resource_id=document_id,
        severity="high",
        category="document_verification",
        metadata={
            "verified": body.verified,
            "notes": body.notes,
            "workerId": document.worker_id,
            "documentType": document.document_type,
        },
    )
    media = getattr(request.app.state, "media", None)
    return JSONResponse(
        content=DocumentResponse(document=_document_out(media, updated)).model_dump(by_alias=True, exclude_none=True)
    )
