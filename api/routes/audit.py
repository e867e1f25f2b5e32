"""
api/routes/audit.py -- Audit trail recording and the audit log endpoint.

Routes:
  GET /api/audit-logs?limit=N   -- newest entries first (read:audit_logs)

record_audit() is the single place route handlers write audit entries. It
pulls client IP, user agent, and session ID from the request headers.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditLogListResponse, AuditLogOut
from auth.dependencies import require_permission
from auth.models import TokenPayload
from auth.tokens import generate_secure_id
from records.models import AuditLogEntry
from records.store import RecordStore

logger = logging.getLogger("migranthealth.audit")

router = APIRouter()


def record_audit(
    request: Request,
    payload: TokenPayload,
    action: str,
    resource: str,
    resource_id: str,
    severity: str,
    category: str,
    metadata: Optional[dict] = None,
) -> AuditLogEntry:
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() or (request.client.host if request.client else "unknown")
    entry = AuditLogEntry(
        log_id=generate_secure_id("AUDIT"),
        user_id=payload.user_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        metadata=metadata or {},
        ip_address=ip,
        user_agent=request.headers.get("user-agent", "unknown"),
        session_id=request.headers.get("x-session-id", "unknown"),
        severity=severity,
        category=category,
    )
    store: RecordStore = request.app.state.record_store
    store.add_audit_log(entry)
    logger.info("audit %s %s/%s by user %d [%s]", action, resource, resource_id, payload.user_id, severity)
    return entry


@router.get("/audit-logs", response_model=AuditLogListResponse)
def list_audit_logs(
    request: Request,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    payload: TokenPayload = Depends(require_permission("read:audit_logs")),
) -> AuditLogListResponse:
    store: RecordStore = request.app.state.record_store
    return AuditLogListResponse(logs=[AuditLogOut.from_entry(e) for e in store.list_audit_logs(limit)])
