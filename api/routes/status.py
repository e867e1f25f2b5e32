"""
api/routes/status.py -- Service liveness and component status.

GET /api/status is public and not rate limited so load balancers and
monitoring can poll it. A failing database check reports "degraded" with
HTTP 200; the body says which component is down.
"""

import logging
import time

from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError

from api.models import StatusResponse
from core.config import get_settings, now_iso

logger = logging.getLogger("migranthealth.status")

router = APIRouter()


def _db_status(store, name: str) -> str:
    try:
        store.ping()
    except SQLAlchemyError as e:
        logger.warning("Status check: %s unreachable: %s", name, e)
        return "error"
    return "ok"


@router.get("/status", response_model=StatusResponse)
def status(request: Request) -> StatusResponse:
    """Return name, version, uptime, and a per-component health map."""
    settings = get_settings()
    state = request.app.state
    started_at = getattr(state, "started_at", time.monotonic())
    media = getattr(state, "media", None)
    components = {
        "authDb": _db_status(state.user_store, "auth database"),
        "recordsDb": _db_status(state.record_store, "records database"),
        "media": "configured" if media is not None and media.enabled else "disabled",
    }
    overall = "ok" if components["authDb"] == "ok" and components["recordsDb"] == "ok" else "degraded"
    return StatusResponse(
        name=settings.app_name,
        version=settings.app_version,
        uptime_ms=int((time.monotonic() - started_at) * 1000),
        status=overall,
        now=now_iso(),
        components=components,
    )
