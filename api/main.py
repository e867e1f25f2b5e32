"""
api/main.py -- FastAPI application entry point for Migrant Health Records.

Run with:      uvicorn api.main:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the user store, the record store, and the media uploader on
startup and closes the stores on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import REQUIRED_LABELS, ErrorDetail, ErrorResponse
from api.routes.audit import router as audit_router
from api.routes.auth import router as auth_router
from api.routes.documents import router as documents_router
from api.routes.registration import router as registration_router
from api.routes.status import router as status_router
from api.routes.workers import router as workers_router
from auth.store import UserStore
from core.config import get_settings
from media.uploader import MediaUploader, MediaUploadError
from records.store import RecordStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("migranthealth.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Stores are created here, not at import time, so tests can swap
    the lifespan and inject in-memory stores.
    """
    logger.info("%s API starting up", _settings.app_name)
    app.state.started_at = time.monotonic()
    app.state.user_store = UserStore()
    app.state.record_store = RecordStore()
    app.state.media = MediaUploader()
    if not app.state.media.enabled:
        logger.warning("Media host not configured -- document uploads will fail with 502")
    logger.info("Stores initialized (first_run=%s)", not app.state.user_store.has_users())

    yield

    app.state.record_store.close()
    app.state.user_store.close()
    logger.info("%s API shutdown complete", _settings.app_name)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Migrant Health Records API",
    description="Health records, document storage, and role-based access for migrant workers.",
    version=_settings.app_version,
    lifespan=lifespan,
    # Interactive docs expose the full schema; only serve them in debug mode.
    docs_url="/docs" if _settings.debug else None,
    redoc_url="/redoc" if _settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization", "X-Session-Id"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time around call_next gives per-request latency.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
#
# registration_router goes before workers_router so POST /api/workers/register
# is matched before the /workers/{worker_id} routes are considered.
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(registration_router, prefix="/api", tags=["Registration"])
app.include_router(workers_router, prefix="/api", tags=["Workers"])
app.include_router(documents_router, prefix="/api", tags=["Documents"])
app.include_router(audit_router, prefix="/api", tags=["Audit"])
app.include_router(status_router, prefix="/api", tags=["Status"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(exclude_none=True),
    )


def validation_message(errors: list[dict]) -> str:
    """Turn the first pydantic error into a single client-facing sentence.

    Missing and empty fields read "<field> is required". Custom validators
    supply their own message through ctx["error"].
    """
    if not errors:
        return "Request validation failed."
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = loc[-1] if loc else "body"
    if first.get("type") in ("missing", "string_too_short"):
        return f"{REQUIRED_LABELS.get(field, field)} is required"
    ctx_error = (first.get("ctx") or {}).get("error")
    if ctx_error:
        return str(ctx_error)
    return f"{field}: {first.get('msg', 'invalid value')}"


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with the first validation problem as the message.

    Raw input is not echoed back; a failed password check would otherwise
    return the password in the response body.
    """
    return _error(400, "validation_error", validation_message(list(exc.errors())))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Map a UNIQUE constraint violation to 409.

    Handlers pre-check uniqueness for a specific message; this catches the
    race where two requests pass the pre-check together.
    """
    logger.warning("Integrity conflict on %s %s: %s", request.method, request.url.path, exc.orig)
    return _error(409, "conflict", "Resource already exists")


@app.exception_handler(MediaUploadError)
async def media_error_handler(request: Request, exc: MediaUploadError) -> JSONResponse:
    return _error(502, "upload_failed", str(exc))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code", "message"}. When
    detail is already a structured dict, use it directly as the error field
    rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")
