"""
api/main.py -- FastAPI application entry point for Shelfguard.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the stores and services from Settings on startup and closes
them on shutdown. Tests swap the lifespan to inject isolated stores.

Photos are served from MEDIA_ROOT under /media so the URLs MediaStore issues
resolve when the API runs with the default MEDIA_BASE_URL.
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
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.items import router as items_router
from auth.service import AuthService
from auth.store import CredentialStore
from catalog.media import MediaStore
from catalog.service import CatalogService
from catalog.store import ContentStore
from core.config import get_settings
from core.errors import (
    AppError,
    DuplicateEmailError,
    InvalidCredentialsError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ThrottledError,
    UnexpectedError,
    ValidationError,
)

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("shelfguard.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build stores and services on startup; close them on shutdown.

    The credential store and content store share one database URL. The
    login throttle backend is chosen by THROTTLE_BACKEND; "database" puts it
    on the credential store's engine.
    """
    logger.info("Shelfguard API starting up")
    app.state.settings = settings
    app.state.credential_store = CredentialStore(settings.database_url)
    app.state.content_store = ContentStore(settings.database_url)
    app.state.auth_service = AuthService.from_settings(settings, app.state.credential_store)
    app.state.catalog = CatalogService(
        app.state.content_store,
        MediaStore(settings.media_root, settings.media_base_url),
        timeout=settings.collaborator_timeout_seconds,
    )
    logger.info("Auth initialized (throttle_backend=%s)", settings.throttle_backend)

    yield

    app.state.content_store.close()
    app.state.credential_store.close()
    logger.info("Shelfguard API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Shelfguard API",
    description="Accounts, sessions and owner-scoped access to a priced item catalog.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Stale session cleanup
#
# auth.dependencies flags a session cookie that no longer bootstraps (expired,
# forged, signed with a rotated key). Deleting it here means the client stops
# sending it and the next request is cleanly anonymous.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def clear_stale_session(request: Request, call_next):
    response = await call_next(request)
    if getattr(request.state, "session_stale", False):
        response.delete_cookie(settings.session_cookie_name)
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
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
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(items_router, prefix="/api/v1", tags=["Items"])

settings.media_root.mkdir(parents=True, exist_ok=True)
app.mount("/media", StaticFiles(directory=settings.media_root), name="media")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves through _error_response(), so API clients parse one
# envelope whatever the status code.
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: dict[type[AppError], int] = {
    ValidationError: 400,
    InvalidCredentialsError: 401,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    DuplicateEmailError: 409,
    ThrottledError: 429,
    StorageError: 502,
    UnexpectedError: 500,
}


def status_for(exc: AppError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return 500


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Map a domain error to its status code.

    Only the error's own message is returned. For UnexpectedError the chained
    cause is logged server-side and never sent to the client.
    """
    if isinstance(exc, UnexpectedError):
        logger.error("Unexpected failure on %s %s", request.method, request.url.path, exc_info=exc.__cause__)
    response = _error_response(status_for(exc), exc.code, exc.message, exc.detail)
    if isinstance(exc, ThrottledError):
        response.headers["Retry-After"] = str(exc.wait_minutes * 60)
    if isinstance(exc, InvalidCredentialsError):
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Per-IP limit from api.limiter, distinct from the per-email lockout."""
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies (wrong types, unknown role names) are 422, not 400."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    # auth.dependencies raises with a ready-made {"code", "message"} detail.
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all. The raw exception is logged, never written to the response body."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit -- health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    components = {"app": "ok", "database": "ok"}
    try:
        with request.app.state.credential_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=_VERSION, components=components)
