"""
api/main.py -- FastAPI application entry point for NovaSanctum.

Exposes the authentication/authorization core over HTTP under /api/v1.

Run with:      uvicorn asgi:app --reload

Rate limits are applied per route with @limiter.limit() (see api/limiter.py);
slowapi locates the shared limiter through app.state.limiter.

Lifespan builds every stateful component explicitly and tears it down on
shutdown:
  Settings -> AuthStores (one Engine) -> AuthService -> maintenance tasks

Every error leaves the API in one envelope:
    {"error": {"code", "message", "statusCode", "timestamp", "path", "method"}}
401 and 403 responses also append a SECURITY_ERROR audit entry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.sessions import router as sessions_router
from api.routes.v1.users import router as users_router
from auth.errors import NovaSanctumError, RateLimitError
from auth.models import AuditAction
from auth.service import AuthService
from auth.store import open_stores
from core.config import get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("novasanctum.api")
security_logger = logging.getLogger("novasanctum.security")

# Status codes without a domain exception of their own (routing 404/405 etc.)
_STATUS_CODES = {
    400: "VALIDATION_ERROR",
    401: "AUTHENTICATION_ERROR",
    403: "AUTHORIZATION_ERROR",
    404: "NOT_FOUND_ERROR",
    409: "CONFLICT_ERROR",
    429: "RATE_LIMIT_ERROR",
}

# ---------------------------------------------------------------------------
# Background maintenance tasks
# ---------------------------------------------------------------------------


async def _wait_for_stop(stop: asyncio.Event, interval: int) -> bool:
    """Sleep up to `interval` seconds. Returns True once shutdown has been requested."""
    try:
        await asyncio.wait_for(stop.wait(), timeout=interval)
    except asyncio.TimeoutError:
        return False
    return True


async def _purge_loop(app: FastAPI, interval: int, stop: asyncio.Event) -> None:
    """Delete expired sessions every `interval` seconds until `stop` is set.

    Store calls are blocking, so they run in a worker thread. A failed run is
    logged and the loop carries on. Shutdown is checked between runs only, so
    a purge in progress completes before the engine is disposed.
    """
    while not await _wait_for_stop(stop, interval):
        try:
            purged = await asyncio.to_thread(app.state.auth_service.purge_expired_sessions)
        except Exception:
            logger.exception("Session purge failed")
            continue
        logger.info("Purged %d expired sessions", purged)


async def _stats_loop(app: FastAPI, interval: int, stop: asyncio.Event) -> None:
    """Log security statistics every `interval` seconds until `stop` is set."""
    while not await _wait_for_stop(stop, interval):
        try:
            stats = await asyncio.to_thread(app.state.auth_service.security_stats)
        except Exception:
            logger.exception("Security stats collection failed")
            continue
        security_logger.info(
            "Security stats: users=%d active_sessions=%d failed_logins_24h=%d locked=%d",
            stats["totalUsers"],
            stats["activeSessions"],
            stats["failedLogins24h"],
            stats["lockedAccounts"],
        )


async def _stop_maintenance(app: FastAPI, timeout: float) -> None:
    """Signal the loops, wait for in-flight store calls, cancel anything stuck."""
    app.state.maintenance_stop.set()
    _, pending = await asyncio.wait(app.state.maintenance_tasks, timeout=timeout)
    for task in pending:
        logger.warning("Maintenance task did not stop within %.1fs; cancelling", timeout)
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Settings -- fails fast on a missing SECRET_KEY in production.
      2. Stores -- creates the schema and seeds default roles.
      3. AuthService -- wraps the stores; routes find it on app.state.
      4. Maintenance tasks last -- they reference app.state.auth_service.
    """
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info("NovaSanctum API starting up")
    app.state.settings = settings
    app.state.stores = open_stores(settings.database_url, settings.store_timeout_seconds)
    app.state.auth_service = AuthService.from_settings(settings, app.state.stores)
    logger.info("Auth initialized (policy=%s)", settings.policy_summary())
    app.state.maintenance_stop = asyncio.Event()
    app.state.maintenance_tasks = [
        asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds, app.state.maintenance_stop)),
        asyncio.create_task(_stats_loop(app, settings.security_stats_interval_seconds, app.state.maintenance_stop)),
    ]

    yield

    await _stop_maintenance(app, settings.store_timeout_seconds + 1)
    app.state.stores.close()
    logger.info("NovaSanctum API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="NovaSanctum API",
    description="Token-based authentication and role/permission authorization.",
    version=API_VERSION,
    lifespan=lifespan,
)

# slowapi looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler; latency is measured around call_next.
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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(sessions_router, prefix="/api/v1", tags=["Sessions"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _is_debug(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings and settings.debug)


def _error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build the envelope. 5xx messages and details are hidden outside debug mode."""
    if status_code >= 500 and not _is_debug(request):
        message = "Internal server error"
        details = None
    body = ErrorResponse(
        error=ErrorDetail(
            code=code,
            message=message,
            status_code=status_code,
            timestamp=datetime.now(timezone.utc),
            path=request.url.path,
            method=request.method,
            details=details,
        )
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


async def _audit_security_error(request: Request, status_code: int, code: str, message: str) -> None:
    """Append SECURITY_ERROR for a 401/403. Audit failures never change the response."""
    service: AuthService | None = getattr(request.app.state, "auth_service", None)
    if service is None:
        return
    identity = getattr(request.state, "identity", None)
    ip_address = request.client.host if request.client else None
    security_logger.warning(
        "%s %s -> %d %s (ip=%s)", request.method, request.url.path, status_code, code, ip_address
    )
    await asyncio.to_thread(
        service.audit.record,
        AuditAction.SECURITY_ERROR,
        user_id=identity.id if identity else None,
        resource=request.url.path,
        ip_address=ip_address,
        user_agent=request.headers.get("User-Agent"),
        details={"statusCode": status_code, "code": code, "message": message, "method": request.method},
    )


@app.exception_handler(NovaSanctumError)
async def novasanctum_error_handler(request: Request, exc: NovaSanctumError) -> JSONResponse:
    if exc.status_code in (401, 403):
        await _audit_security_error(request, exc.status_code, exc.code, exc.message)
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error_response(request, exc.status_code, exc.code, exc.message, exc.details or None)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 in the standard envelope.

    Retry-After is the limit window in seconds, taken from the matched limit.
    """
    security_logger.warning(
        "Rate limit exceeded on %s (ip=%s)", request.url.path, request.client.host if request.client else None
    )
    limit = getattr(exc, "limit", None)
    retry_after = limit.limit.get_expiry() if limit is not None else 60
    error = RateLimitError("Too many requests, please try again later", details={"retryAfter": retry_after})
    response = _error_response(request, error.status_code, error.code, error.message, error.details)
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 VALIDATION_ERROR when the request body or parameters fail validation."""
    fields = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return _error_response(request, 400, "VALIDATION_ERROR", "Invalid data provided", {"fields": fields})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (unknown path, wrong method) in the standard envelope."""
    code = _STATUS_CODES.get(exc.status_code, "INTERNAL_ERROR" if exc.status_code >= 500 else "HTTP_ERROR")
    return _error_response(request, exc.status_code, code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(request, 500, "INTERNAL_ERROR", str(exc))


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and database connectivity."""
    db_ok = request.app.state.stores.users.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "unavailable"},
    )
