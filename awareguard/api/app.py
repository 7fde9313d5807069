"""FastAPI application for AwareGuard role-based access control.

Endpoints:
  GET    /health                         Health check
  POST   /auth/check-permission          Does the caller hold a permission
  POST   /auth/check-role                Is the caller's role in an allowed set
  GET    /auth/verify-token              Verify the token on this request
  POST   /auth/verify-token              Verify a token from the request body
  GET    /admin/roles                    Role and permission catalogue
  GET    /admin/roles/{userId}           Effective role of a user
  PUT    /admin/roles/{userId}           Assign a role (audited)
  DELETE /admin/roles/{userId}           Reset to the default role (audited)
  GET    /admin/audit-log                Role audit log, most recent first
  GET    /admin/users                    List provisioned users
  POST   /admin/users                    Create a user ahead of first sign-in
  POST   /users/sync                     Provision/refresh the caller
  GET    /users/me                       The caller's record and permissions
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

import awareguard
from awareguard.api.ratelimit import limiter
from awareguard.api.routes import auth as auth_routes
from awareguard.api.routes import roles as role_routes
from awareguard.api.routes import users as user_routes
from awareguard.auth_providers.factory import create_verifier
from awareguard.config import settings
from awareguard.exceptions import AwareGuardError
from awareguard.logging_config import log_startup_info, setup_logging
from awareguard.storage.database import Database

logger = logging.getLogger("awareguard")
_audit_logger = logging.getLogger("awareguard.audit")

_STARTUP_TIME: float = 0.0

_db = Database(settings.db_path, default_role=settings.default_role)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _STARTUP_TIME
    _STARTUP_TIME = time.monotonic()
    setup_logging()
    await _db.connect()
    app.state.verifier = create_verifier(
        settings.auth_provider,
        secret=settings.jwt_secret,
        public_key=settings.jwt_public_key,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        leeway=settings.jwt_leeway_seconds,
    )
    log_startup_info()
    yield
    logger.info("Closing database connection")
    await _db.close()
    logger.info("Shutdown complete")


_OPENAPI_TAGS = [
    {"name": "Health", "description": "Health checks and version info"},
    {"name": "Auth", "description": "Permission checks and token verification"},
    {"name": "Admin", "description": "Role assignment, audit log and user management"},
    {"name": "Users", "description": "Self-service provisioning"},
]

app = FastAPI(
    title="AwareGuard",
    description="Role-based access control for a security-awareness training platform.",
    version=awareguard.__version__,
    lifespan=lifespan,
    openapi_tags=_OPENAPI_TAGS,
)

app.state.db = _db
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------
@app.exception_handler(AwareGuardError)
async def awareguard_error_handler(request: Request, exc: AwareGuardError) -> JSONResponse:
    """Centralized handler for AwareGuard exceptions.  5xx details stay in the log."""
    request_id = getattr(request.state, "request_id", "unknown")
    message = exc.message
    if exc.status_code >= 500:
        logger.error(
            "Unhandled %s on %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc.message,
            exc_info=exc,
            extra={"request_id": request_id},
        )
        message = "An internal error occurred"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_type, "message": message, "request_id": request_id},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()))
    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "message": f"{location}: {first.get('msg', 'Invalid request')}",
            "request_id": request_id,
        },
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After header on rate limit."""
    request_id = getattr(request.state, "request_id", "unknown")
    _audit_logger.warning(
        "Rate limit exceeded: %s %s from %s",
        request.method,
        request.url.path,
        get_remote_address(request),
        extra={"event_category": "audit", "action": "rate_limit_exceeded"},
    )
    response = JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": str(exc.detail),
            "request_id": request_id,
        },
    )
    response.headers["Retry-After"] = "60"
    return response


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials="*" not in settings.cors_origin_list,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next) -> Response:
    response: Response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Cache-Control"] = "no-store"
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    return response


# Registered last so it runs first and request_id is set for the error handlers.
@app.middleware("http")
async def request_logging_middleware(request: Request, call_next) -> Response:
    request_id = str(uuid4())[:8]
    request.state.request_id = request_id
    start = time.monotonic()
    response: Response = await call_next(request)
    elapsed_ms = round((time.monotonic() - start) * 1000, 1)
    logger.info(
        "%s %s %s %.1fms [%s]",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request_id,
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "duration_ms": elapsed_ms,
        },
    )
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", tags=["Health"], summary="Health check")
@limiter.exempt
async def health():
    uptime_s = time.monotonic() - _STARTUP_TIME if _STARTUP_TIME > 0 else 0
    return {
        "status": "ok",
        "version": awareguard.__version__,
        "uptimeSeconds": round(uptime_s, 1),
        "authProvider": settings.auth_provider,
    }


app.include_router(auth_routes.router)
app.include_router(role_routes.router)
app.include_router(user_routes.router)
app.include_router(user_routes.admin_router)
