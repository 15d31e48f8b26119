"""
api/main.py -- FastAPI application factory for the tenant auth service.

create_app(settings) builds a fully wired app from one injected Settings
instance. Nothing in here reads the environment; asgi.py passes
get_settings() in production and tests pass a Settings(...) they built.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the AuthStore and the AuthService on startup and closes the
store on shutdown.

Error rendering:
  AuthError is the facade's expected-failure taxonomy. The verification
  failures (missing/invalid/expired token, missing session, blocked
  fingerprint) are content-negotiated: API-style callers get the JSON
  envelope, browser navigations get a 302 to LOGIN_PAGE?session=expired.
  Every other error is always the JSON envelope {"error": {"code", "message"}}.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import configure_limiter, limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.role_switch import router as role_switch_router
from auth.dependencies import wants_json
from auth.errors import AuthError
from auth.service import AuthService
from auth.store import AuthStore
from core.config import Settings, get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tenantauth.api")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the auth store and facade on startup, close the store on shutdown.

    Pattern: asynccontextmanager lifespan. Everything before yield runs on
    startup; everything after yield runs on shutdown.
    """
    settings: Settings = app.state.settings
    logger.info("Tenant auth API starting up")
    app.state.auth_store = AuthStore(settings.database_url)
    app.state.auth_service = AuthService(app.state.auth_store, settings)
    purged = app.state.auth_store.purge_expired_sessions()
    logger.info(
        "Auth initialized (validate_sessions=%s, fingerprint_policy=%s, %d expired session(s) purged)",
        settings.validate_sessions,
        settings.fingerprint_policy,
        purged,
    )

    yield

    app.state.auth_store.close()
    logger.info("Tenant auth API shutdown complete")


# ---------------------------------------------------------------------------
# Error envelope helpers
# ---------------------------------------------------------------------------


def _error_json(status_code: int, code: str, message: str, detail: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse | RedirectResponse:
    """Render an AuthError, negotiating the verification failures.

    Browser navigations that fail verification are sent to the login page
    with a session=expired marker. API-style callers are never redirected.
    """
    if exc.negotiate and not wants_json(request):
        login_page = request.app.state.settings.login_page
        resp: JSONResponse | RedirectResponse = RedirectResponse(f"{login_page}?session=expired", status_code=302)
    else:
        resp = _error_json(exc.status_code, exc.client_code, exc.message)
    resp.headers["Cache-Control"] = "no-store"
    return resp


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    slowapi stores this on the exception as exc.retry_after (int seconds).
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_json(429, "RATE_LIMITED", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Only the error locations and messages are echoed back; submitted values
    (which may be passwords) are not.
    """
    summary = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return _error_json(422, "VALIDATION_ERROR", "Request validation failed.", summary)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it -- str(dict) produces a Python repr,
    not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_json(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body. The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_json(500, "SERVER_ERROR", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Every request passes through
# this coroutine before reaching any route handler. We capture wall-clock time
# before and after call_next so we can report latency on every response.
# ---------------------------------------------------------------------------


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
# Health endpoint
#
# No rate limit applied -- health checks from load balancers and monitoring
# systems must not be throttled.
# ---------------------------------------------------------------------------


async def health(request: Request) -> JSONResponse:
    """Return API liveness, version and database reachability."""
    try:
        db_ok = request.app.state.auth_store.ping()
    except Exception:
        logger.warning("Health check: database ping failed", exc_info=True)
        db_ok = False
    body = HealthResponse(
        status="ok" if db_ok else "degraded",
        version=API_VERSION,
        database="ok" if db_ok else "unavailable",
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the API application around one Settings instance.

    The web UI router is NOT mounted here; asgi.py joins api/ and web/.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Tenant Auth API",
        description="Multi-tenant authentication, session binding, refresh rotation and role switching.",
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
    )
    app.state.settings = settings

    # Middleware: Starlette makes the last-added middleware the outermost, so
    # add innermost first. Request path: TrustedHost -> CORS -> log -> SlowAPI.
    app.add_middleware(SlowAPIMiddleware)
    app.middleware("http")(log_requests)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", settings.fingerprint_header],
        max_age=3600,
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    # SlowAPI looks for app.state.limiter by convention.
    configure_limiter(settings)
    app.state.limiter = limiter

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
    app.include_router(role_switch_router, prefix="/api/v1", tags=["Role Switch"])
    app.add_api_route("/api/v1/health", health, methods=["GET"], tags=["Health"], response_model=HealthResponse)
    return app
