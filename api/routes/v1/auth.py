"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login                 -- password login; returns token pair, sets cookie
  POST /api/v1/auth/refresh               -- rotate a refresh token into a new pair
  POST /api/v1/auth/logout                -- revoke session + refresh lineage; clears cookie
  GET  /api/v1/auth/me                    -- stored user + token state (requires auth)
  POST /api/v1/auth/register              -- create a user in the caller's tenant (admin+)
  POST /api/v1/auth/validate-fingerprint  -- explicit device fingerprint check (requires auth)

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [C1] AuthService.login() provides timing equalization -- never inline the
       user lookup + password check in a route.
  [M5] Cache-Control: no-store on every response that carries a token.
  Tenant isolation: register takes the tenant from the caller's token only.

Failures are raised as AuthError by the facade and rendered by the handler
in api/main.py. Routes never build error bodies themselves.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    FingerprintRequest,
    FingerprintResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    UserPublic,
    dump,
)
from auth.dependencies import (
    client_ip,
    extract_fingerprint,
    extract_token,
    get_auth_service,
    get_identity,
    request_meta,
    require_role,
)
from auth.models import IdentityContext, TokenPair
from auth.roles import landing_page
from auth.tokens import clear_auth_cookie, set_auth_cookie

# Auth policy:
# - POST /api/v1/auth/login:                 public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/refresh:               public -- the refresh secret is the credential
# - POST /api/v1/auth/logout:                public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:                    requires auth (get_identity)
# - POST /api/v1/auth/register:              requires active role admin or root
# - POST /api/v1/auth/validate-fingerprint:  requires auth (get_identity)
router = APIRouter()


def _pair_response(request: Request, pair: TokenPair) -> JSONResponse:
    settings = request.app.state.settings
    resp = JSONResponse(
        status_code=200,
        content=dump(
            LoginResponse(
                token=pair.token,
                refresh_token=pair.refresh_token,
                token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
                expires_in=settings.access_token_expire_seconds,
                user=UserPublic(**pair.user),
            )
        ),
    )
    set_auth_cookie(resp, pair.token, settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2] brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username-or-email and password.

    Unknown identifier and wrong password both answer 401
    INVALID_CREDENTIALS; a disabled account answers 403 USER_INACTIVE.
    """
    service = get_auth_service(request)
    pair = service.login(
        body.username,
        body.password,
        fingerprint=body.fingerprint or extract_fingerprint(request),
        tenant_hint=body.tenant,
        ip_address=client_ip(request),
    )
    return _pair_response(request, pair)


@router.post("/auth/refresh", response_model=LoginResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is spent."""
    service = get_auth_service(request)
    pair = service.refresh(body.refresh_token, fingerprint=body.fingerprint or extract_fingerprint(request))
    return _pair_response(request, pair)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """End the session. Always clears the cookie, even for an unresolvable token."""
    service = get_auth_service(request)
    service.logout(extract_token(request), **request_meta(request))
    resp = JSONResponse(content=dump(MessageResponse(message="Logged out.")))
    clear_auth_cookie(resp, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, ctx: IdentityContext = Depends(get_identity)) -> MeResponse:
    """Return the stored user plus the active-role state of the presented token."""
    view = get_auth_service(request).current_user(ctx)
    return MeResponse(
        user=UserPublic(**view),
        active_role=ctx.active_role,
        is_role_switched=ctx.is_role_switched,
        landing_page=landing_page(ctx.active_role),
    )


@router.post("/auth/register", response_model=UserPublic, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    ctx: IdentityContext = Depends(require_role("admin")),
) -> UserPublic:
    """Create a user inside the caller's tenant. Admin or root active role only.

    A caller cannot grant a role above its own active role (403 FORBIDDEN).
    Username or email collision answers 409 CONFLICT.
    """
    created = get_auth_service(request).register(
        ctx,
        username=body.username,
        email=body.email,
        password=body.password,
        role=body.role.value,
        first_name=body.first_name,
        last_name=body.last_name,
        department_id=body.department_id,
        position=body.position,
    )
    return UserPublic(**created)


@router.post("/auth/validate-fingerprint", response_model=FingerprintResponse)
def validate_fingerprint(
    request: Request,
    body: FingerprintRequest,
    ctx: IdentityContext = Depends(get_identity),
) -> FingerprintResponse:
    """Compare a fingerprint with the one bound to the caller's session.

    valid=false on mismatch regardless of FINGERPRINT_POLICY. A session
    record that no longer exists answers 403 SESSION_NOT_FOUND.
    """
    fingerprint = body.fingerprint or extract_fingerprint(request)
    valid = get_auth_service(request).validate_fingerprint(ctx, fingerprint)
    return FingerprintResponse(valid=valid)
