"""
web/routes.py -- Jinja2 template routes for the browser login flow.

These routes serve server-rendered HTML. They share app.state with the API
routes (same AuthService) but return HTML and redirects instead of JSON.
Browsers authenticate with the httpOnly "token" cookie only.

Routes:
  GET  /                     -- redirect to the landing page of the active role
  GET  /login                -- login form
  POST /login                -- handle form login, set cookie, redirect
  POST /logout               -- revoke session, clear cookie, redirect /login
  GET  /root-dashboard       -- root landing page
  GET  /admin-dashboard      -- admin landing page (admin, root)
  GET  /employee-dashboard   -- employee landing page (everyone)
  GET  /profile              -- shared page (everyone)
  GET  /manage-admins        -- root only

Page guard:
  Every protected page declares the active roles allowed on it in
  _PAGE_PERMISSIONS. Unauthenticated browsers go to the login page with
  session=expired; an authenticated role outside the allowed set goes to the
  landing page of its active role. Landing pages always admit their own role,
  so a guard redirect never chains.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import client_ip, extract_token, get_auth_service, request_meta, try_get_identity
from auth.errors import AuthError
from auth.models import IdentityContext
from auth.roles import Role, can_switch, landing_page
from auth.tokens import clear_auth_cookie, set_auth_cookie

logger = logging.getLogger("tenantauth.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= and ?session= query params on /login [M3].
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid username or password.",
    "account_disabled": "Your account has been disabled. Contact an admin.",
}
_SESSION_MESSAGES: dict[str, str] = {
    "expired": "Your session has expired. Please log in again.",
}

# Public login-failure code -> ?error= key. Anything else is not a
# credentials problem and is re-raised to the API error handler.
_LOGIN_FAILURES: dict[str, str] = {
    "INVALID_CREDENTIALS": "bad_credentials",
    "USER_INACTIVE": "account_disabled",
}

_ALL_ROLES = frozenset(Role)
_ADMIN_ROLES = frozenset({Role.ADMIN, Role.ROOT})
_ROOT_ONLY = frozenset({Role.ROOT})

_PAGE_PERMISSIONS: dict[str, frozenset[Role]] = {
    "/root-dashboard": _ROOT_ONLY,
    "/admin-dashboard": _ADMIN_ROLES,
    "/employee-dashboard": _ALL_ROLES,
    "/profile": _ALL_ROLES,
    "/manage-admins": _ROOT_ONLY,
}

_PAGE_TITLES: dict[str, str] = {
    "/root-dashboard": "Root Dashboard",
    "/admin-dashboard": "Admin Dashboard",
    "/employee-dashboard": "Employee Dashboard",
    "/profile": "Profile",
    "/manage-admins": "Manage Administrators",
}


def _safe_next(next_url: Optional[str]) -> Optional[str]:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Prevents open redirect attacks such as /login?next=https://attacker.com
    or /login?next=//attacker.com. Returns None for anything else so the
    caller falls back to the landing page.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return None


def _expired_redirect(request: Request) -> RedirectResponse:
    login_page = request.app.state.settings.login_page
    return RedirectResponse(f"{login_page}?session=expired", status_code=302)


def _allowed(ctx: IdentityContext, path: str) -> bool:
    try:
        return Role(ctx.active_role) in _PAGE_PERMISSIONS[path]
    except ValueError:
        return False


def _render_page(request: Request, path: str) -> HTMLResponse | RedirectResponse:
    """Apply the page guard for `path` and render it."""
    ctx = try_get_identity(request)
    if ctx is None:
        return _expired_redirect(request)
    if not _allowed(ctx, path):
        logger.info("Page %s denied for active role %s (user %s)", path, ctx.active_role, ctx.user_id)
        return RedirectResponse(landing_page(ctx.active_role), status_code=302)
    resp = templates.TemplateResponse(
        request,
        "dashboard.html",
        {
            "title": _PAGE_TITLES[path],
            "identity": ctx,
            "can_switch": can_switch(ctx.role),
        },
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Landing redirect
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> RedirectResponse:
    """Send the browser to the landing page of its active role, or to login."""
    ctx = try_get_identity(request)
    if ctx is None:
        return RedirectResponse(request.app.state.settings.login_page, status_code=302)
    return RedirectResponse(landing_page(ctx.active_role), status_code=302)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page."""
    # Redirect already-authenticated users to their landing page
    ctx = try_get_identity(request)
    if ctx is not None:
        return RedirectResponse(landing_page(ctx.active_role), status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    info_msg = _SESSION_MESSAGES.get(request.query_params.get("session", ""))
    return templates.TemplateResponse(
        request,
        "login.html",
        {"error_msg": error_msg, "info_msg": info_msg},
    )


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    tenant: Optional[str] = Form(None),
    fingerprint: Optional[str] = Form(None),
) -> RedirectResponse:
    """Handle the login form through the same facade the API uses."""
    service = get_auth_service(request)
    try:
        pair = service.login(
            username.strip(),
            password,
            fingerprint=fingerprint or None,
            tenant_hint=(tenant or "").strip() or None,
            ip_address=client_ip(request),
        )
    except AuthError as exc:
        error_key = _LOGIN_FAILURES.get(exc.client_code)
        if error_key is None:
            raise
        return RedirectResponse(f"/login?error={error_key}", status_code=302)

    target = _safe_next(request.query_params.get("next")) or landing_page(pair.user["role"])  # [C2]
    resp = RedirectResponse(target, status_code=302)
    set_auth_cookie(resp, pair.token, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Revoke the session if the cookie resolves, clear it, and redirect to login."""
    get_auth_service(request).logout(extract_token(request), **request_meta(request))
    settings = request.app.state.settings
    resp = RedirectResponse(settings.login_page, status_code=302)
    clear_auth_cookie(resp, settings)
    return resp


# ---------------------------------------------------------------------------
# Guarded pages
# ---------------------------------------------------------------------------


@router.get("/root-dashboard", response_class=HTMLResponse)
def root_dashboard(request: Request):
    return _render_page(request, "/root-dashboard")


@router.get("/admin-dashboard", response_class=HTMLResponse)
def admin_dashboard(request: Request):
    return _render_page(request, "/admin-dashboard")


@router.get("/employee-dashboard", response_class=HTMLResponse)
def employee_dashboard(request: Request):
    return _render_page(request, "/employee-dashboard")


@router.get("/profile", response_class=HTMLResponse)
def profile(request: Request):
    return _render_page(request, "/profile")


@router.get("/manage-admins", response_class=HTMLResponse)
def manage_admins(request: Request):
    return _render_page(request, "/manage-admins")
