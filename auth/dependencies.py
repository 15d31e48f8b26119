"""
auth/dependencies.py -- FastAPI Depends() helpers for request verification.

Token sources are checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "token" cookie -- set by the login endpoints for same-site page loads.

The device fingerprint for the current request is read from the header named
by Settings.fingerprint_header (X-Device-Fingerprint by default).

get_identity() is the hard variant: it raises the AuthError from the facade
and the exception handler in api/main.py renders it (JSON 401/403, or a
redirect to the login page for browser navigations). On success the verified
IdentityContext is also attached to request.state.identity.

try_get_identity() is the soft variant used by the web layer: None on any
verification failure.

require_role(role) builds a dependency that checks the *active* role against
a minimum rank.

Layer rule: no imports from web/ or api/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Request

from auth.errors import AuthError, InsufficientRole
from auth.models import IdentityContext
from auth.roles import parse_role, role_satisfies
from auth.service import AuthService
from auth.tokens import COOKIE_NAME


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def extract_token(request: Request) -> Optional[str]:
    """Return the raw Session Token from the Bearer header or the cookie, or None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME) or None


def extract_fingerprint(request: Request) -> Optional[str]:
    header = request.app.state.settings.fingerprint_header
    return request.headers.get(header) or None


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def request_meta(request: Request) -> dict[str, Optional[str]]:
    """ip_address / user_agent keyword arguments for audited facade calls."""
    return {
        "ip_address": client_ip(request),
        "user_agent": request.headers.get("User-Agent"),
    }


def wants_json(request: Request) -> bool:
    """True when the client is an API-style caller rather than a browser navigation.

    Accept containing application/json wins. Otherwise anything that does not
    ask for text/html (including a missing Accept header) is treated as API.
    """
    accept = request.headers.get("Accept", "").lower()
    if "application/json" in accept:
        return True
    return "text/html" not in accept


def get_identity(request: Request) -> IdentityContext:
    """Require a verified Session Token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(ctx: IdentityContext = Depends(get_identity)): ...
    """
    service = get_auth_service(request)
    ctx = service.verify(extract_token(request), extract_fingerprint(request))
    request.state.identity = ctx
    return ctx


def try_get_identity(request: Request) -> Optional[IdentityContext]:
    """Soft variant of get_identity(): None when the request fails verification.

    Only verification failures are softened. A server error (store down)
    still propagates so an outage is never mistaken for a logged-out user.
    """
    try:
        return get_identity(request)
    except AuthError as exc:
        if not exc.negotiate:
            raise
        return None


def require_role(role: str) -> Callable[..., IdentityContext]:
    """Build a dependency that requires the active role to rank at least `role`.

        @router.post("/users", dependencies=[Depends(require_role("admin"))])
    """
    minimum = parse_role(role)

    def dependency(ctx: IdentityContext = Depends(get_identity)) -> IdentityContext:
        try:
            allowed = role_satisfies(ctx.active_role, minimum)
        except ValueError:
            # Active role outside the known set never satisfies anything.
            allowed = False
        if not allowed:
            raise InsufficientRole()
        return ctx

    return dependency
