"""
api/routes/v1/role_switch.py -- Role-switch (impersonation) REST endpoints.

Routes:
  POST /api/v1/role-switch/switch         -- switch to {"targetRole": ...}
  POST /api/v1/role-switch/to-employee    -- shortcut: switch to employee
  POST /api/v1/role-switch/root-to-admin  -- shortcut: root only, switch to admin
  POST /api/v1/role-switch/to-original    -- return to the legal role
  GET  /api/v1/role-switch/status         -- current role-switch state

Every route requires a verified token. Legality is decided by the legal role
carried in the token, never by the active role, so a switched token cannot
be used to chain into a role its holder never had.

Each successful switch returns the re-issued token in the body and in the
"token" cookie, with Cache-Control: no-store.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import SwitchedUser, SwitchRequest, SwitchResponse, SwitchStatusResponse, dump
from auth.dependencies import get_auth_service, get_identity, request_meta
from auth.models import IdentityContext, SwitchResult
from auth.roles import Role, landing_page
from auth.tokens import set_auth_cookie

router = APIRouter()


def _switch_response(request: Request, result: SwitchResult) -> JSONResponse:
    resp = JSONResponse(
        content=dump(
            SwitchResponse(
                token=result.token,
                user=SwitchedUser(**result.user),
                message=result.message,
                landing_page=landing_page(result.user["active_role"]),
            )
        )
    )
    set_auth_cookie(resp, result.token, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/role-switch/switch", response_model=SwitchResponse)
def switch(
    request: Request,
    body: SwitchRequest,
    ctx: IdentityContext = Depends(get_identity),
) -> JSONResponse:
    """Switch the active role. Illegal edges answer 403 FORBIDDEN_TRANSITION."""
    result = get_auth_service(request).switch_to(ctx, body.target_role.value, **request_meta(request))
    return _switch_response(request, result)


@router.post("/role-switch/to-employee", response_model=SwitchResponse)
def switch_to_employee(request: Request, ctx: IdentityContext = Depends(get_identity)) -> JSONResponse:
    result = get_auth_service(request).switch_to(ctx, Role.EMPLOYEE.value, **request_meta(request))
    return _switch_response(request, result)


@router.post("/role-switch/root-to-admin", response_model=SwitchResponse)
def switch_root_to_admin(request: Request, ctx: IdentityContext = Depends(get_identity)) -> JSONResponse:
    result = get_auth_service(request).root_to_admin(ctx, **request_meta(request))
    return _switch_response(request, result)


@router.post("/role-switch/to-original", response_model=SwitchResponse)
def switch_to_original(request: Request, ctx: IdentityContext = Depends(get_identity)) -> JSONResponse:
    """Return to the legal role. Always legal for root and admin."""
    result = get_auth_service(request).switch_to_original(ctx, **request_meta(request))
    return _switch_response(request, result)


@router.get("/role-switch/status", response_model=SwitchStatusResponse)
def status(request: Request, ctx: IdentityContext = Depends(get_identity)) -> SwitchStatusResponse:
    return SwitchStatusResponse(**get_auth_service(request).role_status(ctx))
