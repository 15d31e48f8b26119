"""
API request and response models for the tenant auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire casing: request and response bodies are camelCase (refreshToken,
activeRole, tenantId) to match the token claim names clients already read.
_CamelModel sets an alias generator and populate_by_name=True so Python code
keeps using snake_case attribute names; responses are dumped with
by_alias=True.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenCamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    root = "root"
    admin = "admin"
    employee = "employee"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login.

    username accepts either a username or an email address. tenant is the
    optional tenant subdomain hint; when present the identity must belong to
    that tenant. password is capped at 72 chars (bcrypt's input limit).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=72)
    fingerprint: Optional[str] = Field(default=None, max_length=512)
    tenant: Optional[str] = Field(default=None, max_length=100)


class RefreshRequest(_CamelModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1, max_length=128)
    fingerprint: Optional[str] = Field(default=None, max_length=512)


class RegisterRequest(_CamelModel):
    """Request body for POST /api/v1/auth/register.

    There is deliberately no tenant field: new users always join the
    caller's tenant.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8, max_length=72)
    role: RoleEnum = RoleEnum.employee
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    department_id: Optional[int] = None
    position: Optional[str] = Field(default=None, max_length=100)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        """Minimal shape check; the address is an identifier here, not a mailbox."""
        local, sep, domain = value.partition("@")
        if not sep or not local or "." not in domain:
            raise ValueError("email must look like name@example.com")
        return value.lower()


class SwitchRequest(_CamelModel):
    """Request body for POST /api/v1/role-switch/switch."""

    target_role: RoleEnum


class FingerprintRequest(_CamelModel):
    """Request body for POST /api/v1/auth/validate-fingerprint."""

    fingerprint: Optional[str] = Field(default=None, max_length=512)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserPublic(_FrozenCamelModel):
    """Caller-facing user view. Never carries the password hash."""

    id: int
    username: str
    email: str
    role: str
    tenant_id: Optional[int] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    department_id: Optional[int] = None
    position: Optional[str] = None
    is_active: bool = True
    created_at: Optional[str] = None
    last_login: Optional[str] = None


class LoginResponse(_FrozenCamelModel):
    """Response body for login and refresh: the new token pair plus the user."""

    token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserPublic


class MeResponse(_FrozenCamelModel):
    """Response for GET /api/v1/auth/me -- stored user plus token state."""

    user: UserPublic
    active_role: str
    is_role_switched: bool
    landing_page: str


class SwitchedUser(_FrozenCamelModel):
    id: int
    username: str
    email: str
    role: str
    active_role: str
    tenant_id: Optional[int]
    is_role_switched: bool


class SwitchResponse(_FrozenCamelModel):
    """Response for every role-switch transition."""

    token: str
    user: SwitchedUser
    message: str
    landing_page: str


class SwitchStatusResponse(_FrozenCamelModel):
    """Response for GET /api/v1/role-switch/status."""

    user_id: int
    tenant_id: int
    legal_role: str
    active_role: str
    is_role_switched: bool
    can_switch: bool


class FingerprintResponse(_FrozenCamelModel):
    valid: bool


class MessageResponse(_FrozenCamelModel):
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"


def dump(model: BaseModel) -> dict[str, Any]:
    """Serialize a response model for JSONResponse(content=...) with wire aliases."""
    return model.model_dump(by_alias=True, exclude_none=False)
