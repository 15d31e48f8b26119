"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores map rows
into these; the facade and routes do the work.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class User:
    """An identity as held by the credential store.

    role is the legal role ("root", "admin", "employee") and is never changed
    by impersonation. tenant_id is None only for identities that have not
    been provisioned into a tenant yet; such identities cannot log in.
    """

    username: str
    email: str
    role: str
    id: Optional[int] = None
    hashed_password: Optional[str] = None
    tenant_id: Optional[int] = None
    department_id: Optional[int] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position: Optional[str] = None
    is_active: bool = True
    is_archived: bool = False
    created_at: Optional[str] = None
    last_login: Optional[str] = None


@dataclass
class Tenant:
    subdomain: str
    company_name: str
    id: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class SessionRecord:
    """Server-side record binding a session correlator to a client fingerprint."""

    tenant_id: int
    user_id: int
    session_id: str
    expires_at: str
    fingerprint: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class RefreshTokenRecord:
    """A ledger entry. Only the bcrypt hash of the refresh secret is kept.

    lineage_id ties the entry to the login it descends from, so that logout
    can revoke it without knowing the raw secret.
    """

    tenant_id: int
    user_id: int
    token_hash: str
    expires_at: str
    lineage_id: Optional[str] = None
    revoked: bool = False
    id: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class AuditEntry:
    tenant_id: Optional[int]
    user_id: Optional[int]
    action: str
    entity_type: str = "user"
    entity_id: Optional[int] = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    was_role_switched: bool = False
    id: Optional[int] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class IdentityContext:
    """Normalized claims of a verified Session Token.

    This is what request handlers see. active_role is what authorization
    decisions use; role is the legal role and only matters to role switching.

    session_id names the session record of this one token and changes on
    every re-issue. lineage_id is minted at login and kept unchanged through
    role switches and refreshes; logout revokes refresh entries by it.
    """

    user_id: int
    username: str
    role: str
    active_role: str
    is_role_switched: bool
    tenant_id: int
    session_id: Optional[str] = None
    lineage_id: Optional[str] = None
    fingerprint: Optional[str] = None
    issued_at: Optional[int] = None
    expires_at: Optional[int] = None


@dataclass
class TokenPair:
    token: str
    refresh_token: str
    user: dict[str, Any]


@dataclass
class SwitchResult:
    token: str
    user: dict[str, Any]
    message: str = ""


def public_user(user: User) -> dict[str, Any]:
    """Return the caller-facing view of a User with the password hash stripped."""
    view = asdict(user)
    view.pop("hashed_password", None)
    return view
