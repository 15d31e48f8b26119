"""
auth/audit.py -- Best-effort side effects and the audit writers built on them.

Session-record persistence and audit logging must never fail the operation
that triggered them. best_effort() runs the side effect, logs any exception
at WARNING with the traceback, and returns a SideEffect result. Callers
that have nothing to do on failure discard it explicitly:

    _ = record_login_attempt(store, "alice", "10.0.0.1", success=True)

so the discard is visible in review. Callers that degrade on failure (the
session registry drops the correlator from the token) inspect .ok.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from auth.models import AuditEntry, IdentityContext
from auth.store import AuthStore

logger = logging.getLogger("tenantauth.audit")

T = TypeVar("T")


@dataclass(frozen=True)
class SideEffect(Generic[T]):
    name: str
    ok: bool
    value: Optional[T] = None
    error: Optional[Exception] = None


def best_effort(name: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> SideEffect[T]:
    """Run fn(*args, **kwargs); never raise. See module docstring."""
    try:
        return SideEffect(name=name, ok=True, value=fn(*args, **kwargs))
    except Exception as exc:
        logger.warning("Best-effort side effect %r failed: %s", name, exc, exc_info=True)
        return SideEffect(name=name, ok=False, error=exc)


def record_login_attempt(
    store: AuthStore,
    identifier: str,
    ip_address: Optional[str],
    success: bool,
    reason: Optional[str] = None,
) -> SideEffect[None]:
    return best_effort(
        "login_attempt",
        store.record_login_attempt,
        identifier,
        ip_address,
        success,
        reason,
    )


def record_role_switch(
    store: AuthStore,
    ctx: IdentityContext,
    target: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> SideEffect[int]:
    """Write one compliance entry per switch.

    was_role_switched records whether the *prior* token was already
    switched. It is for review only and never read by authorization.
    """
    entry = AuditEntry(
        tenant_id=ctx.tenant_id,
        user_id=ctx.user_id,
        action=f"role_switch_to_{target}",
        entity_type="user",
        entity_id=ctx.user_id,
        details={"from_role": ctx.active_role, "to_role": target, "legal_role": ctx.role},
        ip_address=ip_address,
        user_agent=user_agent,
        was_role_switched=ctx.is_role_switched,
    )
    return best_effort("role_switch_audit", store.add_audit_entry, entry)


def record_logout(
    store: AuthStore,
    ctx: IdentityContext,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> SideEffect[int]:
    entry = AuditEntry(
        tenant_id=ctx.tenant_id,
        user_id=ctx.user_id,
        action="logout",
        entity_type="user",
        entity_id=ctx.user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        was_role_switched=ctx.is_role_switched,
    )
    return best_effort("logout_audit", store.add_audit_entry, entry)
