"""
auth/role_switch.py -- Role-Switch State Machine.

State is the triple (legal role, active role, is_role_switched) carried by a
verified token. Legal edges come from auth.roles.ROLE_TRANSITIONS and are
keyed by the *legal* role only, so a switched token cannot chain switches
into privileges its holder never had.

Every successful switch:
  - reloads the identity scoped by (user_id, tenant_id) and refuses if it is
    gone, inactive, or its legal role no longer matches the token;
  - re-issues a token with the same id, legal role, tenant_id and login
    lineage, the new activeRole, and a fresh session correlator;
  - closes the session record of the presented token;
  - writes one best-effort audit entry (role_switch_to_<target>).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from auth.audit import best_effort, record_role_switch
from auth.errors import ForbiddenTransition, IdentityGone, UserInactive
from auth.models import IdentityContext, SwitchResult, User
from auth.roles import Role, can_switch, transition
from auth.sessions import SessionRegistry
from auth.store import AuthStore
from auth.tokens import TokenCodec

logger = logging.getLogger("tenantauth.role_switch")


class RoleSwitcher:
    def __init__(self, store: AuthStore, codec: TokenCodec, sessions: SessionRegistry) -> None:
        self._store = store
        self._codec = codec
        self._sessions = sessions

    def switch_to(
        self,
        ctx: IdentityContext,
        target: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SwitchResult:
        switched = transition(ctx.role, target)
        if switched is None:
            logger.info("Rejected role switch %s -> %s for user %s", ctx.role, target, ctx.user_id)
            raise ForbiddenTransition()

        user = self._reload(ctx)
        session_id = self._sessions.open(user, ctx.fingerprint)
        token = self._codec.issue(
            user,
            session_id=session_id,
            lineage_id=ctx.lineage_id,
            fingerprint=ctx.fingerprint,
            active_role=target,
        )
        # The re-issued token supersedes the presented one.
        _ = best_effort("close_superseded_session", self._sessions.close, ctx)
        _ = record_role_switch(self._store, ctx, target, ip_address, user_agent)

        logger.info(
            "User %s (tenant %s) switched %s -> %s",
            user.id,
            user.tenant_id,
            ctx.active_role,
            target,
        )
        if switched:
            message = f"Switched to {target} view."
        else:
            message = f"Switched back to {target} view."
        return SwitchResult(token=token, user=_switched_view(user, target, switched), message=message)

    def switch_to_original(
        self,
        ctx: IdentityContext,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SwitchResult:
        return self.switch_to(ctx, ctx.role, ip_address, user_agent)

    def root_to_admin(
        self,
        ctx: IdentityContext,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SwitchResult:
        """Root-only entry point. An admin gets FORBIDDEN_TRANSITION here even
        though admin -> admin is a legal return edge."""
        if ctx.role != Role.ROOT.value:
            raise ForbiddenTransition()
        return self.switch_to(ctx, Role.ADMIN.value, ip_address, user_agent)

    def status(self, ctx: IdentityContext) -> dict[str, Any]:
        return {
            "user_id": ctx.user_id,
            "tenant_id": ctx.tenant_id,
            "legal_role": ctx.role,
            "active_role": ctx.active_role,
            "is_role_switched": ctx.is_role_switched,
            "can_switch": can_switch(ctx.role),
        }

    def _reload(self, ctx: IdentityContext) -> User:
        user = self._store.get_by_id(ctx.user_id, ctx.tenant_id)
        if user is None:
            logger.warning(
                "[SECURITY] Role switch by user %s for tenant %s: no such user in that tenant",
                ctx.user_id,
                ctx.tenant_id,
            )
            raise IdentityGone()
        if not user.is_active or user.is_archived:
            raise UserInactive()
        if user.role != ctx.role:
            logger.warning(
                "[SECURITY] Role switch by user %s: token role %r no longer matches stored role %r",
                ctx.user_id,
                ctx.role,
                user.role,
            )
            raise ForbiddenTransition()
        return user


def _switched_view(user: User, active_role: str, switched: bool) -> dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "active_role": active_role,
        "tenant_id": user.tenant_id,
        "is_role_switched": switched,
    }
