"""
auth/sessions.py -- Session Registry: correlator records and fingerprint binding.

A session record binds a session correlator (the token's sessionId claim)
to the device fingerprint presented at login and to an expiry. It is written
at login, refresh and role switch, read on every request when
VALIDATE_SESSIONS is on, and deleted at logout. It is never updated; a new
login supersedes it with a new record.

Fingerprint policy:
  "log"   A live record whose fingerprint differs from the one presented in
          the request header is logged as [SECURITY] and the request goes
          through. Legitimate browser or OS updates change fingerprints; only
          a missing record blocks.
  "block" The same mismatch rejects the request with FingerprintMismatch.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from auth.audit import best_effort
from auth.errors import FingerprintMismatch, SessionNotFound
from auth.models import IdentityContext, SessionRecord, User
from auth.store import AuthStore, to_iso, utcnow
from auth.tokens import new_session_id
from core.config import Settings

logger = logging.getLogger("tenantauth.sessions")


class SessionRegistry:
    def __init__(self, store: AuthStore, settings: Settings) -> None:
        self._store = store
        self._enabled = settings.validate_sessions
        self._policy = settings.fingerprint_policy
        self._lifetime = timedelta(seconds=settings.access_token_expire_seconds)

    def open(self, user: User, fingerprint: Optional[str] = None) -> Optional[str]:
        """Mint a session correlator, persisting a record when one is needed.

        A record is written when a fingerprint was supplied or validation is
        on. The write is best-effort: on failure the correlator is dropped
        and None is returned, so the caller issues a token without sessionId
        and verification of that token degrades to signature-only.
        """
        session_id = new_session_id()
        if not fingerprint and not self._enabled:
            return session_id
        record = SessionRecord(
            tenant_id=user.tenant_id,
            user_id=user.id,
            session_id=session_id,
            fingerprint=fingerprint,
            expires_at=to_iso(utcnow() + self._lifetime),
        )
        result = best_effort("session_record", self._store.create_session, record)
        if not result.ok:
            logger.warning(
                "Session record for user %s not persisted -- token issued without session correlator",
                user.id,
            )
            return None
        return session_id

    def check(self, ctx: IdentityContext, presented_fingerprint: Optional[str] = None) -> None:
        """Cross-check a verified token against its session record.

        No-op unless validation is enabled and the token carries a
        correlator. Store failures propagate.
        """
        if not self._enabled or not ctx.session_id:
            return
        record = self._store.get_live_session(ctx.tenant_id, ctx.user_id, ctx.session_id)
        if record is None:
            raise SessionNotFound()
        if _mismatch(record, presented_fingerprint):
            logger.warning(
                "[SECURITY] Device fingerprint mismatch for user %s in tenant %s (policy=%s)",
                ctx.user_id,
                ctx.tenant_id,
                self._policy,
            )
            if self._policy == "block":
                raise FingerprintMismatch()

    def fingerprint_matches(self, ctx: IdentityContext, fingerprint: Optional[str]) -> bool:
        """Explicit fingerprint check for the validate-fingerprint endpoint.

        Unlike check(), a mismatch is always reported (False) regardless of
        policy. Without a fingerprint or a correlator there is nothing to
        compare and the answer is True. A missing record raises
        SessionNotFound.
        """
        if not fingerprint or not ctx.session_id:
            return True
        record = self._store.get_live_session(ctx.tenant_id, ctx.user_id, ctx.session_id)
        if record is None:
            raise SessionNotFound()
        if _mismatch(record, fingerprint):
            logger.warning("[SECURITY] Device fingerprint mismatch for user %s", ctx.user_id)
            return False
        return True

    def close(self, ctx: IdentityContext) -> bool:
        if not ctx.session_id:
            return False
        return self._store.delete_session(ctx.tenant_id, ctx.user_id, ctx.session_id)


def _mismatch(record: SessionRecord, presented: Optional[str]) -> bool:
    return bool(record.fingerprint) and bool(presented) and record.fingerprint != presented
