"""
auth/refresh.py -- Refresh-Token Ledger: hashed, single-use, time-boxed secrets.

The raw secret is returned to the caller once and never stored. The ledger
keeps its bcrypt hash with tenant id, user id, login lineage, a 7-day
expiry and a revoked flag.

consume() scans the live (unrevoked, unexpired) entries and bcrypt-compares
the presented secret against each. That is linear in the live set, which
stays small because entries expire after 7 days and are revoked on first use.

Rotate-on-use: a matched entry is revoked with a conditional UPDATE before
anything new is minted. Two concurrent consume() calls on the same secret
both find the entry, but only one of them flips revoked 0 -> 1; the other
gets RefreshInvalidOrExpired. Once revoked, a hash is never matched again
because the scan only reads live entries.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from auth.errors import RefreshInvalidOrExpired
from auth.models import IdentityContext, RefreshTokenRecord, User
from auth.store import AuthStore, to_iso, utcnow
from auth.tokens import hash_password, new_refresh_secret, verify_password
from core.config import Settings

logger = logging.getLogger("tenantauth.refresh")

_MAX_SECRET_LENGTH = 128


class RefreshLedger:
    def __init__(self, store: AuthStore, settings: Settings) -> None:
        self._store = store
        self._rounds = settings.bcrypt_rounds
        self._lifetime = timedelta(days=settings.refresh_token_expire_days)

    def issue(self, user: User, lineage_id: Optional[str] = None) -> str:
        """Store the hash of a fresh secret for user and return the raw secret."""
        secret = new_refresh_secret()
        self._store.add_refresh_token(
            RefreshTokenRecord(
                tenant_id=user.tenant_id,
                user_id=user.id,
                lineage_id=lineage_id,
                token_hash=hash_password(secret, self._rounds),
                expires_at=to_iso(utcnow() + self._lifetime),
            )
        )
        return secret

    def consume(self, secret: str) -> RefreshTokenRecord:
        """Match and revoke the entry for secret. Raises RefreshInvalidOrExpired."""
        if not secret or len(secret) > _MAX_SECRET_LENGTH:
            raise RefreshInvalidOrExpired()
        for entry in self._store.list_live_refresh_tokens():
            if not verify_password(secret, entry.token_hash):
                continue
            if not self._store.revoke_refresh_token(entry.id):
                logger.warning(
                    "[SECURITY] Refresh token %s for user %s consumed concurrently -- rejecting the loser",
                    entry.id,
                    entry.user_id,
                )
                raise RefreshInvalidOrExpired()
            entry.revoked = True
            return entry
        raise RefreshInvalidOrExpired()

    def revoke_lineage(self, ctx: IdentityContext) -> int:
        """Revoke every live entry in the login lineage of the token.

        The lineage survives role switches, so a switched token revokes the
        refresh secret handed out at login.
        """
        if not ctx.lineage_id:
            return 0
        return self._store.revoke_lineage_refresh_tokens(ctx.tenant_id, ctx.user_id, ctx.lineage_id)
