"""
tests/test_refresh.py -- Unit tests for the Refresh-Token Ledger (auth/refresh.py).

Covers:
  - Only the bcrypt hash is stored; the raw secret is returned once
  - Single use: a consumed secret never matches again
  - The concurrent-consume race has exactly one winner
  - Expired, unknown and oversized secrets are rejected
  - Logout revokes the whole login lineage
"""

from __future__ import annotations

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest

from auth.errors import RefreshInvalidOrExpired
from auth.models import IdentityContext, RefreshTokenRecord
from auth.refresh import RefreshLedger
from auth.store import AuthStore, to_iso, utcnow
from auth.tokens import hash_password
from conftest import ACME_ID


@pytest.fixture
def ledger(store: AuthStore, settings) -> RefreshLedger:
    return RefreshLedger(store, settings)


def _bob(store: AuthStore, seed: dict[str, int]):
    return store.get_by_id(seed["bob"], ACME_ID)


class TestIssue:
    def test_only_hash_is_stored(self, ledger: RefreshLedger, store: AuthStore, seed: dict[str, int]) -> None:
        secret = ledger.issue(_bob(store, seed), "lin-1")
        [entry] = store.list_live_refresh_tokens()
        assert entry.token_hash != secret
        assert secret not in entry.token_hash
        assert entry.lineage_id == "lin-1"
        assert entry.tenant_id == ACME_ID

    def test_expiry_is_seven_days(self, ledger: RefreshLedger, store: AuthStore, seed: dict[str, int]) -> None:
        ledger.issue(_bob(store, seed))
        [entry] = store.list_live_refresh_tokens()
        assert entry.expires_at > to_iso(utcnow() + timedelta(days=6, hours=23))
        assert entry.expires_at <= to_iso(utcnow() + timedelta(days=7))


class TestConsume:
    def test_consume_once(self, ledger: RefreshLedger, store: AuthStore, seed: dict[str, int]) -> None:
        secret = ledger.issue(_bob(store, seed))
        entry = ledger.consume(secret)
        assert entry.user_id == seed["bob"]
        assert entry.revoked is True
        with pytest.raises(RefreshInvalidOrExpired):
            ledger.consume(secret)

    def test_picks_the_matching_entry(self, ledger: RefreshLedger, store: AuthStore, seed: dict[str, int]) -> None:
        alice = store.get_by_id(seed["alice"], ACME_ID)
        first = ledger.issue(_bob(store, seed))
        ledger.issue(alice)
        assert ledger.consume(first).user_id == seed["bob"]
        assert len(store.list_live_refresh_tokens()) == 1

    def test_unknown_secret(self, ledger: RefreshLedger, store: AuthStore, seed: dict[str, int]) -> None:
        ledger.issue(_bob(store, seed))
        with pytest.raises(RefreshInvalidOrExpired):
            ledger.consume("not-a-real-secret")

    @pytest.mark.parametrize("secret", ["", "x" * 129])
    def test_empty_or_oversized_secret(self, ledger: RefreshLedger, secret: str) -> None:
        with pytest.raises(RefreshInvalidOrExpired):
            ledger.consume(secret)

    def test_expired_entry(self, ledger: RefreshLedger, store: AuthStore, seed: dict[str, int]) -> None:
        store.add_refresh_token(
            RefreshTokenRecord(
                tenant_id=ACME_ID,
                user_id=seed["bob"],
                token_hash=hash_password("stale-secret", rounds=4),
                expires_at=to_iso(utcnow() - timedelta(seconds=1)),
            )
        )
        with pytest.raises(RefreshInvalidOrExpired):
            ledger.consume("stale-secret")

    def test_concurrent_consume_has_one_winner(
        self, ledger: RefreshLedger, store: AuthStore, seed: dict[str, int], caplog
    ) -> None:
        """Interleave two consumers: both read the live set, then both try to revoke.

        The loser's scan is pinned to the snapshot taken before the winner
        revoked, so it finds the entry but must lose the conditional update.
        """
        secret = ledger.issue(_bob(store, seed))
        snapshot = store.list_live_refresh_tokens()

        winner = ledger.consume(secret)
        assert winner.revoked is True

        with patch.object(store, "list_live_refresh_tokens", return_value=snapshot):
            with caplog.at_level(logging.WARNING, logger="tenantauth.refresh"):
                with pytest.raises(RefreshInvalidOrExpired):
                    ledger.consume(secret)
        assert "[SECURITY]" in caplog.text


class TestRevokeLineage:
    def _ctx(self, user, lineage_id, session_id="sid-current") -> IdentityContext:
        return IdentityContext(
            user_id=user.id,
            username=user.username,
            role=user.role,
            active_role=user.role,
            is_role_switched=False,
            tenant_id=ACME_ID,
            session_id=session_id,
            lineage_id=lineage_id,
        )

    def test_revokes_only_that_lineage(self, ledger: RefreshLedger, store: AuthStore, seed: dict[str, int]) -> None:
        bob = _bob(store, seed)
        in_lineage = ledger.issue(bob, "lin-a")
        other_lineage = ledger.issue(bob, "lin-b")
        assert ledger.revoke_lineage(self._ctx(bob, "lin-a")) == 1
        with pytest.raises(RefreshInvalidOrExpired):
            ledger.consume(in_lineage)
        assert ledger.consume(other_lineage).lineage_id == "lin-b"

    def test_session_correlator_is_not_the_key(self, ledger: RefreshLedger, store: AuthStore, seed: dict[str, int]) -> None:
        """A re-issued token has a new sessionId but the same lineage."""
        bob = _bob(store, seed)
        ledger.issue(bob, "lin-a")
        assert ledger.revoke_lineage(self._ctx(bob, "lin-a", session_id="sid-after-switch")) == 1

    def test_without_lineage_nothing_is_revoked(self, ledger: RefreshLedger, store: AuthStore, seed: dict[str, int]) -> None:
        bob = _bob(store, seed)
        ledger.issue(bob, "lin-a")
        ctx = IdentityContext(bob.id, bob.username, bob.role, bob.role, False, ACME_ID, "sid-a")
        assert ledger.revoke_lineage(ctx) == 0
        assert len(store.list_live_refresh_tokens()) == 1
