"""
tests/conftest.py -- Shared test fixtures for the tenant auth tests.

This module provides:
  - make_settings(): Settings with a fixed test secret and cheap bcrypt
  - seed_store(): two tenants and one user per interesting state
  - store / service: function-scoped, isolated in-memory AuthStore + facade
  - api_client: TestClient over the full app (session validation ON)
  - web_client: TestClient with follow_redirects=False for web route tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before asgi is imported, because asgi builds
its module-level app from get_settings() and production mode refuses to
start without JWT_SECRET.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from typing import Any

# CRITICAL: Set DEBUG before any asgi import so get_settings() can
# auto-generate JWT_SECRET in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from auth.models import IdentityContext, Tenant, User
from auth.service import AuthService
from auth.store import AuthStore
from auth.tokens import hash_password
from core.config import Settings

TEST_SECRET = "test-signing-secret-0123456789-abcdefghijklmnop"
PASSWORD = "s3cret-pass"
ACME_ID = 7
GLOBEX_ID = 9

# name -> (role, tenant_id, is_active)
SEED_USERS: dict[str, tuple[str, int | None, bool]] = {
    "rooty": ("root", ACME_ID, True),
    "alice": ("admin", ACME_ID, True),
    "bob": ("employee", ACME_ID, True),
    "carol": ("employee", ACME_ID, False),
    "dave": ("admin", GLOBEX_ID, True),
    "nomad": ("employee", None, True),
}


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def memory_db_url(prefix: str = "test_auth") -> str:
    """Return a unique named shared-memory SQLite URL."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "debug": True,
        "jwt_secret": TEST_SECRET,
        "bcrypt_rounds": 4,
        "rate_limit_enabled": False,
        "database_url": memory_db_url(),
    }
    values.update(overrides)
    return Settings(**values)


def seed_store(store: AuthStore) -> dict[str, int]:
    """Create tenants acme (7) and globex (9) plus SEED_USERS. Returns name -> user id."""
    store.create_tenant(Tenant(id=ACME_ID, subdomain="acme", company_name="Acme GmbH"))
    store.create_tenant(Tenant(id=GLOBEX_ID, subdomain="globex", company_name="Globex Corp"))
    hashed = hash_password(PASSWORD, rounds=4)
    ids: dict[str, int] = {}
    for name, (role, tenant_id, active) in SEED_USERS.items():
        ids[name] = store.create_user(
            User(
                username=name,
                email=f"{name}@example.test",
                role=role,
                hashed_password=hashed,
                tenant_id=tenant_id,
                is_active=active,
            )
        )
    return ids


def identity_for(service: AuthService, user_id: int, tenant_id: int = ACME_ID, **issue_kwargs: Any) -> IdentityContext:
    """Issue and verify a token for a stored user, returning its IdentityContext."""
    user = service.store.get_by_id(user_id, tenant_id)
    assert user is not None, f"seed user {user_id} missing from tenant {tenant_id}"
    return service.codec.verify(service.codec.issue(user, **issue_kwargs))


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}", "Accept": "application/json"}


# ---------------------------------------------------------------------------
# Unit fixtures -- fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store(settings: Settings) -> Generator[AuthStore, None, None]:
    auth_store = AuthStore(settings.database_url)
    yield auth_store
    auth_store.close()


@pytest.fixture
def seed(store: AuthStore) -> dict[str, int]:
    return seed_store(store)


@pytest.fixture
def service(store: AuthStore, settings: Settings, seed: dict[str, int]) -> AuthService:
    return AuthService(store, settings)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _client_for(settings: Settings, **client_kwargs: Any) -> Generator[tuple[TestClient, dict[str, int]], None, None]:
    from asgi import build_app

    app = build_app(settings)
    with TestClient(app, raise_server_exceptions=True, **client_kwargs) as client:
        ids = seed_store(app.state.auth_store)
        yield client, ids


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, dict[str, int]], None, None]:
    """Yield (client, user ids) for API integration tests.

    The TestClient runs the real app (lifespan included) against an isolated
    in-memory store. Session validation is ON so logout is observable on the
    very next request.
    """
    yield from _client_for(make_settings(validate_sessions=True))


@pytest.fixture(scope="module")
def web_client() -> Generator[tuple[TestClient, dict[str, int]], None, None]:
    """Yield (client, user ids) for web route integration tests.

    follow_redirects=False is essential for web route tests: we assert on
    redirect *locations* (e.g. 302 to /login), which are invisible once
    the client follows the redirect and returns the final 200 response.
    """
    yield from _client_for(make_settings(), follow_redirects=False)
