"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> AuthService -> AuthStore -> response model serialization. Unit testing
individual route functions would miss middleware, dependency injection, and
the exception handlers that render AuthError -- integration tests are the
right tool here.

Coverage:
  - Login: camelCase token pair, cookie flags, no-store, credential failures
  - Verification: Bearer and cookie transport, TOKEN_MISSING, session gone after logout
  - Refresh rotation and logout revocation over HTTP
  - Register: tenant taken from token, role ceiling, conflict, validation envelope
  - validate-fingerprint

Fixtures used (from conftest.py):
  - api_client: (client, ids) -- session validation ON, rate limiting OFF.
    Every seed user's password is conftest.PASSWORD.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import ACME_ID, PASSWORD, bearer


def _login(client: TestClient, username: str, **extra) -> dict:
    resp = client.post("/api/v1/auth/login", json={"username": username, "password": PASSWORD, **extra})
    assert resp.status_code == 200, f"login {username} failed: {resp.status_code} {resp.text}"
    # Keep later requests explicit about their credentials.
    client.cookies.clear()
    return resp.json()


def _set_cookies(resp) -> list[str]:
    return [v for k, v in resp.headers.multi_items() if k.lower() == "set-cookie"]


class TestLogin:
    def test_login_returns_camel_case_pair(self, api_client: tuple[TestClient, dict]) -> None:
        client, ids = api_client
        data = _login(client, "alice")
        assert set(data) >= {"token", "refreshToken", "expiresIn", "user"}
        assert data["user"]["id"] == ids["alice"]
        assert data["user"]["tenantId"] == ACME_ID
        assert "hashedPassword" not in data["user"]
        assert "hashed_password" not in data["user"]

    def test_login_sets_strict_httponly_cookie(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        resp = client.post("/api/v1/auth/login", json={"username": "bob", "password": PASSWORD})
        client.cookies.clear()
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        [cookie] = [c for c in _set_cookies(resp) if c.startswith("token=")]
        assert "httponly" in cookie.lower()
        assert "samesite=strict" in cookie.lower()

    def test_wrong_password_is_generic(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        resp = client.post("/api/v1/auth/login", json={"username": "alice", "password": "wrong-one"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_unknown_user_is_generic(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        resp = client.post("/api/v1/auth/login", json={"username": "mallory", "password": PASSWORD})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_inactive_user_is_specific(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        resp = client.post("/api/v1/auth/login", json={"username": "carol", "password": PASSWORD})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "USER_INACTIVE"

    def test_tenant_hint(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        ok = client.post("/api/v1/auth/login", json={"username": "alice", "password": PASSWORD, "tenant": "acme"})
        bad = client.post("/api/v1/auth/login", json={"username": "alice", "password": PASSWORD, "tenant": "globex"})
        client.cookies.clear()
        assert ok.status_code == 200
        assert bad.status_code == 401

    def test_missing_password_is_validation_envelope(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        resp = client.post("/api/v1/auth/login", json={"username": "alice"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


class TestVerification:
    def test_me_with_bearer(self, api_client: tuple[TestClient, dict]) -> None:
        client, ids = api_client
        token = _login(client, "alice")["token"]
        resp = client.get("/api/v1/auth/me", headers=bearer(token))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["user"]["id"] == ids["alice"]
        assert data["activeRole"] == "admin"
        assert data["isRoleSwitched"] is False
        assert data["landingPage"] == "/admin-dashboard"

    def test_me_with_cookie(self, api_client: tuple[TestClient, dict]) -> None:
        client, ids = api_client
        token = _login(client, "bob")["token"]
        resp = client.get("/api/v1/auth/me", headers={"Cookie": f"token={token}", "Accept": "application/json"})
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == ids["bob"]

    def test_me_without_token(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        client.cookies.clear()
        resp = client.get("/api/v1/auth/me", headers={"Accept": "application/json"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "TOKEN_MISSING"

    def test_malformed_token(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        resp = client.get("/api/v1/auth/me", headers=bearer("abc.def.ghi"))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "TOKEN_INVALID_OR_EXPIRED"

    def test_session_gone_after_logout(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        token = _login(client, "bob", fingerprint="fp-1")["token"]
        assert client.get("/api/v1/auth/me", headers=bearer(token)).status_code == 200
        assert client.post("/api/v1/auth/logout", headers=bearer(token)).status_code == 200
        client.cookies.clear()
        resp = client.get("/api/v1/auth/me", headers=bearer(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "SESSION_NOT_FOUND"

    def test_fingerprint_mismatch_is_not_blocking_by_default(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        token = _login(client, "bob", fingerprint="fp-laptop")["token"]
        headers = {**bearer(token), "X-Device-Fingerprint": "fp-other"}
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 200


class TestRefreshAndLogout:
    def test_refresh_rotates(self, api_client: tuple[TestClient, dict]) -> None:
        client, ids = api_client
        first = _login(client, "bob")
        resp = client.post("/api/v1/auth/refresh", json={"refreshToken": first["refreshToken"]})
        client.cookies.clear()
        assert resp.status_code == 200, resp.text
        second = resp.json()
        assert second["refreshToken"] != first["refreshToken"]
        assert second["user"]["id"] == ids["bob"]

        replay = client.post("/api/v1/auth/refresh", json={"refreshToken": first["refreshToken"]})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "REFRESH_INVALID_OR_EXPIRED"

    def test_logout_always_clears_cookie(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        client.cookies.clear()
        resp = client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert any(c.startswith("token=") for c in _set_cookies(resp))

    def test_logout_revokes_refresh(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        pair = _login(client, "bob")
        client.post("/api/v1/auth/logout", headers=bearer(pair["token"]))
        client.cookies.clear()
        resp = client.post("/api/v1/auth/refresh", json={"refreshToken": pair["refreshToken"]})
        assert resp.status_code == 401


class TestRegister:
    def test_admin_registers_into_own_tenant(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        token = _login(client, "alice")["token"]
        body = {"username": "frank", "email": "Frank@Example.test", "password": "long-enough-pw", "firstName": "Frank"}
        resp = client.post("/api/v1/auth/register", json=body, headers=bearer(token))
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["tenantId"] == ACME_ID
        assert data["role"] == "employee"
        assert data["email"] == "frank@example.test"
        assert data["firstName"] == "Frank"

    def test_duplicate_is_conflict(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        token = _login(client, "alice")["token"]
        body = {"username": "bob", "email": "bob2@example.test", "password": "long-enough-pw"}
        resp = client.post("/api/v1/auth/register", json=body, headers=bearer(token))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "CONFLICT"

    def test_admin_cannot_grant_root(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        token = _login(client, "alice")["token"]
        body = {"username": "eve", "email": "eve@example.test", "password": "long-enough-pw", "role": "root"}
        resp = client.post("/api/v1/auth/register", json=body, headers=bearer(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"

    def test_employee_cannot_register(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        token = _login(client, "bob")["token"]
        body = {"username": "eve2", "email": "eve2@example.test", "password": "long-enough-pw"}
        resp = client.post("/api/v1/auth/register", json=body, headers=bearer(token))
        assert resp.status_code == 403

    def test_bad_email_is_validation_error(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        token = _login(client, "alice")["token"]
        body = {"username": "gus", "email": "not-an-email", "password": "long-enough-pw"}
        resp = client.post("/api/v1/auth/register", json=body, headers=bearer(token))
        assert resp.status_code == 422


class TestValidateFingerprint:
    def test_match_and_mismatch(self, api_client: tuple[TestClient, dict]) -> None:
        client, _ids = api_client
        token = _login(client, "bob", fingerprint="fp-tablet")["token"]
        same = client.post("/api/v1/auth/validate-fingerprint", json={"fingerprint": "fp-tablet"}, headers=bearer(token))
        other = client.post("/api/v1/auth/validate-fingerprint", json={"fingerprint": "fp-x"}, headers=bearer(token))
        assert same.json() == {"valid": True}
        assert other.json() == {"valid": False}
