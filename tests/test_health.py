"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version and database fields
  - No authentication required
  - 503 with database=unavailable when the store cannot be reached
"""

from __future__ import annotations

from unittest.mock import patch


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version and database."""
    client, _ids = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"]
    assert data["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _ids = api_client
    client.cookies.clear()
    resp = client.get("/api/v1/health", headers={"Accept": "text/html"})
    assert resp.status_code == 200


def test_health_reports_database_outage(api_client):
    client, _ids = api_client
    store = client.app.state.auth_store
    with patch.object(store, "ping", side_effect=RuntimeError("database is locked")):
        resp = client.get("/api/v1/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"
    assert resp.json()["database"] == "unavailable"
    assert "locked" not in resp.text
