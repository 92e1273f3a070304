"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' while the user store answers
  - a store that stops answering reports 'degraded' instead of failing
  - No authentication required
"""

from __future__ import annotations

import pytest


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _token = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == "0.1.0"
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_reports_degraded_store(api_client, monkeypatch: pytest.MonkeyPatch):
    """When the provider cannot reach its store the endpoint still answers 200."""
    client, _token = api_client
    monkeypatch.setattr(client.app.state.user_service, "ping", lambda: False)
    data = client.get("/api/v1/health").json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _token = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
