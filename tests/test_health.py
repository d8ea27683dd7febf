"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status and version fields
  - No authentication required
"""

from __future__ import annotations

from api.main import VERSION


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status and version."""
    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == VERSION


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any credentials."""
    api_client.cookies.clear()
    resp = api_client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
