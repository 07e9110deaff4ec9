from __future__ import annotations

from datetime import datetime

from fastapi.testclient import TestClient


def test_health_returns_ok(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    # Redis is not configured in tests
    assert data["checks"]["redis"] == "not_configured"
    assert data["environment"] == "test"
    datetime.fromisoformat(data["timestamp"])


def test_health_needs_no_auth(client: TestClient) -> None:
    resp = client.get("/health", headers={"Authorization": "Bearer junk"})
    assert resp.status_code == 200


def test_ready_returns_200(client: TestClient) -> None:
    resp = client.get("/ready")
    assert resp.status_code == 200


def test_unknown_route_uses_error_envelope(client: TestClient) -> None:
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.json() == {
        "success": False,
        "message": "Not Found",
        "code": "ROUTE_NOT_FOUND",
    }
