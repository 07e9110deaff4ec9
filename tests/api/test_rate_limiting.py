"""Rate limiting tests.

Verifies the fixed-window limiter on the auth routes:
1. Requests within the window budget pass, with quota headers
2. The request after the budget gets 429 with Retry-After
3. Routes without a budget (verification, health) are never throttled
4. Callers with a valid access token are keyed by user, not by IP
5. Forged tokens fall back to the IP window
"""

from __future__ import annotations

import jwt
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from app.models.user import User
from tests.conftest import bearer

LOGIN = {"username": "nobody", "password": "Wrong-pass1!"}
FORGING_KEY = "a-key-the-server-has-never-seen-0123456789"


def test_login_budget_then_429(client: TestClient) -> None:
    for i in range(5):
        resp = client.post("/api/auth/login", json=LOGIN)
        assert resp.status_code == 401
        assert resp.headers["x-ratelimit-limit"] == "5"
        assert resp.headers["x-ratelimit-remaining"] == str(4 - i)

    resp = client.post("/api/auth/login", json=LOGIN)
    assert resp.status_code == 429
    body = resp.json()
    assert body["success"] is False
    assert body["code"] == "RATE_LIMIT_EXCEEDED"
    assert body["retryAfter"] > 0
    assert int(resp.headers["retry-after"]) == body["retryAfter"]
    assert resp.headers["x-ratelimit-remaining"] == "0"


def test_successful_logins_count_too(client: TestClient, alice: User) -> None:
    creds = {"username": "alice", "password": "Passw0rd!"}
    statuses = [
        client.post("/api/auth/login", json=creds).status_code for _ in range(6)
    ]
    assert statuses == [200] * 5 + [429]


def test_forgot_password_has_its_own_budget(client: TestClient) -> None:
    for _ in range(5):
        client.post("/api/auth/login", json=LOGIN)

    resp = client.post("/api/auth/forgot-password", json={"email": "a@example.com"})
    assert resp.status_code == 200
    assert resp.headers["x-ratelimit-limit"] == "10"
    assert resp.headers["x-ratelimit-remaining"] == "9"


def test_verification_is_not_throttled(client: TestClient) -> None:
    for _ in range(20):
        resp = client.get("/api/certificates/verify/CERT-NOPE-000000")
        assert resp.status_code == 400
        assert "x-ratelimit-limit" not in resp.headers


def test_authenticated_callers_are_keyed_by_user(
    client: TestClient, alice: User, bob: User
) -> None:
    for _ in range(10):
        client.post(
            "/api/auth/forgot-password",
            json={"email": "a@example.com"},
            headers=bearer(alice),
        )
    blocked = client.post(
        "/api/auth/forgot-password",
        json={"email": "a@example.com"},
        headers=bearer(alice),
    )
    assert blocked.status_code == 429

    # Same client IP, different user: separate window
    other = client.post(
        "/api/auth/forgot-password",
        json={"email": "a@example.com"},
        headers=bearer(bob),
    )
    assert other.status_code == 200


def test_rejections_are_counted(client: TestClient) -> None:
    def hits() -> float:
        value = REGISTRY.get_sample_value(
            "rate_limit_hits_total", {"key_type": "ip"}
        )
        return value if value is not None else 0.0

    before = hits()
    for _ in range(7):
        client.post("/api/auth/login", json=LOGIN)
    assert hits() - before == 2


def test_forged_bearer_tokens_share_the_ip_window(client: TestClient) -> None:
    statuses = []
    for i in range(6):
        forged = jwt.encode({"id": 1000 + i}, FORGING_KEY, algorithm="HS256")
        resp = client.post(
            "/api/auth/login",
            json=LOGIN,
            headers={"Authorization": f"Bearer {forged}"},
        )
        statuses.append(resp.status_code)
    assert statuses == [401] * 5 + [429]
