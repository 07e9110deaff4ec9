"""Certificate endpoint tests: lifecycle, ownership, listing and public
verification."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from fastapi.testclient import TestClient

from app.models.user import User
from tests.conftest import bearer

BASE = "/api/certificates"


def _create(client: TestClient, owner: User, **fields) -> dict:
    payload = {"name": "Forklift Safety", **fields}
    resp = client.post(BASE, json=payload, headers=bearer(owner))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def _issue(client: TestClient, owner: User, cert: dict) -> dict:
    resp = client.post(f"{BASE}/{cert['id']}/issue", headers=bearer(owner))
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


# ---- create ----


def test_create_certificate(client: TestClient, alice: User) -> None:
    expires = (datetime.now(UTC) + timedelta(days=365)).isoformat()
    cert = _create(
        client,
        alice,
        description="Annual refresher",
        recipientName="Grace Hopper",
        recipientEmail="grace@example.com",
        expiryDate=expires,
        metadata={"course": "FL-101"},
    )
    assert cert["status"] == "draft"
    assert cert["type"] == "completion"
    assert cert["ownerId"] == str(alice.id)
    assert cert["certificateId"].startswith("CERT-")
    assert cert["recipientName"] == "Grace Hopper"
    assert cert["expiresAt"] is not None
    assert cert["metadata"] == {"course": "FL-101"}
    assert cert["isExpired"] is False
    assert cert["issuedAt"] is None


def test_create_accepts_title_and_certificate_type(
    client: TestClient, alice: User
) -> None:
    resp = client.post(
        BASE,
        json={"title": "Crane Operation", "certificateType": "EXCELLENCE"},
        headers=bearer(alice),
    )
    assert resp.status_code == 201
    cert = resp.json()["data"]
    assert cert["name"] == "Crane Operation"
    assert cert["type"] == "excellence"


def test_create_validation(client: TestClient, alice: User) -> None:
    for payload in (
        {"name": "ab"},
        {"name": "Valid name", "type": "platinum"},
        {"name": "Valid name", "recipientEmail": "not-an-email"},
    ):
        resp = client.post(BASE, json=payload, headers=bearer(alice))
        assert resp.status_code == 422, payload
        assert resp.json()["code"] == "VALIDATION_ERROR"


def test_create_requires_auth(client: TestClient) -> None:
    resp = client.post(BASE, json={"name": "Forklift Safety"})
    assert resp.status_code == 401


# ---- read / ownership ----


def test_owner_can_read(client: TestClient, alice: User) -> None:
    cert = _create(client, alice)
    resp = client.get(f"{BASE}/{cert['id']}", headers=bearer(alice))
    assert resp.status_code == 200
    assert resp.json()["data"]["certificateId"] == cert["certificateId"]


def test_other_user_is_forbidden(client: TestClient, alice: User, bob: User) -> None:
    cert = _create(client, alice)
    for method, suffix in (("GET", ""), ("DELETE", ""), ("POST", "/issue")):
        url = f"{BASE}/{cert['id']}{suffix}"
        resp = client.request(method, url, headers=bearer(bob))
        assert resp.status_code == 403
        assert resp.json()["code"] == "INSUFFICIENT_PERMISSIONS"


def test_admin_can_read_any(client: TestClient, alice: User, admin: User) -> None:
    cert = _create(client, alice)
    assert client.get(f"{BASE}/{cert['id']}", headers=bearer(admin)).status_code == 200


def test_unknown_certificate_is_404(client: TestClient, alice: User) -> None:
    resp = client.get(f"{BASE}/does-not-exist", headers=bearer(alice))
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"


# ---- update ----


def test_update_merges_fields(client: TestClient, alice: User) -> None:
    cert = _create(client, alice, description="old", recipientName="Grace Hopper")
    resp = client.put(
        f"{BASE}/{cert['id']}",
        json={"description": "new"},
        headers=bearer(alice),
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["description"] == "new"
    assert data["recipientName"] == "Grace Hopper"
    assert data["certificateId"] == cert["certificateId"]


def test_update_cannot_touch_status_or_identity(
    client: TestClient, alice: User
) -> None:
    cert = _create(client, alice)
    for payload in ({"status": "issued"}, {"certificateId": "CERT-X-000000"}):
        resp = client.put(f"{BASE}/{cert['id']}", json=payload, headers=bearer(alice))
        assert resp.status_code == 422, payload

    again = client.get(f"{BASE}/{cert['id']}", headers=bearer(alice)).json()["data"]
    assert again["status"] == "draft"
    assert again["certificateId"] == cert["certificateId"]


# ---- lifecycle ----


def test_issue_and_revoke(client: TestClient, alice: User) -> None:
    cert = _create(client, alice, recipientEmail="grace@example.com")
    issued = _issue(client, alice, cert)
    assert issued["status"] == "issued"
    assert issued["issuedAt"] is not None

    resp = client.post(
        f"{BASE}/{cert['id']}/revoke",
        json={"reason": "Issued in error"},
        headers=bearer(alice),
    )
    assert resp.status_code == 200
    revoked = resp.json()["data"]
    assert revoked["status"] == "revoked"
    assert revoked["revocationReason"] == "Issued in error"
    assert revoked["revokedAt"] is not None


def test_revoke_requires_reason(client: TestClient, alice: User) -> None:
    cert = _create(client, alice)
    resp = client.post(
        f"{BASE}/{cert['id']}/revoke", json={"reason": "no"}, headers=bearer(alice)
    )
    assert resp.status_code == 422


def test_delete(client: TestClient, alice: User) -> None:
    cert = _create(client, alice)
    resp = client.delete(f"{BASE}/{cert['id']}", headers=bearer(alice))
    assert resp.status_code == 200
    assert client.get(f"{BASE}/{cert['id']}", headers=bearer(alice)).status_code == 404

    verify = client.get(f"{BASE}/verify/{cert['certificateId']}")
    assert verify.json()["data"]["error"] == "Certificate not found"


# ---- listing ----


def test_list_is_scoped_to_owner(
    client: TestClient, alice: User, bob: User, admin: User
) -> None:
    mine = _create(client, alice)
    _create(client, bob)

    resp = client.get(BASE, headers=bearer(alice))
    assert resp.status_code == 200
    assert [c["id"] for c in resp.json()["data"]] == [mine["id"]]
    assert resp.headers["x-total-count"] == "1"

    # Asking for someone else's certificates still only returns your own
    other = client.get(BASE, params={"ownerId": str(bob.id)}, headers=bearer(alice))
    assert [c["id"] for c in other.json()["data"]] == [mine["id"]]

    everything = client.get(BASE, headers=bearer(admin))
    assert everything.headers["x-total-count"] == "2"

    bobs = client.get(BASE, params={"ownerId": str(bob.id)}, headers=bearer(admin))
    assert bobs.headers["x-total-count"] == "1"


def test_list_paging_headers(client: TestClient, alice: User) -> None:
    for i in range(3):
        _create(client, alice, name=f"Course number {i}")

    resp = client.get(BASE, params={"limit": 2, "offset": 1}, headers=bearer(alice))
    assert resp.status_code == 200
    assert len(resp.json()["data"]) == 2
    assert resp.headers["x-total-count"] == "3"
    assert resp.headers["x-offset"] == "1"
    assert resp.headers["x-limit"] == "2"


def test_list_filters(client: TestClient, alice: User) -> None:
    welding = _create(client, alice, name="Welding Basics")
    crane = _create(client, alice, name="Crane Operation")
    _issue(client, alice, crane)

    issued = client.get(BASE, params={"status": "issued"}, headers=bearer(alice))
    assert [c["id"] for c in issued.json()["data"]] == [crane["id"]]

    found = client.get(BASE, params={"search": "weld"}, headers=bearer(alice))
    assert [c["id"] for c in found.json()["data"]] == [welding["id"]]


def test_list_rejects_expired_status_filter(client: TestClient, alice: User) -> None:
    resp = client.get(BASE, params={"status": "expired"}, headers=bearer(alice))
    assert resp.status_code == 422


def test_statistics(client: TestClient, alice: User, bob: User) -> None:
    _create(client, alice)
    _issue(client, alice, _create(client, alice))
    _create(client, bob)

    resp = client.get(f"{BASE}/statistics", headers=bearer(alice))
    assert resp.status_code == 200
    assert resp.json()["data"] == {
        "total": 2,
        "issued": 1,
        "draft": 1,
        "revoked": 0,
        "expired": 0,
    }


# ---- public verification ----


def test_verify_issued_certificate(client: TestClient, alice: User) -> None:
    cert = _create(client, alice, recipientEmail="grace@example.com")
    _issue(client, alice, cert)

    resp = client.get(f"{BASE}/verify/{cert['certificateId']}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["isValid"] is True
    public = body["data"]["certificate"]
    assert public["certificateId"] == cert["certificateId"]
    assert public["status"] == "issued"
    # No owner or contact details on the public view
    assert "ownerId" not in public
    assert "recipientEmail" not in public
    assert "metadata" not in public


def test_verify_draft(client: TestClient, alice: User) -> None:
    cert = _create(client, alice)
    resp = client.get(f"{BASE}/verify/{cert['certificateId']}")
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Certificate has not been issued yet"
    assert body["data"]["isValid"] is False


def test_verify_expired(client: TestClient, alice: User) -> None:
    past = (datetime.now(UTC) - timedelta(days=1)).isoformat()
    cert = _create(client, alice, expiresAt=past)
    _issue(client, alice, cert)
    resp = client.get(f"{BASE}/verify/{cert['certificateId']}")
    assert resp.status_code == 400
    assert resp.json()["data"]["error"] == "Certificate has expired"


def test_verify_revoked(client: TestClient, alice: User) -> None:
    cert = _create(client, alice)
    _issue(client, alice, cert)
    client.post(
        f"{BASE}/{cert['id']}/revoke",
        json={"reason": "Fraudulent copy"},
        headers=bearer(alice),
    )
    resp = client.get(f"{BASE}/verify/{cert['certificateId']}")
    assert resp.status_code == 400
    assert resp.json()["data"]["error"] == "Certificate has been revoked"


def test_verify_unknown(client: TestClient) -> None:
    resp = client.get(f"{BASE}/verify/CERT-NOPE-000000")
    assert resp.status_code == 400
    assert resp.json()["data"]["certificate"] is None
