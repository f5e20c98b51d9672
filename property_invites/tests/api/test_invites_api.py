"""
HTTP tests for the invite routes.

The app runs against the shared SQLite session; the service dependency is
overridden so the frozen clock and test settings apply.
"""

import time

import jwt
import pytest
from fastapi.testclient import TestClient

from property_invites.api.dependencies.invites import get_invite_service
from property_invites.database.session import get_db_session
from property_invites.main import create_app
from property_invites.middleware.rate_limit import get_request_rate_limiter

JWT_SECRET = "test-jwt-secret"


def _bearer(user_id, role=None, secret=JWT_SECRET, expires_in=3600):
    claims = {"sub": user_id, "exp": int(time.time()) + expires_in}
    if role:
        claims["role"] = role
    return {"Authorization": f"Bearer {jwt.encode(claims, secret, algorithm='HS256')}"}


@pytest.fixture
def client(monkeypatch, db_session, limiter, service):
    monkeypatch.setenv("AUTH_JWT_SECRET", JWT_SECRET)
    monkeypatch.delenv("AUTH_JWT_AUDIENCE", raising=False)

    app = create_app()

    def _session():
        yield db_session

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_request_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_invite_service] = lambda: service

    with TestClient(app) as test_client:
        yield test_client


class TestHealth:

    def test_liveness(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_readiness_queries_database(self, client):
        response = client.get("/api/health/readiness")
        assert response.status_code == 200
        assert response.json()["checks"] == {"database": "ok"}


class TestCreateInviteEndpoint:

    def test_creates_invite(self, client, make_property):
        prop = make_property()
        response = client.post(
            "/api/invites",
            json={"property_id": prop.id, "delivery_method": "code"},
            headers=_bearer("landlord-1", role="landlord"),
        )

        assert response.status_code == 201
        body = response.json()
        assert len(body["token"]) == 12
        assert body["invite_id"]
        assert body["expires_at"].startswith("2026-03-04T12:00:00")

    def test_requires_authentication(self, client, make_property):
        response = client.post(
            "/api/invites",
            json={"property_id": make_property().id, "delivery_method": "code"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "NOT_AUTHENTICATED"
        assert "X-Correlation-ID" in response.headers

    def test_expired_jwt_is_rejected(self, client, make_property):
        response = client.post(
            "/api/invites",
            json={"property_id": make_property().id, "delivery_method": "code"},
            headers=_bearer("landlord-1", expires_in=-60),
        )
        assert response.status_code == 401

    def test_non_owner_gets_403(self, client, make_property):
        response = client.post(
            "/api/invites",
            json={"property_id": make_property().id, "delivery_method": "code"},
            headers=_bearer("landlord-2"),
        )

        assert response.status_code == 403
        assert response.json()["error"] == {
            "code": "NOT_AUTHORIZED",
            "message": "Property not found or access denied",
            "details": {},
        }

    def test_invalid_delivery_method_gets_400(self, client, make_property):
        response = client.post(
            "/api/invites",
            json={"property_id": make_property().id, "delivery_method": "carrier-pigeon"},
            headers=_bearer("landlord-1"),
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"field": "delivery_method"}

    def test_rate_limited_with_retry_after(self, client, make_property, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_CREATE_PER_USER", "1")
        prop = make_property()
        payload = {"property_id": prop.id, "delivery_method": "code"}
        headers = _bearer("landlord-1")

        assert client.post("/api/invites", json=payload, headers=headers).status_code == 201
        response = client.post("/api/invites", json=payload, headers=headers)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.json()["error"]["code"] == "RATE_LIMITED"


class TestValidateEndpoint:

    def test_valid_token(self, client, make_property, make_invite):
        prop = make_property()
        _, token = make_invite(prop)

        response = client.post("/api/invites/validate", json={"token": token})

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["property"] == {
            "id": prop.id,
            "name": "Maple Court",
            "address": "12 Maple St",
            "property_type": "apartment",
            "unit": "4B",
        }

    @pytest.mark.parametrize("payload", [{"token": "ZZZZZZZZZZZZ"}, {"token": "nope"}, {}])
    def test_failures_share_one_shape(self, client, payload):
        response = client.post("/api/invites/validate", json=payload)
        assert response.status_code == 200
        assert response.json() == {"valid": False, "property": None, "expires_at": None}

    def test_budget_is_per_forwarded_client(self, client, make_property, make_invite, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_VALIDATE_PER_CLIENT", "1")
        _, token = make_invite(make_property())

        first = client.post("/api/invites/validate", json={"token": token}, headers={"X-Forwarded-For": "203.0.113.1"})
        second = client.post("/api/invites/validate", json={"token": token}, headers={"X-Forwarded-For": "203.0.113.1"})
        other = client.post("/api/invites/validate", json={"token": token}, headers={"X-Forwarded-For": "203.0.113.2"})

        assert first.json()["valid"] is True
        assert second.status_code == 200
        assert second.json()["valid"] is False
        assert other.json()["valid"] is True


class TestAcceptEndpoint:

    def test_accepts_with_bearer(self, client, make_property, make_invite):
        prop = make_property()
        _, token = make_invite(prop)

        response = client.post("/api/invites/accept", json={"token": token}, headers=_bearer("tenant-a"))

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "status": "OK",
            "property_id": prop.id,
            "property_name": "Maple Court",
            "error": None,
        }

    def test_anonymous_caller_gets_status_body(self, client, make_property, make_invite):
        _, token = make_invite(make_property())
        response = client.post("/api/invites/accept", json={"token": token})

        assert response.status_code == 200
        assert response.json()["status"] == "NOT_AUTHENTICATED"

    def test_bad_signature_is_anonymous(self, client, make_property, make_invite):
        _, token = make_invite(make_property())
        response = client.post(
            "/api/invites/accept",
            json={"token": token},
            headers=_bearer("tenant-a", secret="someone-elses-secret"),
        )
        assert response.json()["status"] == "NOT_AUTHENTICATED"

    def test_replay_reports_already_linked(self, client, make_property, make_invite):
        _, token = make_invite(make_property())
        headers = _bearer("tenant-a")

        client.post("/api/invites/accept", json={"token": token}, headers=headers)
        response = client.post("/api/invites/accept", json={"token": token}, headers=headers)

        assert response.json()["status"] == "ALREADY_LINKED"
        assert response.json()["success"] is True


class TestRevokeAndListEndpoints:

    def test_revoke(self, client, make_property, make_invite):
        invite, _ = make_invite(make_property())
        response = client.post(f"/api/invites/{invite.id}/revoke", headers=_bearer("landlord-1"))

        assert response.status_code == 200
        assert response.json()["status"] == "revoked"
        assert "token_hash" not in response.json()

    def test_revoke_by_other_landlord(self, client, make_property, make_invite):
        invite, _ = make_invite(make_property())
        response = client.post(f"/api/invites/{invite.id}/revoke", headers=_bearer("landlord-2"))
        assert response.status_code == 403

    def test_revoke_unknown(self, client):
        response = client.post("/api/invites/missing/revoke", headers=_bearer("landlord-1"))
        assert response.status_code == 404

    def test_revoke_accepted_conflicts(self, client, make_property, make_invite, clock):
        invite, _ = make_invite(make_property(), accepted_at=clock(), accepted_by="tenant-a")
        response = client.post(f"/api/invites/{invite.id}/revoke", headers=_bearer("landlord-1"))

        assert response.status_code == 409
        assert response.json()["error"]["details"] == {"status": "accepted"}

    def test_list_invites(self, client, make_property, make_invite, clock):
        prop = make_property()
        make_invite(prop)
        make_invite(prop, accepted_at=clock(), accepted_by="tenant-a")

        pending = client.get(f"/api/properties/{prop.id}/invites", headers=_bearer("landlord-1"))
        everything = client.get(
            f"/api/properties/{prop.id}/invites",
            params={"include_inactive": "true"},
            headers=_bearer("landlord-1"),
        )

        assert pending.json()["total"] == 1
        assert pending.json()["invites"][0]["status"] == "pending"
        assert everything.json()["total"] == 2

    def test_list_requires_owner(self, client, make_property):
        response = client.get(f"/api/properties/{make_property().id}/invites", headers=_bearer("tenant-a"))
        assert response.status_code == 403


class TestPropertyCodeEndpoints:

    def test_owner_issues_code_and_tenant_links(self, client, make_property):
        prop = make_property()

        issued = client.post(f"/api/properties/{prop.id}/code", headers=_bearer("landlord-1"))
        assert issued.status_code == 200
        code = issued.json()["code"]
        assert issued.json()["property_id"] == prop.id

        response = client.post("/api/properties/link", json={"code": code.lower()}, headers=_bearer("tenant-a"))

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "status": "OK",
            "property_id": prop.id,
            "property_name": "Maple Court",
            "error": None,
        }

    def test_issue_requires_owner(self, client, make_property):
        response = client.post(f"/api/properties/{make_property().id}/code", headers=_bearer("tenant-a"))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "NOT_AUTHORIZED"

    def test_link_without_bearer(self, client, make_property):
        make_property(property_code="KQZ042")
        response = client.post("/api/properties/link", json={"code": "KQZ042"})
        assert response.json()["status"] == "NOT_AUTHENTICATED"


class TestFrameworkErrors:

    def test_unknown_route_uses_error_shape(self, client):
        response = client.get("/api/nowhere")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_body_validation_uses_error_shape(self, client):
        response = client.post("/api/invites", json={"property_id": "p-1"}, headers=_bearer("landlord-1"))
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_FAILED"
        assert "body.delivery_method" in response.json()["error"]["details"]["fields"]
