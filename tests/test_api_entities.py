"""
tests/test_api_entities.py -- Integration tests for the /api/entities routes.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> VerificationWorkflow / EntityStore -> response model
serialization -> error envelope.

Fixtures used (from conftest.py):
  - api_client: (client, token, admin_id, transport) -- TestClient with an
    admin JWT and a recording mail transport.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from auth.models import User
from auth.tokens import create_access_token, hash_password
from conftest import ADMIN_INBOX, auth_header, network_registration
from notify.mailer import WELCOME_SUBJECT


def _register(client: TestClient, **overrides) -> dict:
    resp = client.post("/api/entities/register", json=network_registration(**overrides))
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()["entity"]


def _user_token(client: TestClient, email: str, role: str = "user", entity_id: str | None = None) -> str:
    user_store = client.app.state.user_store
    uid = user_store.create_user(
        User(email=email, role=role, hashed_password=hash_password("userpass123"), entity_id=entity_id)
    )
    return create_access_token(user_id=uid, email=email, role=role, expire_seconds=3600)


class TestRegistration:
    def test_register_returns_pending_entity(self, api_client) -> None:
        client, _token, _uid, transport = api_client
        transport.clear()
        resp = client.post("/api/entities/register", json=network_registration(email="reg@acme.test"))

        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["message"] == "Entity registered successfully. Pending verification."
        assert data["entity"]["verification_status"] == "pending"
        assert data["entity"]["user_account_created"] is False
        assert [m["to"] for m in transport.sent] == [ADMIN_INBOX]

    def test_missing_metadata_field(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        body = network_registration(email="meta@acme.test")
        del body["entity_metadata"]["payment_terms"]

        resp = client.post("/api/entities/register", json=body)

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert error["errors"] == ["payment_terms"]

    def test_no_contact_method(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        resp = client.post("/api/entities/register", json=network_registration(email="nocontact@acme.test", contact_info={}))
        assert resp.status_code == 400
        assert "At least one contact method" in resp.json()["error"]["message"]

    def test_duplicate_email(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        _register(client, email="dupe@acme.test")
        resp = client.post("/api/entities/register", json=network_registration(email="dupe@acme.test"))
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Entity already exists with this email"

    def test_invalid_entity_type_is_400(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        resp = client.post("/api/entities/register", json=network_registration(entity_type="publisher"))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestValidateAndTemplates:
    def test_validate_reports_errors_and_warnings(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        body = {
            "entity_type": "network",
            "name": "Draft Net",
            "email": "draft@acme.test",
            "website": "https://draft.test",
            "description": "Too short",
            "contact_info": {"linkedin": "https://example.test/draft"},
            "entity_metadata": {"network_name": "Draft", "offers_available": 0},
        }
        resp = client.post("/api/entities/validate", json=body)

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["is_valid"] is False
        assert any("Missing required fields for network" in e for e in data["errors"])
        assert "LinkedIn URL format may be incorrect" in data["warnings"]
        assert "Description is quite short. Consider adding more details." in data["warnings"]
        assert "No offers available. Consider adding offer information." in data["warnings"]

    def test_validate_clean_draft(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        resp = client.post("/api/entities/validate", json=network_registration(email="clean@acme.test"))
        assert resp.json() == {"is_valid": True, "errors": [], "warnings": []}

    def test_metadata_template(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        resp = client.get("/api/entities/metadata/template/affiliate")
        assert resp.status_code == 200
        data = resp.json()
        assert data["required_fields"] == ["verticals", "monthly_revenue", "traffic_provided_geos"]
        assert data["template"]["verticals"] == []

    def test_metadata_template_invalid_type(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        assert client.get("/api/entities/metadata/template/publisher").status_code == 400


class TestAcmeMediaScenario:
    def test_register_then_approve(self, api_client) -> None:
        """Register "Acme Media" as an advertiser, approve it, check the provisioned user."""
        client, token, admin_id, transport = api_client
        body = {
            "entity_type": "advertiser",
            "name": "Acme Media",
            "email": "partners@acmemedia.test",
            "website": "https://acmemedia.test",
            "contact_info": {"phone": "+1 555 0100"},
            "description": "Consumer software advertiser running a global affiliate program.",
            "entity_metadata": {
                "company_name": "Acme Media Inc",
                "signup_url": "https://acmemedia.test/partners",
                "program_name": "Acme Partners",
                "program_category": "Software",
                "payout_types": ["CPS"],
                "payment_terms": "Net30",
            },
        }
        resp = client.post("/api/entities/register", json=body)
        assert resp.status_code == 201, resp.text
        entity = resp.json()["entity"]
        assert entity["verification_status"] == "pending"
        transport.clear()

        approved_at = datetime.now(timezone.utc)
        resp = client.put(
            f"/api/entities/{entity['id']}/verification",
            json={"verification_status": "approved"},
            headers=auth_header(token),
        )

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["entity"]["verification_status"] == "approved"
        assert data["entity"]["user_account_created"] is True
        assert data["entity"]["approved_by"] == admin_id
        assert data["result"]["entity_id"] == entity["id"]
        assert data["result"]["success"] is True
        assert data["result"]["email_sent"] is True

        user = client.app.state.user_store.get_by_email("partners@acmemedia.test")
        assert user is not None, "Approval must provision a user"
        assert user.role == "advertiser"
        assert user.entity_id == entity["id"]
        assert user.first_name == "Acme"
        assert user.last_name == "Media"
        assert user.password_reset_required is True
        expires = datetime.fromisoformat(user.temp_password_expires)
        assert abs(expires - (approved_at + timedelta(hours=24))) < timedelta(seconds=10)

        assert [m["subject"] for m in transport.to("partners@acmemedia.test")] == [WELCOME_SUBJECT]

        # Second approval: no new user, no second email.
        resp = client.put(
            f"/api/entities/{entity['id']}/verification",
            json={"verification_status": "approved"},
            headers=auth_header(token),
        )
        assert resp.status_code == 200
        assert resp.json()["result"]["email_sent"] is False
        assert len(transport.to("partners@acmemedia.test")) == 1


class TestVerificationEndpoints:
    def test_requires_admin(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        entity = _register(client, email="needsadmin@acme.test")
        user_token = _user_token(client, "plainuser@acme.test")

        resp = client.put(f"/api/entities/{entity['id']}/verification", json={"verification_status": "approved"})
        assert resp.status_code == 401
        resp = client.put(
            f"/api/entities/{entity['id']}/verification",
            json={"verification_status": "approved"},
            headers=auth_header(user_token),
        )
        assert resp.status_code == 403

    def test_invalid_status(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        entity = _register(client, email="badstatus@acme.test")
        resp = client.put(
            f"/api/entities/{entity['id']}/verification",
            json={"verification_status": "verified"},
            headers=auth_header(token),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"].startswith("Invalid verification status")

    def test_unknown_entity(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        resp = client.put(
            "/api/entities/does-not-exist/verification",
            json={"verification_status": "approved"},
            headers=auth_header(token),
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_pending_queue(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        _register(client, email="queue@acme.test")
        resp = client.get("/api/entities/admin/pending-verification?limit=100", headers=auth_header(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] >= 1
        assert all(e["verification_status"] == "pending" for e in data["entities"])
        assert "queue@acme.test" in [e["email"] for e in data["entities"]]

    def test_bulk_verification(self, api_client) -> None:
        client, token, _uid, transport = api_client
        ids = [_register(client, email=f"bulk{i}@acme.test")["id"] for i in range(3)]
        client.app.state.user_store.create_user(
            User(email="bulk1@acme.test", role="user", hashed_password=hash_password("x" * 12))
        )

        resp = client.put(
            "/api/entities/admin/bulk-verification",
            json={"entity_ids": ids, "verification_status": "approved"},
            headers=auth_header(token),
        )

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert sorted(e["id"] for e in data["updated_entities"]) == sorted(ids)
        assert all(e["verification_status"] == "approved" for e in data["updated_entities"])
        assert data["message"] == "3 entities updated to approved"
        assert data["verification_status"] == "approved"
        results = {r["entity_id"]: r for r in data["account_creation_results"]}
        assert results[ids[0]]["success"] is True
        assert results[ids[1]]["success"] is False
        assert results[ids[2]]["success"] is True

    def test_bulk_lists_only_changed_entities(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        held = _register(client, email="held0@acme.test")
        fresh = _register(client, email="held1@acme.test")
        client.put(
            f"/api/entities/{held['id']}/verification",
            json={"verification_status": "on_hold"},
            headers=auth_header(token),
        )

        resp = client.put(
            "/api/entities/admin/bulk-verification",
            json={"entity_ids": [held["id"], fresh["id"]], "verification_status": "on_hold"},
            headers=auth_header(token),
        )

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert [e["id"] for e in data["updated_entities"]] == [fresh["id"]]
        assert data["message"] == "1 entities updated to on_hold"
        assert len(data["account_creation_results"]) == 2

    def test_rejection_email_carries_admin_notes(self, api_client) -> None:
        client, token, _uid, transport = api_client
        entity = _register(client, email="notes@acme.test")

        resp = client.put(
            f"/api/entities/{entity['id']}/verification",
            json={"verification_status": "rejected", "admin_notes": "Missing tax documents"},
            headers=auth_header(token),
        )

        assert resp.status_code == 200, resp.text
        [message] = transport.to("notes@acme.test")
        assert "Missing tax documents" in message["html"]

    def test_bulk_rejection_email_carries_admin_notes(self, api_client) -> None:
        client, token, _uid, transport = api_client
        entities = [_register(client, email=f"spam{i}@acme.test") for i in range(2)]

        resp = client.put(
            "/api/entities/admin/bulk-verification",
            json={
                "entity_ids": [e["id"] for e in entities],
                "verification_status": "rejected",
                "admin_notes": "Spam traffic",
            },
            headers=auth_header(token),
        )

        assert resp.status_code == 200, resp.text
        for e in entities:
            [message] = transport.to(e["email"])
            assert "Spam traffic" in message["html"]

    def test_bulk_requires_ids(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        resp = client.put(
            "/api/entities/admin/bulk-verification",
            json={"entity_ids": [], "verification_status": "approved"},
            headers=auth_header(token),
        )
        assert resp.status_code == 400


class TestDirectoryAndProfile:
    def test_public_directory_hides_pending(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        pending = _register(client, email="hidden@acme.test")
        shown = _register(client, email="shown@acme.test", name="Shown Network")
        client.put(
            f"/api/entities/{shown['id']}/verification",
            json={"verification_status": "approved"},
            headers=auth_header(token),
        )

        data = client.get("/api/entities/public").json()
        ids = [e["id"] for e in data["entities"]]
        assert shown["id"] in ids
        assert pending["id"] not in ids
        assert data["count"] == len(ids)
        assert "email" not in data["entities"][0], "Directory rows must not expose contact email"

        by_type = client.get("/api/entities/type/network?limit=50").json()
        assert shown["id"] in [e["id"] for e in by_type["entities"]]
        assert client.get("/api/entities/type/publisher").status_code == 400

    def test_get_entity_requires_auth(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        entity = _register(client, email="detail@acme.test")
        assert client.get(f"/api/entities/{entity['id']}").status_code == 401
        resp = client.get(f"/api/entities/{entity['id']}", headers=auth_header(token))
        assert resp.status_code == 200
        assert resp.json()["entity"]["email"] == "detail@acme.test"
        assert client.get("/api/entities/missing", headers=auth_header(token)).status_code == 404

    def test_owner_can_update_other_user_cannot(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        entity = _register(client, email="owned@acme.test")
        owner_token = _user_token(client, "owner@acme.test", role="network", entity_id=entity["id"])
        other_token = _user_token(client, "other@acme.test", role="network")

        resp = client.put(f"/api/entities/{entity['id']}", json={"name": "Owned Network"}, headers=auth_header(owner_token))
        assert resp.status_code == 200, resp.text
        assert resp.json()["entity"]["name"] == "Owned Network"

        resp = client.put(f"/api/entities/{entity['id']}", json={"name": "Hijacked"}, headers=auth_header(other_token))
        assert resp.status_code == 403

    def test_statistics(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        _register(client, email="stats@acme.test")
        resp = client.get("/api/entities/statistics", headers=auth_header(token))
        assert resp.status_code == 200
        assert resp.json()["overall"]["total_entities"] >= 1

    def test_reputation(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        entity = _register(client, email="rep@acme.test")
        resp = client.put(f"/api/entities/{entity['id']}/reputation", json={"new_rating": 4}, headers=auth_header(token))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["previous_score"] == 0
        assert data["new_score"] == 4
        assert data["total_reviews"] == 1
        resp = client.put(f"/api/entities/{entity['id']}/reputation", json={"new_rating": 9}, headers=auth_header(token))
        assert resp.status_code == 400


class TestDelete:
    def test_delete_blocked_by_linked_user(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        entity = _register(client, email="linked@acme.test")
        client.put(
            f"/api/entities/{entity['id']}/verification",
            json={"verification_status": "approved"},
            headers=auth_header(token),
        )

        resp = client.delete(f"/api/entities/{entity['id']}", headers=auth_header(token))

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "foreign_key"

    def test_delete_unlinked_entity(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        entity = _register(client, email="deleteme@acme.test")
        assert client.delete(f"/api/entities/{entity['id']}", headers=auth_header(token)).status_code == 204
        assert client.delete(f"/api/entities/{entity['id']}", headers=auth_header(token)).status_code == 404
