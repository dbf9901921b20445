"""
tests/test_api_auth.py -- Integration tests for the /api/auth routes.

Coverage:
  - Login: valid 200 + cookie, wrong password 401 bad_credentials,
    expired temporary password 401 temp_password_expired
  - /me with and without a token
  - Password reset: temporary password replaced, expired temporary password
    refused (400), wrong current password refused (401)
  - Admin user management: create, duplicate 409, list, delete, self-delete

Fixtures used (from conftest.py):
  - api_client: (client, token, admin_id, transport). The admin user has
    email "admin@adbond.test" and password "adminpass123".
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from auth.models import User
from auth.tokens import create_access_token, hash_password
from conftest import auth_header


def _login(client: TestClient, email: str, password: str):
    """POST /login, then drop the cookie so later requests authenticate by Bearer token only."""
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    client.cookies.clear()
    return resp


def _temp_user(client: TestClient, email: str, expires_in: timedelta) -> str:
    user_store = client.app.state.user_store
    return user_store.create_user(
        User(
            email=email,
            role="network",
            hashed_password=hash_password("TempPass1234"),
            password_reset_required=True,
            temp_password_expires=(datetime.now(timezone.utc) + expires_in).isoformat(),
        )
    )


class TestLogin:
    def test_login_success(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        resp = _login(client, "ADMIN@adbond.test", "adminpass123")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["role"] == "admin"
        assert data["password_reset_required"] is False
        assert data["access_token"]
        assert "access_token" in resp.cookies
        assert resp.headers["Cache-Control"] == "no-store"

    def test_login_wrong_password(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        resp = _login(client, "admin@adbond.test", "nope")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_login_unknown_email(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        resp = _login(client, "ghost@adbond.test", "whatever")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_login_with_valid_temporary_password(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        _temp_user(client, "fresh@acme.test", timedelta(hours=23))
        resp = _login(client, "fresh@acme.test", "TempPass1234")
        assert resp.status_code == 200, resp.text
        assert resp.json()["password_reset_required"] is True

    def test_login_with_expired_temporary_password(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        _temp_user(client, "stale@acme.test", timedelta(hours=-1))
        resp = _login(client, "stale@acme.test", "TempPass1234")
        assert resp.status_code == 401
        error = resp.json()["error"]
        assert error["code"] == "temp_password_expired", "Expiry must be distinct from bad credentials"
        assert "temporary password has expired" in error["message"].lower()


class TestMe:
    def test_me(self, api_client) -> None:
        client, token, uid, _transport = api_client
        resp = client.get("/api/auth/me", headers=auth_header(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["user_id"] == uid
        assert data["email"] == "admin@adbond.test"

    def test_me_unauthenticated(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        resp = client.get("/api/auth/me", headers={})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_logout_clears_cookie(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        resp = client.post("/api/auth/logout")
        assert resp.status_code == 200
        assert "access_token" in resp.headers.get("set-cookie", "")


class TestResetPassword:
    def test_replace_temporary_password(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        uid = _temp_user(client, "reset@acme.test", timedelta(hours=12))
        token = create_access_token(uid, "reset@acme.test", "network", expire_seconds=600)

        resp = client.post("/api/auth/reset-password", json={"new_password": "brand-new-pass"}, headers=auth_header(token))

        assert resp.status_code == 200, resp.text
        user = client.app.state.user_store.get_by_id(uid)
        assert user.password_reset_required is False
        assert user.temp_password_expires is None
        login = _login(client, "reset@acme.test", "brand-new-pass")
        assert login.status_code == 200

    def test_expired_temporary_password_refused(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        uid = _temp_user(client, "expired-reset@acme.test", timedelta(minutes=-5))
        token = create_access_token(uid, "expired-reset@acme.test", "network", expire_seconds=600)

        resp = client.post("/api/auth/reset-password", json={"new_password": "brand-new-pass"}, headers=auth_header(token))

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "temp_password_expired"

    def test_wrong_current_password(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        uid = client.app.state.user_store.create_user(
            User(email="regular@acme.test", role="user", hashed_password=hash_password("regularpass1"))
        )
        token = create_access_token(uid, "regular@acme.test", "user", expire_seconds=600)

        resp = client.post(
            "/api/auth/reset-password",
            json={"current_password": "not-it", "new_password": "brand-new-pass"},
            headers=auth_header(token),
        )
        assert resp.status_code == 401

        resp = client.post(
            "/api/auth/reset-password",
            json={"current_password": "regularpass1", "new_password": "brand-new-pass"},
            headers=auth_header(token),
        )
        assert resp.status_code == 200

    def test_short_new_password(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        resp = client.post(
            "/api/auth/reset-password",
            json={"current_password": "adminpass123", "new_password": "abc"},
            headers=auth_header(token),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestUserManagement:
    def test_create_list_delete(self, api_client) -> None:
        client, token, _uid, _transport = api_client
        resp = client.post(
            "/api/auth/users",
            json={"email": "staff@adbond.test", "password": "staffpass123", "role": "user", "first_name": "Sam"},
            headers=auth_header(token),
        )
        assert resp.status_code == 201, resp.text
        created = resp.json()
        assert created["email"] == "staff@adbond.test"
        assert created["entity_id"] is None

        dupe = client.post(
            "/api/auth/users",
            json={"email": "STAFF@adbond.test", "password": "staffpass123"},
            headers=auth_header(token),
        )
        assert dupe.status_code == 409

        listed = client.get("/api/auth/users", headers=auth_header(token)).json()
        assert "staff@adbond.test" in [u["email"] for u in listed]

        assert client.delete(f"/api/auth/users/{created['id']}", headers=auth_header(token)).status_code == 204
        assert client.delete(f"/api/auth/users/{created['id']}", headers=auth_header(token)).status_code == 404

    def test_admin_cannot_delete_self(self, api_client) -> None:
        client, token, uid, _transport = api_client
        resp = client.delete(f"/api/auth/users/{uid}", headers=auth_header(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_delete"

    def test_user_routes_require_admin(self, api_client) -> None:
        client, _token, _uid, _transport = api_client
        uid = client.app.state.user_store.create_user(
            User(email="nonadmin@acme.test", role="user", hashed_password=hash_password("nonadmin123"))
        )
        token = create_access_token(uid, "nonadmin@acme.test", "user", expire_seconds=600)
        assert client.get("/api/auth/users", headers=auth_header(token)).status_code == 403
