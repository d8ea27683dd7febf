"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> Authenticator/UserStore operations -> response model serialization and the
app-level exception handlers.

Coverage:
  - signup: 201 with token and cookie, 409 on duplicate username, 422 on bad body
  - signin: Basic 200 (also with a stale cookie), wrong password 401 with the
    public error envelope
  - me: bearer and cookie credentials, 401 without credentials
  - oauth: repeat sign-in returns the same user; an email taken as another
    account's username is 401, not a 500
  - keys: issued key authenticates as token_type "key"
  - roles: seeding is idempotent (defaults already seeded at startup)

Fixtures used (from conftest.py):
  - api_client: module-scoped TestClient. The client keeps cookies between
    requests, so every test starts from an empty cookie jar.
"""

from __future__ import annotations

import base64

import pytest
from fastapi.testclient import TestClient


@pytest.fixture(autouse=True)
def _clear_cookies(api_client: TestClient) -> None:
    api_client.cookies.clear()


def _basic(username: str, password: str) -> dict[str, str]:
    raw = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {raw}"}


def _signup(client: TestClient, username: str, role: str = "user", **extra) -> dict:
    body = {"username": username, "password": f"{username}-password", "role": role, **extra}
    resp = client.post("/api/v1/auth/signup", json=body)
    assert resp.status_code == 201, resp.text
    client.cookies.clear()
    return resp.json()


class TestSignup:
    def test_signup_returns_token_and_cookie(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/signup",
            json={"username": "signup-ed", "password": "signup-password", "role": "editor"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["capabilities"] == ["create", "read", "update"]
        assert data["access_token"]
        assert resp.cookies.get("auth") == data["access_token"]
        assert resp.headers["cache-control"] == "no-store"

    def test_duplicate_username_is_409(self, api_client: TestClient) -> None:
        _signup(api_client, "dupe")
        resp = api_client.post("/api/v1/auth/signup", json={"username": "dupe", "password": "another-password"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_unknown_role_is_422(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/signup",
            json={"username": "root", "password": "root-password", "role": "superuser"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_short_password_is_422(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/signup", json={"username": "shorty", "password": "short"})
        assert resp.status_code == 422


class TestSignin:
    def test_basic_signin(self, api_client: TestClient) -> None:
        created = _signup(api_client, "bob", role="admin")
        resp = api_client.post("/api/v1/auth/signin", headers=_basic("bob", "bob-password"))
        assert resp.status_code == 200
        data = resp.json()
        assert data["user_id"] == created["user_id"]
        assert data["capabilities"] == ["create", "read", "update", "delete"]
        assert data["access_token"] != created["access_token"]

    def test_wrong_password(self, api_client: TestClient) -> None:
        _signup(api_client, "carol")
        resp = api_client.post("/api/v1/auth/signin", headers=_basic("carol", "not-her-password"))
        assert resp.status_code == 401
        assert resp.json()["error"] == {"code": "unauthorized", "message": "Authentication required."}

    def test_unknown_user_is_indistinguishable(self, api_client: TestClient) -> None:
        _signup(api_client, "dave")
        wrong_password = api_client.post("/api/v1/auth/signin", headers=_basic("dave", "nope-nope"))
        unknown_user = api_client.post("/api/v1/auth/signin", headers=_basic("nobody-here", "nope-nope"))
        assert wrong_password.status_code == unknown_user.status_code == 401
        assert wrong_password.json() == unknown_user.json()

    def test_no_credentials(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/signin")
        assert resp.status_code == 401

    def test_basic_signin_with_stale_cookie(self, api_client: TestClient) -> None:
        """An expired auth cookie does not block a sign-in with correct Basic credentials."""
        _signup(api_client, "jan")
        expired = api_client.app.state.token_service.issue(1, ("read",), ttl=0)
        api_client.cookies.set("auth", expired)
        resp = api_client.post("/api/v1/auth/signin", headers=_basic("jan", "jan-password"))
        assert resp.status_code == 200
        assert resp.json()["capabilities"] == ["read"]
        assert resp.cookies.get("auth") != expired


class TestMe:
    def test_bearer(self, api_client: TestClient) -> None:
        created = _signup(api_client, "erin", role="editor")
        resp = api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {created['access_token']}"})
        assert resp.status_code == 200
        assert resp.json() == {
            "user_id": created["user_id"],
            "capabilities": ["create", "read", "update"],
            "token_type": "user",
        }

    def test_cookie_from_signin(self, api_client: TestClient) -> None:
        _signup(api_client, "fay")
        api_client.post("/api/v1/auth/signin", headers=_basic("fay", "fay-password"))
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json()["capabilities"] == ["read"]

    def test_unauthenticated(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_garbage_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"


class TestOAuth:
    def test_repeat_oauth_is_same_user(self, api_client: TestClient) -> None:
        first = api_client.post("/api/v1/auth/oauth", json={"email": "gus@example.com"})
        second = api_client.post("/api/v1/auth/oauth", json={"email": "gus@example.com"})
        assert first.status_code == second.status_code == 200
        assert first.json()["user_id"] == second.json()["user_id"]
        assert first.json()["capabilities"] == ["read"]

    def test_email_taken_as_username(self, api_client: TestClient) -> None:
        _signup(api_client, "pat@example.com", email="other@example.com")
        resp = api_client.post("/api/v1/auth/oauth", json={"email": "pat@example.com"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_oauth_account_has_no_password(self, api_client: TestClient) -> None:
        api_client.post("/api/v1/auth/oauth", json={"email": "hal@example.com"})
        api_client.cookies.clear()
        resp = api_client.post("/api/v1/auth/signin", headers=_basic("hal@example.com", "none"))
        assert resp.status_code == 401


class TestKeys:
    def test_key_authenticates_as_key(self, api_client: TestClient) -> None:
        created = _signup(api_client, "ivy", role="editor")
        resp = api_client.post("/api/v1/auth/keys", headers={"Authorization": f"Bearer {created['access_token']}"})
        assert resp.status_code == 201
        assert resp.headers["cache-control"] == "no-store"
        key = resp.json()["key"]

        me = api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {key}"})
        assert me.status_code == 200
        assert me.json()["token_type"] == "key"
        assert me.json()["user_id"] == created["user_id"]

    def test_keys_require_credentials(self, api_client: TestClient) -> None:
        assert api_client.post("/api/v1/auth/keys").status_code == 401


class TestRoles:
    def test_seed_is_idempotent(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/roles")
        assert resp.status_code == 200
        assert resp.json()["created"] == []
        assert sorted(resp.json()["skipped"]) == ["admin", "editor", "user"]
