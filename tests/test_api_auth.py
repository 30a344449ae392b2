"""Integration tests for the HTTP auth flow.

Tests the complete flow including:
- Signup with cookie issuance
- Login superseding the previous session
- Current session lookup
- Logout clearing the cookie
"""

import pytest
from fastapi.testclient import TestClient

from securebank.app import create_app
from securebank.config import reset_settings_cache
from securebank.service.runtime import Runtime


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime))


# {"alg":"HS256","typ":"JWT"} . {"sub":"x"} . non-ASCII signature
NON_ASCII_TOKEN = "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9.eyJzdWIiOiJ4In0.sig\u00e9"
NON_ASCII_BEARER = ("Bearer " + NON_ASCII_TOKEN).encode()


def _session_cookie_header(response):
    return [h for h in response.headers.get_list("set-cookie") if h.startswith("session=")]


class TestSignupFlow:
    def test_signup_returns_user_and_token(self, client, signup_payload):
        response = client.post("/v1/auth/signup", json=signup_payload)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "ok"
        user = data["data"]["user"]
        assert user["email"] == "jane.doe@example.com"
        assert user["ssn_masked"] == "***-**-6789"
        assert "ssn" not in user
        assert "password_hash" not in user
        assert "123456789" not in response.text

        token = data["data"]["token"]
        assert _session_cookie_header(response) == [
            f"session={token}; Path=/; HttpOnly; SameSite=Strict; Max-Age=604800"
        ]

    def test_duplicate_email_is_409(self, client, signup_payload):
        client.post("/v1/auth/signup", json=signup_payload)
        response = client.post("/v1/auth/signup", json=signup_payload)

        assert response.status_code == 409
        assert response.json()["error"] == {
            "code": "conflict",
            "message": "User already exists",
            "details": {},
        }

    def test_weak_password_is_422(self, client, signup_payload):
        response = client.post(
            "/v1/auth/signup", json={**signup_payload, "password": "password1!"}
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["message"] == "Password must contain at least one uppercase letter"

    def test_email_typo_is_rejected(self, client, signup_payload):
        response = client.post(
            "/v1/auth/signup", json={**signup_payload, "email": "jane@gmial.com"}
        )
        assert response.status_code == 422
        assert response.json()["error"]["message"] == "Did you mean jane@gmail.com?"

    def test_future_birth_date_is_rejected(self, client, signup_payload):
        response = client.post(
            "/v1/auth/signup", json={**signup_payload, "date_of_birth": "2999-01-01"}
        )
        assert response.status_code == 422
        assert response.json()["error"]["message"] == "Date of birth cannot be in the future"

    def test_signup_disabled(self, settings, memory_store, signup_payload):
        closed = Runtime(settings.model_copy(update={"allow_signup": False}), store=memory_store)
        response = TestClient(create_app(closed)).post("/v1/auth/signup", json=signup_payload)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"


class TestLoginFlow:
    def test_login_sets_cookie_and_supersedes(self, client, runtime, signup_payload):
        signup = client.post("/v1/auth/signup", json=signup_payload).json()["data"]
        response = client.post(
            "/v1/auth/login",
            json={"email": "JANE.DOE@example.com", "password": signup_payload["password"]},
        )

        assert response.status_code == 200
        token = response.json()["data"]["token"]
        assert token != signup["token"]
        assert _session_cookie_header(response)[0].startswith(f"session={token};")
        assert runtime.store.count_user_sessions(signup["user"]["id"]) == 1

        stale = client.get(
            "/v1/auth/session", headers={"Authorization": f"Bearer {signup['token']}"}
        )
        assert stale.status_code == 401

    def test_bad_credentials_are_generic(self, client, signup_payload):
        client.post("/v1/auth/signup", json=signup_payload)
        wrong = client.post(
            "/v1/auth/login", json={"email": signup_payload["email"], "password": "Wr0ng!pass"}
        )
        unknown = client.post(
            "/v1/auth/login", json={"email": "nobody@example.com", "password": "Wr0ng!pass"}
        )

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json()["error"] == unknown.json()["error"]
        assert wrong.json()["error"]["message"] == "Invalid credentials"


class TestSessionAndLogout:
    def test_session_requires_auth(self, client):
        response = client.get("/v1/auth/session")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_cookie_authenticates_session_endpoint(self, client, signup_payload):
        client.post("/v1/auth/signup", json=signup_payload)
        response = client.get("/v1/auth/session")

        assert response.status_code == 200
        assert response.json()["data"]["user"]["email"] == "jane.doe@example.com"

    def test_logout_clears_cookie(self, client, runtime, signup_payload):
        user_id = client.post("/v1/auth/signup", json=signup_payload).json()["data"]["user"]["id"]
        response = client.post("/v1/auth/logout")

        assert response.status_code == 200
        assert response.json()["data"] == {"success": True, "message": "Logged out successfully"}
        assert _session_cookie_header(response) == [
            "session=; Path=/; HttpOnly; SameSite=Strict; Max-Age=0"
        ]
        assert runtime.store.count_user_sessions(user_id) == 0
        assert client.get("/v1/auth/session").status_code == 401

    def test_logout_without_session(self, client):
        response = client.post("/v1/auth/logout")

        assert response.status_code == 200
        assert response.json()["data"] == {
            "success": False,
            "message": "No active session to logout",
        }

    def test_non_ascii_bearer_is_unauthorized(self, client):
        response = client.get(
            "/v1/auth/session", headers={"Authorization": NON_ASCII_BEARER}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_logout_with_non_ascii_bearer(self, client):
        response = client.post(
            "/v1/auth/logout", headers={"Authorization": NON_ASCII_BEARER}
        )
        assert response.status_code == 200
        assert response.json()["data"] == {
            "success": False,
            "message": "No active session to logout",
        }


class TestAppSurface:
    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_security_headers(self, client):
        response = client.get("/v1/auth/session", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "no-store" in response.headers["Cache-Control"]

    def test_lifespan_builds_runtime_from_env(self, monkeypatch, tmp_path, signup_payload):
        monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))
        reset_settings_cache()

        try:
            with TestClient(create_app()) as client:
                response = client.post("/v1/auth/signup", json=signup_payload)
                assert response.status_code == 201
                runtime = client.app.state.runtime
                assert isinstance(runtime, Runtime)
                assert runtime.settings.shared_fs_root == str(tmp_path)
            assert (tmp_path / "state" / "memory_store.json").exists()
        finally:
            reset_settings_cache()
