"""Unit tests for the auth service.

Tests for:
- Signup validation, conflicts and the re-fetch guard
- Login with generic failures and session supersession
- Logout outcomes and cookie clearing
- Token + session authentication
"""

import pytest

from securebank.service.auth import AuthContext, AuthService
from securebank.service.errors import (
    AuthenticationError,
    ConflictError,
    InternalError,
    ValidationError,
)
from securebank.service.http import SESSION_COOKIE, SESSION_COOKIE_MAX_AGE
from securebank.service.sessions import SessionPurge
from securebank.storage.errors import ConstraintViolation
from securebank.storage.memory import MemoryStore


@pytest.fixture
def auth(runtime) -> AuthService:
    return runtime.auth


class TestSignup:
    async def test_signup_creates_user_and_session(self, auth, runtime, signup_payload, http):
        result = await auth.signup(**signup_payload, http=http)

        assert result.user.email == "jane.doe@example.com"
        assert result.user.state == "IL"
        assert result.user.ssn_last4 == "6789"
        assert result.user.ssn_masked == "***-**-6789"
        assert not hasattr(result.user, "password_hash")
        assert runtime.store.count_user_sessions(result.user.id) == 1
        assert http.set_calls == [(SESSION_COOKIE, result.token, SESSION_COOKIE_MAX_AGE)]

    async def test_ssn_stored_encrypted(self, auth, runtime, signup_payload):
        result = await auth.signup(**signup_payload)
        stored = runtime.store.get_user(result.user.id)

        assert "123456789" not in stored.ssn_encrypted
        assert runtime.cipher.decrypt(stored.ssn_encrypted) == "123456789"
        assert stored.password_hash.startswith("$argon2id$")

    async def test_duplicate_email_conflicts(self, auth, signup_payload):
        await auth.signup(**signup_payload)
        payload = {**signup_payload, "email": "JANE.DOE@example.com "}
        with pytest.raises(ConflictError) as excinfo:
            await auth.signup(**payload)
        assert excinfo.value.message == "User already exists"

    async def test_racing_insert_maps_to_conflict(self, settings, signup_payload):
        class RacingStore(MemoryStore):
            def create_user(self, record):
                raise ConstraintViolation("email already exists", field="email")

        from securebank.service.runtime import Runtime

        rt = Runtime(settings, store=RacingStore())
        with pytest.raises(ConflictError):
            await rt.auth.signup(**signup_payload)

    async def test_weak_password_rejected(self, auth, signup_payload):
        with pytest.raises(ValidationError) as excinfo:
            await auth.signup(**{**signup_payload, "password": "password1!"})
        assert excinfo.value.message == "Password must contain at least one uppercase letter"

    async def test_bad_ssn_rejected(self, auth, signup_payload):
        with pytest.raises(ValidationError):
            await auth.signup(**{**signup_payload, "ssn": "123-45-6789"})

    async def test_missing_refetch_raises_internal_error(self, settings, signup_payload, http):
        class VanishingStore(MemoryStore):
            def get_user(self, user_id):
                return None

        from securebank.service.runtime import Runtime

        rt = Runtime(settings, store=VanishingStore())
        result = None
        with pytest.raises(InternalError) as excinfo:
            result = await rt.auth.signup(**signup_payload, http=http)

        assert result is None
        assert excinfo.value.message == "Failed to create user"
        assert http.set_calls == []
        assert rt.store.sessions == {}


class TestLogin:
    async def test_login_is_case_insensitive(self, auth, signup_payload):
        await auth.signup(**signup_payload)
        result = await auth.login("JANE.DOE@EXAMPLE.COM", signup_payload["password"])
        assert result.user.email == "jane.doe@example.com"

    async def test_wrong_password_and_unknown_email_look_the_same(self, auth, signup_payload):
        await auth.signup(**signup_payload)
        with pytest.raises(AuthenticationError) as wrong_password:
            await auth.login(signup_payload["email"], "Wr0ng!Pass")
        with pytest.raises(AuthenticationError) as unknown_email:
            await auth.login("nobody@example.com", signup_payload["password"])

        assert wrong_password.value.message == "Invalid credentials"
        assert unknown_email.value.message == wrong_password.value.message
        assert unknown_email.value.status_code == wrong_password.value.status_code == 401

    async def test_login_supersedes_previous_session(self, auth, runtime, signup_payload):
        signed_up = await auth.signup(**signup_payload)
        logged_in = await auth.login(signup_payload["email"], signup_payload["password"])

        assert runtime.store.count_user_sessions(signed_up.user.id) == 1
        assert await auth.authenticate(signed_up.token) is None
        ctx = await auth.authenticate(logged_in.token)
        assert ctx.user_id == signed_up.user.id


class TestLogout:
    async def test_without_context(self, auth, http):
        result = await auth.logout(None, http=http)
        assert not result.success
        assert result.message == "No active session to logout"
        assert http.set_calls == [(SESSION_COOKIE, "", 0)]

    async def test_successful_logout(self, auth, runtime, signup_payload, http):
        signed_up = await auth.signup(**signup_payload)
        ctx = await auth.authenticate(signed_up.token)

        result = await auth.logout(ctx, http=http)

        assert result.success
        assert result.message == "Logged out successfully"
        assert runtime.store.count_user_sessions(ctx.user_id) == 0
        assert http.set_calls[-1] == (SESSION_COOKIE, "", 0)
        assert await auth.authenticate(signed_up.token) is None

    async def test_remaining_sessions_fail_logout(self, auth, http):
        class LeakySessions:
            def delete_all_for_user(self, user_id):
                return SessionPurge(deleted=1, remaining=1)

        auth.sessions = LeakySessions()
        result = await auth.logout(AuthContext(user_id="u1", session_id="s1"), http=http)

        assert not result.success
        assert result.message == "Failed to invalidate all sessions"


class TestAuthenticate:
    async def test_missing_token(self, auth):
        assert await auth.authenticate(None) is None
        assert await auth.authenticate("") is None

    async def test_forged_token(self, auth):
        assert await auth.authenticate("a.b.c") is None

    async def test_signed_token_without_session(self, auth, runtime, signup_payload):
        signed_up = await auth.signup(**signup_payload)
        orphan = runtime.credentials.issue_token(signed_up.user.id)
        assert await auth.authenticate(orphan) is None

    async def test_profile(self, auth, signup_payload):
        signed_up = await auth.signup(**signup_payload)
        ctx = await auth.authenticate(signed_up.token)
        profile = await auth.get_profile(ctx)
        assert profile.id == signed_up.user.id
        assert profile.ssn_masked == "***-**-6789"

    async def test_profile_for_missing_user(self, auth):
        with pytest.raises(AuthenticationError):
            await auth.get_profile(AuthContext(user_id="ghost", session_id="s1"))

    async def test_non_ascii_signature_is_anonymous(self, auth):
        assert await auth.authenticate("eyJhbGciOiJIUzI1NiJ9.e30.sigé") is None

    async def test_cookie_used_without_bearer(self, auth, signup_payload, http):
        signed_up = await auth.signup(**signup_payload)
        http.cookies[SESSION_COOKIE] = signed_up.token

        ctx = await auth.authenticate(None, http=http)

        assert ctx.user_id == signed_up.user.id

    async def test_bearer_wins_over_cookie(self, auth, signup_payload, http):
        signed_up = await auth.signup(**signup_payload)
        http.cookies[SESSION_COOKIE] = "stale.cookie.value"

        ctx = await auth.authenticate(signed_up.token, http=http)

        assert ctx.user_id == signed_up.user.id
