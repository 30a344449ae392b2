from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol

from securebank.config import Settings
from securebank.logging import get_logger
from securebank.service.credentials import CredentialService, password_policy_error
from securebank.service.crypto import PIICipher, get_ssn_last4
from securebank.service.errors import (
    AuthenticationError,
    ConflictError,
    InternalError,
    ValidationError,
)
from securebank.service.http import SESSION_COOKIE, SESSION_COOKIE_MAX_AGE, HttpContext
from securebank.service.sessions import SessionStore
from securebank.service.validation import is_valid_ssn, normalize_email
from securebank.storage.errors import ConstraintViolation
from securebank.storage.models import NewUser, PublicUser, Session, User

logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


class AuthStore(Protocol):
    def create_user(self, record: NewUser) -> str: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...


@dataclass
class AuthContext:
    user_id: str
    session_id: str


@dataclass(frozen=True)
class AuthResult:
    user: PublicUser
    token: str
    session: Session


@dataclass(frozen=True)
class LogoutResult:
    success: bool
    message: str


class AuthService:
    """Signup, login, logout and request authentication.

    Argon2 and AES-GCM work is pushed to a worker thread so a busy login does
    not stall the event loop.
    """

    def __init__(
        self,
        store: AuthStore,
        sessions: SessionStore,
        credentials: CredentialService,
        cipher: PIICipher,
        settings: Settings,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.credentials = credentials
        self.cipher = cipher
        self.settings = settings
        self.logger = logger

    async def signup(
        self,
        *,
        email: str,
        password: str,
        ssn: str,
        first_name: str,
        last_name: str,
        phone_number: str,
        date_of_birth: str,
        address: str,
        city: str,
        state: str,
        zip_code: str,
        http: Optional[HttpContext] = None,
    ) -> AuthResult:
        email = normalize_email(email)
        policy_error = password_policy_error(password)
        if policy_error:
            raise ValidationError(policy_error, detail={"field": "password"})
        if not is_valid_ssn(ssn):
            raise ValidationError("SSN must be exactly 9 digits", detail={"field": "ssn"})
        if self.store.get_user_by_email(email):
            raise ConflictError("User already exists")

        password_hash = await asyncio.to_thread(self.credentials.hash_password, password)
        ssn_encrypted = await asyncio.to_thread(self.cipher.encrypt, ssn)
        record = NewUser(
            email=email,
            password_hash=password_hash,
            ssn_encrypted=ssn_encrypted,
            ssn_last4=get_ssn_last4(ssn),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            phone_number=phone_number.strip(),
            date_of_birth=date_of_birth,
            address=address.strip(),
            city=city.strip(),
            state=state.strip().upper(),
            zip_code=zip_code,
        )
        try:
            user_id = self.store.create_user(record)
        except ConstraintViolation as exc:
            if exc.field == "email":
                raise ConflictError("User already exists") from exc
            raise

        user = self.store.get_user(user_id)
        if not user:
            self.logger.error("signup_refetch_missing", user_id=user_id)
            raise InternalError("Failed to create user")

        result = self._start_session(user, http)
        self.logger.info("user_signed_up", user_id=user.id)
        return result

    async def login(
        self, email: str, password: str, http: Optional[HttpContext] = None
    ) -> AuthResult:
        user = self.store.get_user_by_email(normalize_email(email))
        # Unknown accounts still pay for one verification.
        verified = await asyncio.to_thread(
            self.credentials.verify_password,
            password,
            user.password_hash if user else None,
        )
        if not user or not verified:
            self.logger.info("login_failed")
            raise AuthenticationError(INVALID_CREDENTIALS)
        result = self._start_session(user, http)
        self.logger.info("user_logged_in", user_id=user.id)
        return result

    async def logout(
        self, ctx: Optional[AuthContext], http: Optional[HttpContext] = None
    ) -> LogoutResult:
        if http is not None:
            http.set_cookie(SESSION_COOKIE, "", max_age=0)
        if ctx is None:
            return LogoutResult(False, "No active session to logout")
        purge = self.sessions.delete_all_for_user(ctx.user_id)
        if not purge.verified:
            self.logger.error(
                "logout_incomplete", user_id=ctx.user_id, remaining=purge.remaining
            )
            return LogoutResult(False, "Failed to invalidate all sessions")
        self.logger.info("user_logged_out", user_id=ctx.user_id, deleted=purge.deleted)
        return LogoutResult(True, "Logged out successfully")

    async def authenticate(
        self, token: Optional[str], http: Optional[HttpContext] = None
    ) -> Optional[AuthContext]:
        """Resolve a bearer ``token``, or the session cookie when none is given."""
        if not token and http is not None:
            token = http.get_cookie(SESSION_COOKIE)
        if not token:
            return None
        payload = self.credentials.decode_token(token)
        if not payload:
            return None
        session = self.sessions.resolve(token)
        if not session or session.user_id != payload.get("sub"):
            return None
        if not self.store.get_user(session.user_id):
            self.logger.warning("session_user_missing", session_id=session.id)
            return None
        return AuthContext(user_id=session.user_id, session_id=session.id)

    async def get_profile(self, ctx: AuthContext) -> PublicUser:
        user = self.store.get_user(ctx.user_id)
        if not user:
            raise AuthenticationError("Not authenticated")
        return user.public()

    def _start_session(self, user: User, http: Optional[HttpContext]) -> AuthResult:
        token = self.credentials.issue_token(user.id)
        session = self.sessions.create_session(user.id, token)
        if http is not None:
            http.set_cookie(SESSION_COOKIE, token, max_age=SESSION_COOKIE_MAX_AGE)
        return AuthResult(user=user.public(), token=token, session=session)
