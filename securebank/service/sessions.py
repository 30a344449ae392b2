from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Protocol

from securebank.logging import get_logger
from securebank.storage.models import Session, utcnow

logger = get_logger(__name__)

DEFAULT_SESSION_TTL = timedelta(days=7)
DEFAULT_EXPIRY_BUFFER = timedelta(seconds=30)


class SessionBackend(Protocol):
    def replace_user_sessions(self, session: Session) -> int: ...

    def delete_user_sessions(self, user_id: str) -> int: ...

    def count_user_sessions(self, user_id: str) -> int: ...

    def get_session_by_token(self, token: str) -> Optional[Session]: ...

    def delete_session(self, session_id: str) -> None: ...


class SessionState(str, Enum):
    VALID = "valid"
    BUFFER = "buffer"
    EXPIRED = "expired"


@dataclass(frozen=True)
class SessionValidity:
    valid: bool
    reason: SessionState


@dataclass(frozen=True)
class SessionPurge:
    deleted: int
    remaining: int

    @property
    def verified(self) -> bool:
        return self.remaining == 0


class SessionStore:
    """Session lifecycle with a one-live-session-per-user policy.

    Per user: no session -> active -> expired | superseded by a new login |
    logged out.  A new login replaces every earlier row for the user in one
    storage operation (delete, then insert).
    """

    def __init__(
        self,
        backend: SessionBackend,
        *,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        expiry_buffer: timedelta = DEFAULT_EXPIRY_BUFFER,
    ) -> None:
        self.backend = backend
        self.ttl = ttl
        self.expiry_buffer = expiry_buffer

    def create_session(
        self, user_id: str, token: str, *, now: Optional[datetime] = None
    ) -> Session:
        session = Session.new(user_id, token, self.ttl, now=now)
        superseded = self.backend.replace_user_sessions(session)
        if superseded:
            logger.info("session_superseded", user_id=user_id, superseded=superseded)
        logger.info("session_created", user_id=user_id, session_id=session.id)
        return session

    def delete_all_for_user(self, user_id: str) -> SessionPurge:
        deleted = self.backend.delete_user_sessions(user_id)
        remaining = self.backend.count_user_sessions(user_id)
        if remaining:
            logger.error(
                "session_purge_incomplete",
                user_id=user_id,
                deleted=deleted,
                remaining=remaining,
            )
        return SessionPurge(deleted=deleted, remaining=remaining)

    def is_valid(self, session: Session, now: Optional[datetime] = None) -> SessionValidity:
        remaining = session.expires_at - (now or utcnow())
        if remaining > self.expiry_buffer:
            return SessionValidity(True, SessionState.VALID)
        if remaining > timedelta(0):
            return SessionValidity(False, SessionState.BUFFER)
        return SessionValidity(False, SessionState.EXPIRED)

    def resolve(self, token: str, now: Optional[datetime] = None) -> Optional[Session]:
        """Return the live session for ``token``; stale rows are removed."""
        session = self.backend.get_session_by_token(token)
        if not session:
            return None
        validity = self.is_valid(session, now)
        if not validity.valid:
            logger.info(
                "session_rejected",
                session_id=session.id,
                user_id=session.user_id,
                reason=validity.reason.value,
            )
            self.backend.delete_session(session.id)
            return None
        return session
