from __future__ import annotations

import json
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, Optional

from securebank.logging import get_logger
from securebank.storage.errors import ConstraintViolation
from securebank.storage.models import NewUser, Session, User


class MemoryStore:
    """In-process store for tests and local development.

    With ``fs_root`` set, every write is mirrored to
    ``<fs_root>/state/memory_store.json`` and reloaded on startup.
    """

    def __init__(self, fs_root: Optional[str] = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.sessions: Dict[str, Session] = {}
        # RLock so helpers can re-acquire while a public method holds the lock
        self._data_lock = threading.RLock()
        self._schema_ready = False
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def ensure_schema(self) -> None:
        with self._data_lock:
            if self._schema_ready:
                return
            self._schema_ready = True
            self.logger.info("memory_store_ready", users=len(self.users))

    def close(self) -> None:
        return None

    # users
    def create_user(self, record: NewUser) -> str:
        with self._data_lock:
            if any(existing.email == record.email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", field="email")
            user_id = str(uuid.uuid4())
            with self._mutation():
                self.users[user_id] = User.from_new(user_id, record)
            return user_id

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    # sessions
    def replace_user_sessions(self, session: Session) -> int:
        """Drop every session of ``session.user_id`` and insert ``session``."""
        with self._data_lock:
            if session.user_id not in self.users:
                raise ConstraintViolation("user does not exist", field="user_id")
            if any(s.token == session.token for s in self.sessions.values()):
                raise ConstraintViolation("session token already exists", field="token")
            stale = [sid for sid, s in self.sessions.items() if s.user_id == session.user_id]
            with self._mutation():
                for sid in stale:
                    del self.sessions[sid]
                self.sessions[session.id] = session
            return len(stale)

    def delete_user_sessions(self, user_id: str) -> int:
        with self._data_lock:
            stale = [sid for sid, s in self.sessions.items() if s.user_id == user_id]
            if stale:
                with self._mutation():
                    for sid in stale:
                        del self.sessions[sid]
            return len(stale)

    def count_user_sessions(self, user_id: str) -> int:
        with self._data_lock:
            return sum(1 for s in self.sessions.values() if s.user_id == user_id)

    def get_session_by_token(self, token: str) -> Optional[Session]:
        with self._data_lock:
            return next((s for s in self.sessions.values() if s.token == token), None)

    def delete_session(self, session_id: str) -> None:
        with self._data_lock:
            if session_id in self.sessions:
                with self._mutation():
                    del self.sessions[session_id]

    # persistence
    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """Apply a change and persist it; the change is undone if the write fails."""
        users, sessions = dict(self.users), dict(self.sessions)
        try:
            yield
            self._persist_state()
        except Exception:
            self.users, self.sessions = users, sessions
            raise

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "sessions": [self._serialize_session(s) for s in self.sessions.values()],
        }
        path = self._state_path()
        tmp_path: Optional[str] = None
        try:
            # Temp file then rename so a crash never leaves a truncated file
            fd, tmp_path = tempfile.mkstemp(
                dir=str(path.parent), prefix=".memory_store_", suffix=".tmp"
            )
            with os.fdopen(fd, "w") as handle:
                json.dump(state, handle, indent=2)
            os.replace(tmp_path, path)
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            self.logger.error("memory_store_persist_failed", error=str(exc), path=str(path))
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.sessions = {
            s["id"]: self._deserialize_session(s) for s in data.get("sessions", [])
        }
        return True

    @staticmethod
    def _serialize_user(user: User) -> dict:
        data = asdict(user)
        data["created_at"] = user.created_at.isoformat()
        return data

    @staticmethod
    def _deserialize_user(data: dict) -> User:
        return User(**{**data, "created_at": datetime.fromisoformat(data["created_at"])})

    @staticmethod
    def _serialize_session(session: Session) -> dict:
        return {
            "id": session.id,
            "user_id": session.user_id,
            "token": session.token,
            "created_at": session.created_at.isoformat(),
            "expires_at": session.expires_at.isoformat(),
        }

    @staticmethod
    def _deserialize_session(data: dict) -> Session:
        return Session(
            id=data["id"],
            user_id=data["user_id"],
            token=data["token"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )
