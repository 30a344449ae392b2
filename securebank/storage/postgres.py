from __future__ import annotations

import threading
import uuid
from typing import Any, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from securebank.logging import get_logger
from securebank.storage.errors import ConstraintViolation
from securebank.storage.models import NewUser, Session, User

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id UUID PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        ssn_encrypted TEXT NOT NULL,
        ssn_last4 TEXT NOT NULL,
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        phone_number TEXT NOT NULL,
        date_of_birth TEXT NOT NULL,
        address TEXT NOT NULL,
        city TEXT NOT NULL,
        state TEXT NOT NULL,
        zip_code TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auth_session (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        token TEXT NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        expires_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS auth_session_user_id_idx ON auth_session (user_id)",
)

_USER_COLUMNS = (
    "email",
    "password_hash",
    "ssn_encrypted",
    "ssn_last4",
    "first_name",
    "last_name",
    "phone_number",
    "date_of_birth",
    "address",
    "city",
    "state",
    "zip_code",
)


class PostgresStore:
    """Postgres-backed user and session store sharing one connection pool."""

    def __init__(self, dsn: str, *, max_pool_size: int = 4) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=max_pool_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._schema_lock = threading.Lock()
        self._schema_ready = False

    def _connect(self):
        return self.pool.connection()

    def close(self) -> None:
        self.pool.close()

    def ensure_schema(self) -> None:
        """Create tables on first use; later calls are no-ops."""
        with self._schema_lock:
            if self._schema_ready:
                return
            with self._connect() as conn:
                for statement in SCHEMA_STATEMENTS:
                    conn.execute(statement)
            self._schema_ready = True
            self.logger.info("postgres_schema_ready")

    @staticmethod
    def _user_from_row(row: dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            created_at=row["created_at"],
            **{column: row[column] for column in _USER_COLUMNS},
        )

    @staticmethod
    def _session_from_row(row: dict[str, Any]) -> Session:
        return Session(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            token=row["token"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
        )

    # users
    def create_user(self, record: NewUser) -> str:
        user_id = str(uuid.uuid4())
        columns = ", ".join(("id",) + _USER_COLUMNS)
        placeholders = ", ".join(["%s"] * (len(_USER_COLUMNS) + 1))
        values = (user_id,) + tuple(getattr(record, column) for column in _USER_COLUMNS)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO app_user ({columns}) VALUES ({placeholders})",
                    values,
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", field="email")
        return user_id

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE id = %s", (user_id,)
            ).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s", (email,)
            ).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    # sessions
    def replace_user_sessions(self, session: Session) -> int:
        """Delete the user's sessions and insert ``session`` in one transaction."""
        try:
            with self._connect() as conn:
                with conn.transaction():
                    deleted = conn.execute(
                        "DELETE FROM auth_session WHERE user_id = %s",
                        (session.user_id,),
                    ).rowcount
                    conn.execute(
                        """
                        INSERT INTO auth_session (id, user_id, token, created_at, expires_at)
                        VALUES (%s, %s, %s, %s, %s)
                        """,
                        (
                            session.id,
                            session.user_id,
                            session.token,
                            session.created_at,
                            session.expires_at,
                        ),
                    )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("session user missing", field="user_id")
        except errors.UniqueViolation:
            raise ConstraintViolation("session token already exists", field="token")
        return max(deleted, 0)

    def delete_user_sessions(self, user_id: str) -> int:
        with self._connect() as conn:
            deleted = conn.execute(
                "DELETE FROM auth_session WHERE user_id = %s", (user_id,)
            ).rowcount
        return max(deleted, 0)

    def count_user_sessions(self, user_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS remaining FROM auth_session WHERE user_id = %s",
                (user_id,),
            ).fetchone()
        return int(row["remaining"]) if row else 0

    def get_session_by_token(self, token: str) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM auth_session WHERE token = %s", (token,)
            ).fetchone()
        if not row:
            return None
        return self._session_from_row(row)

    def delete_session(self, session_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM auth_session WHERE id = %s", (session_id,))
