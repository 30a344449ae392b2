from __future__ import annotations

from datetime import timedelta
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from securebank.config import Settings, get_settings
from securebank.logging import get_logger
from securebank.service.auth import AuthService
from securebank.service.credentials import CredentialService
from securebank.service.crypto import PIICipher
from securebank.service.sessions import SessionStore
from securebank.storage.memory import MemoryStore
from securebank.storage.postgres import PostgresStore

logger = get_logger(__name__)

Store = Union[MemoryStore, PostgresStore]


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a connection URL for safe logging.

    Example: postgresql://app:secret@db:5432/bank -> postgresql://app:***@db:5432/bank
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    if parsed.username:
        netloc = f"{parsed.username}:***@{netloc}"
    else:
        netloc = f":***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


def build_store(settings: Settings) -> Store:
    if settings.use_memory_store:
        return MemoryStore(fs_root=settings.shared_fs_root)
    return PostgresStore(
        settings.database_url, max_pool_size=settings.database_pool_max_size
    )


class Runtime:
    """Holds the one store and the services wired around it."""

    def __init__(
        self, settings: Optional[Settings] = None, *, store: Optional[Store] = None
    ) -> None:
        self.settings = settings or get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            store_type=store_type,
            database_url=_mask_url_password(self.settings.database_url),
            test_mode=self.settings.test_mode,
        )
        self.store = store if store is not None else build_store(self.settings)
        try:
            self.store.ensure_schema()
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if store is None:
                self.store.close()
            raise

        self.cipher = PIICipher.from_settings(self.settings.encryption_key)
        self.credentials = CredentialService(self.settings)
        self.sessions = SessionStore(
            self.store,
            ttl=timedelta(days=self.settings.session_ttl_days),
            expiry_buffer=timedelta(seconds=self.settings.session_expiry_buffer_seconds),
        )
        self.auth = AuthService(
            self.store, self.sessions, self.credentials, self.cipher, self.settings
        )
        logger.info("runtime_initialized", store_type=type(self.store).__name__)

    def close(self) -> None:
        self.store.close()

