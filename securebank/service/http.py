from __future__ import annotations

from typing import Optional, Protocol

SESSION_COOKIE = "session"
SESSION_COOKIE_MAX_AGE = 7 * 24 * 60 * 60


class HttpContext(Protocol):
    """Cookie access for whatever transport carried the request.

    Implementations always emit ``Path=/; HttpOnly; SameSite=Strict``.
    """

    def get_cookie(self, name: str) -> Optional[str]: ...

    def set_cookie(self, name: str, value: str, *, max_age: int) -> None: ...


def format_cookie(name: str, value: str, *, max_age: int, secure: bool = False) -> str:
    """Render a ``Set-Cookie`` header value with the fixed session attributes."""
    header = f"{name}={value}; Path=/; HttpOnly; SameSite=Strict; Max-Age={max_age}"
    if secure:
        header += "; Secure"
    return header
