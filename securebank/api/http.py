from __future__ import annotations

from typing import Optional

from fastapi import Request, Response

from securebank.service.http import format_cookie


class FastAPIHttpContext:
    """HttpContext over a FastAPI request/response pair.

    Set-Cookie headers are written directly so the attributes come out as
    ``SameSite=Strict`` regardless of Starlette's own formatting.
    """

    def __init__(self, request: Request, response: Response, *, secure: bool = False) -> None:
        self.request = request
        self.response = response
        self.secure = secure

    def get_cookie(self, name: str) -> Optional[str]:
        return self.request.cookies.get(name)

    def set_cookie(self, name: str, value: str, *, max_age: int) -> None:
        self.response.headers.append(
            "set-cookie", format_cookie(name, value, max_age=max_age, secure=self.secure)
        )
