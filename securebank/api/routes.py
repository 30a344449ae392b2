from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response

from securebank.api.http import FastAPIHttpContext
from securebank.api.schemas import (
    AuthResponse,
    Envelope,
    LoginRequest,
    LogoutResponse,
    SessionResponse,
    SignupRequest,
    UserResponse,
)
from securebank.service.auth import AuthContext, AuthResult
from securebank.service.runtime import Runtime


router = APIRouter(prefix="/v1")


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def _extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _http_context(request: Request, response: Response, runtime: Runtime) -> FastAPIHttpContext:
    return FastAPIHttpContext(request, response, secure=runtime.settings.cookie_secure)


async def get_optional_user(
    request: Request,
    response: Response,
    authorization: Optional[str] = Header(None),
    runtime: Runtime = Depends(get_runtime),
) -> Optional[AuthContext]:
    return await runtime.auth.authenticate(
        _extract_bearer(authorization), http=_http_context(request, response, runtime)
    )


async def get_user(ctx: Optional[AuthContext] = Depends(get_optional_user)) -> AuthContext:
    if not ctx:
        raise _http_error("unauthorized", "Not authenticated", status_code=401)
    return ctx


def _auth_envelope(result: AuthResult) -> Envelope:
    return Envelope(
        status="ok",
        data=AuthResponse(user=UserResponse.from_user(result.user), token=result.token),
    )


@router.post("/auth/signup", response_model=Envelope, status_code=201, tags=["auth"])
async def signup(
    body: SignupRequest,
    request: Request,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
):
    """Create a new account and start its first session.

    Raises:
        403: If signup is disabled in settings
        409: If the email is already registered
    """
    if not runtime.settings.allow_signup:
        raise _http_error("forbidden", "signup disabled", status_code=403)
    result = await runtime.auth.signup(
        **body.model_dump(), http=_http_context(request, response, runtime)
    )
    return _auth_envelope(result)


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
):
    """Authenticate with email and password; any earlier session is replaced.

    Raises:
        401: If credentials are invalid
    """
    result = await runtime.auth.login(
        body.email, body.password, http=_http_context(request, response, runtime)
    )
    return _auth_envelope(result)


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(
    request: Request,
    response: Response,
    ctx: Optional[AuthContext] = Depends(get_optional_user),
    runtime: Runtime = Depends(get_runtime),
):
    result = await runtime.auth.logout(ctx, http=_http_context(request, response, runtime))
    return Envelope(
        status="ok",
        data=LogoutResponse(success=result.success, message=result.message),
    )


@router.get("/auth/session", response_model=Envelope, tags=["auth"])
async def current_session(
    principal: AuthContext = Depends(get_user),
    runtime: Runtime = Depends(get_runtime),
):
    user = await runtime.auth.get_profile(principal)
    return Envelope(status="ok", data=SessionResponse(user=UserResponse.from_user(user)))
