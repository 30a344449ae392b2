from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from securebank.api.error_handling import register_exception_handlers
from securebank.api.routes import router
from securebank.config import Settings, get_settings
from securebank.logging import get_logger, set_correlation_id
from securebank.service.runtime import Runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 2.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = Runtime(get_settings())
    yield
    runtime: Runtime = app.state.runtime
    try:
        runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


def _allowed_origins(settings: Settings) -> List[str]:
    if settings.cors_allow_origins:
        return settings.cors_allow_origins
    # Local dev hosts; never a wildcard since credentials are allowed.
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


async def add_correlation_id(request: Request, call_next):
    """Tag each request with ``X-Request-ID`` (client supplied or generated)."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    response.headers.setdefault(
        "Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'"
    )
    return response


async def health(request: Request):
    """Liveness plus a bounded storage probe."""
    runtime: Runtime = request.app.state.runtime
    checks: Dict[str, Dict[str, Any]] = {}

    store = runtime.store
    if hasattr(store, "_connect"):
        def _db_probe() -> None:
            with store._connect() as conn:
                conn.execute("SELECT 1").fetchone()

        try:
            await asyncio.wait_for(asyncio.to_thread(_db_probe), HEALTH_CHECK_TIMEOUT_SECONDS)
            checks["database"] = {"status": "healthy", "type": "postgres"}
        except asyncio.TimeoutError:
            logger.error("health_check_timeout", component="database")
            checks["database"] = {"status": "unhealthy", "type": "postgres"}
        except Exception as exc:
            logger.error("health_check_database_failed", error=str(exc))
            checks["database"] = {"status": "unhealthy", "type": "postgres"}
    else:
        checks["database"] = {"status": "healthy", "type": "memory"}

    healthy = all(check["status"] == "healthy" for check in checks.values())
    body = {
        "status": "ok" if healthy else "unhealthy",
        "checks": checks,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the application; without ``runtime`` one is created at startup."""
    settings = runtime.settings if runtime is not None else get_settings()
    app = FastAPI(title="SecureBank", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=3600,
    )
    app.middleware("http")(add_correlation_id)
    app.middleware("http")(add_security_headers)

    register_exception_handlers(app)
    app.include_router(router)
    app.add_api_route("/healthz", health, methods=["GET"])
    return app


app = create_app()
