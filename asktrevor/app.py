from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict

from fastapi import FastAPI, Request, Response

from asktrevor.api.error_handling import register_exception_handlers
from asktrevor.api.routes import router
from asktrevor.logging import clear_request_context, get_logger, set_correlation_id
from asktrevor.service.relay import CORS_HEADERS

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 5.0

# Preflight also needs the methods used by the data endpoints
_PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Access-Control-Allow-Methods": "GET, POST, PATCH, DELETE, OPTIONS",
    "Access-Control-Max-Age": "3600",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and close its clients on shutdown."""
    from asktrevor.service.runtime import get_runtime, shutdown_runtime

    get_runtime()
    yield
    await shutdown_runtime()
    logger.info("runtime_cleanup_complete")


app = FastAPI(title="Ask Trevor API", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag logs with ``X-Request-ID`` (or a fresh id) and echo it back."""
    clear_request_context()
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_cors_headers(request: Request, call_next):
    # Every function answers preflight itself, before auth or body parsing
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=dict(_PREFLIGHT_HEADERS))
    response = await call_next(request)
    for name, value in CORS_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path == "/healthz" or request.url.path.startswith(("/documents", "/crm")):
        response.headers.setdefault("Cache-Control", "no-store")
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Liveness plus a bounded store check."""
    from asktrevor.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}

    if runtime.store_type == "postgres":

        def _db_check() -> None:
            with runtime.store._connect() as conn:
                conn.execute("SELECT 1").fetchone()

        try:
            await asyncio.wait_for(asyncio.to_thread(_db_check), HEALTH_CHECK_TIMEOUT_SECONDS)
            checks["database"] = {"status": "healthy", "type": "postgres"}
        except asyncio.TimeoutError:
            logger.error("health_check_timeout", component="database")
            checks["database"] = {"status": "unhealthy", "type": "postgres"}
        except Exception as exc:
            logger.error("health_check_database_failed", error=str(exc))
            checks["database"] = {"status": "unhealthy", "type": "postgres"}
    else:
        checks["database"] = {"status": "healthy", "type": "memory"}

    checks["gateway"] = {
        "status": "configured" if runtime.gateway.is_configured else "not_configured"
    }
    checks["transcription"] = {
        "status": "configured" if runtime.transcriber.is_configured else "not_configured"
    }

    healthy = checks["database"]["status"] == "healthy"
    return {
        "status": "healthy" if healthy else "unhealthy",
        "checks": checks,
        "version": __version__,
        "timestamp": datetime.utcnow().isoformat(),
    }


def create_app() -> FastAPI:
    return app
