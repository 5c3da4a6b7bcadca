# app/main.py
"""
# StudioPass Media Access API — Application Entrypoint (FastAPI)

ASGI application factory and lifecycle for the paywall / signed-media
control plane.

## Design Goals
- Deterministic, testable **app factory** (`create_app`) with explicit lifespan.
- Explicit **middleware order**:
  1) request id → 2) security headers / HTTPS → 3) CORS → 4) gzip →
  5) rate limits → 6) strip `Server` header.
- Centralized problem+json exception handling (`app.core.exception_handlers`).
- Startup warns loudly about missing signing configuration instead of
  failing on import; issuance then fails closed per request.

## Probes
- `/healthz` — liveness (process up).
- `/metrics` — Prometheus exposition.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable
import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.gzip import GZipMiddleware
from starlette.responses import JSONResponse, Response

# -- Logging bootstrap (Loguru + stdlib intercept) ----------------------------
# Importing sets up handlers/format; ignore the symbol with _ alias.
from app.core import logger as _logsetup  # noqa: F401

from app.api.v1.routers import router as api_v1_router
from app.core.config import settings
from app.core.exception_handlers import (
    app_exception_handler,
    global_exception_handler,
    http_exception_handler,
    rate_limit_exceeded_handler,
    validation_exception_handler,
)
from app.core.exceptions import AppException
from app.core.limiter import install_rate_limiter, rate_limit_exempt
from app.middleware.request_id import RequestIDMiddleware
from app.security_headers import configure_cors, install_security

logger = logging.getLogger("app.main")


def _config_warnings() -> list[str]:
    """Human-readable list of missing issuance settings (empty when complete)."""
    warnings: list[str] = []
    if not settings.MEDIA_SIGNING_SECRET and os.environ.get("ALLOW_DEV_SIGNING") not in {"1", "true", "True"}:
        warnings.append("MEDIA_SIGNING_SECRET is not set; every issuance will fail")
    if not (settings.STREAM_SIGNING_KEY_ID and settings.STREAM_SIGNING_KEY_PEM) and not settings.STREAM_API_TOKEN:
        warnings.append("No stream signing key or API token; video issuance will fail")
    if not settings.R2_BUCKET_NAME:
        warnings.append("R2_BUCKET_NAME is not set; audio/image issuance will fail")
    if not settings.INTERNAL_API_KEY:
        warnings.append("INTERNAL_API_KEY is not set; binding verification refuses all calls")
    return warnings


# ─────────────────────────────────────────────────────────────────────────────
# 🔄 Lifespan: startup & shutdown
# ─────────────────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifecycle manager.

    Startup:
        - Log a startup banner and any missing issuance configuration.

    Shutdown:
        - Log a shutdown banner (the service holds no connections).
    """
    logger.info("✅ StudioPass media access API starting up (env=%s)", settings.ENV)
    for warning in _config_warnings():
        logger.warning("⚠️ %s", warning)
    try:
        yield
    finally:
        logger.info("🛑 StudioPass media access API shutting down")


# ─────────────────────────────────────────────────────────────────────────────
# 🏗️ App factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app() -> FastAPI:
    """
    Build and configure the FastAPI app instance.

    Returns:
        FastAPI: fully wired application with middleware, exception handlers,
        routers, and meta endpoints.
    """
    enable_docs = settings.ENABLE_DOCS
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        docs_url="/docs" if enable_docs else None,
        redoc_url="/redoc" if enable_docs else None,
        openapi_url="/openapi.json" if enable_docs else None,
        lifespan=lifespan,
    )

    # ── Middlewares (order matters) ─────────────────────────────────────────
    app.add_middleware(RequestIDMiddleware)  # 1) Correlation ID
    install_security(app)                    # 2) Security headers (+ optional HTTPS redirect)
    configure_cors(app)                      # 3) CORS allow-list
    app.add_middleware(GZipMiddleware, minimum_size=1024)  # 4) GZip
    install_rate_limiter(app)                # 5) SlowAPI middleware

    # 6) Strip Server header at the end of the chain
    @app.middleware("http")
    async def _strip_server_header(request: Request, call_next: Callable) -> Response:
        """Remove the `Server` header to avoid leaking implementation details."""
        response: Response = await call_next(request)
        if "server" in response.headers:
            del response.headers["server"]
        return response

    # ── Exception handlers (problem+json) ──────────────────────────────────
    app.add_exception_handler(AppException, app_exception_handler)                 # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)       # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)       # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)                # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)                  # type: ignore[arg-type]

    # ── Routers (versioned API) ─────────────────────────────────────────────
    app.include_router(api_v1_router, prefix=settings.API_V1_STR, tags=["v1"])

    # ── Meta endpoints ──────────────────────────────────────────────────────
    @app.get("/healthz", tags=["meta"])
    @rate_limit_exempt()
    async def healthz(request: Request) -> dict[str, bool]:
        """Liveness probe: `{"ok": True}` when the process is responsive."""
        return {"ok": True}

    @app.get("/metrics", tags=["meta"], include_in_schema=False)
    @rate_limit_exempt()
    async def metrics(request: Request) -> Response:
        """📈 Prometheus metrics (fresh per scrape; no cache headers)."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Minimal root that points to docs (when enabled)."""
        body = {
            "name": settings.PROJECT_NAME,
            "docs": app.docs_url or "",
            "version": settings.VERSION,
        }
        return JSONResponse(body)

    return app


# ─────────────────────────────────────────────────────────────────────────────
# 🚀 Module-level ASGI app for Uvicorn/Gunicorn
# ─────────────────────────────────────────────────────────────────────────────
app = create_app()
__all__ = ["create_app", "app"]


# Local dev runner (prefer: `uvicorn app.main:app --reload`)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "1") == "1",
        workers=int(os.getenv("WORKERS", "1")),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )
