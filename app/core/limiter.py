from __future__ import annotations

"""
StudioPass — HTTP Rate Limiting (SlowAPI)
=========================================

Highlights
----------
- **Principal aware** keying: per-principal when the trusted identity header
  (`settings.PRINCIPAL_HEADER`) is present, else per-client-IP.
- **Exemptions**: health/docs paths and configurable trusted IPs.
- **Test/CI friendly**:
    - `RATE_LIMIT_NAMESPACE`: prefixes keys so parallel runs don't collide.
    - `RATE_LIMIT_TEST_BYPASS`: disables limits when truthy.
- **Backends**: `RATELIMIT_STORAGE_URI` (e.g. Redis) or in-memory fallback.

Environment
-----------
RATE_LIMIT_ENABLED           default: "true"
DEFAULT_RATE_LIMIT           default: "200/minute"
RATELIMIT_STORAGE_URI        default: "" (falls back to "memory://")
RATELIMIT_STRATEGY           default: "moving-window"
RATE_LIMIT_SKIP_PATHS        default: "/healthz,/metrics,/docs,/openapi.json"
RATE_LIMIT_TRUSTED_IPS       default: "" (comma separated)
RATE_LIMIT_NAMESPACE         default: ""
RATE_LIMIT_TEST_BYPASS       default: "" (truthy to bypass in tests/CI)

Usage
-----
    from app.core.limiter import install_rate_limiter, rate_limit, rate_limit_exempt

    @router.get("/content/{resource_id}/media")
    @rate_limit(settings.MEDIA_ACCESS_RATE_LIMIT)
    async def get_media(request: Request, ...): ...
"""

import os
from typing import Callable, List, Optional, Set

from dotenv import load_dotenv
from loguru import logger
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.config import settings

# ──────────────────────────────────────────────────────────────
# ⚙️ Environment & defaults
# ──────────────────────────────────────────────────────────────
load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
DEFAULT_LIMIT = (settings.DEFAULT_RATE_LIMIT or "200/minute").strip()
STORAGE_URI = (settings.ratelimit_storage or "").strip()
STRATEGY = os.getenv("RATELIMIT_STRATEGY", "moving-window").strip()

SKIP_PATHS: List[str] = [
    p.strip()
    for p in os.getenv("RATE_LIMIT_SKIP_PATHS", "/healthz,/metrics,/docs,/openapi.json").split(",")
    if p.strip()
]

TRUSTED_IPS: Set[str] = {ip.strip() for ip in os.getenv("RATE_LIMIT_TRUSTED_IPS", "").split(",") if ip.strip()}

NAMESPACE = os.getenv("RATE_LIMIT_NAMESPACE", "").strip()


# ──────────────────────────────────────────────────────────────
# 🧠 Keying & exemptions
# ──────────────────────────────────────────────────────────────
def _client_ip(request: Request) -> str:
    """X-Forwarded-For first hop, then X-Real-IP, then the ASGI peer."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        ip = xff.split(",")[0].strip()
        if ip:
            return ip
    xri = request.headers.get("x-real-ip")
    if xri:
        return xri.strip()
    return get_remote_address(request) or "unknown"


def _with_namespace(key: str) -> str:
    return f"{NAMESPACE}:{key}" if NAMESPACE else key


def get_principal_rate_limit_key(request: Request) -> str:
    """
    Build a limiter key. Priority:
      1) principal:<id>  (trusted identity header)
      2) ip:<addr>       (anonymous callers)
    """
    principal = (request.headers.get(settings.PRINCIPAL_HEADER) or "").strip()
    if principal:
        return _with_namespace(f"principal:{principal}")
    return _with_namespace(f"ip:{_client_ip(request)}")


def _path_is_skipped(path: str) -> bool:
    return any(path == p or path.startswith(p.rstrip("/") + "/") for p in SKIP_PATHS)


def should_exempt_request(request: Optional[Request]) -> bool:
    """
    Exempt a request when limiting is off, the path is skipped, the client IP
    is trusted, or the test bypass is on. Env flags are read per request so
    tests can toggle them without re-importing this module.
    """
    if os.getenv("RATE_LIMIT_ENABLED", "true").strip().lower() != "true":
        return True
    if os.getenv("RATE_LIMIT_TEST_BYPASS", "").strip().lower() in _TRUTHY:
        return True
    if request is None:
        return False
    if _path_is_skipped(request.url.path):
        return True
    return _client_ip(request) in TRUSTED_IPS


# ──────────────────────────────────────────────────────────────
# 🧰 Limiter instance
# ──────────────────────────────────────────────────────────────
def _build_default_limits() -> List[str]:
    return [chunk.strip() for chunk in DEFAULT_LIMIT.split(",") if chunk.strip()]


def _make_limiter() -> Optional[Limiter]:
    storage_uri = STORAGE_URI or "memory://"
    try:
        limiter = Limiter(
            key_func=get_principal_rate_limit_key,
            default_limits=_build_default_limits(),
            headers_enabled=True,
            storage_uri=storage_uri,
            strategy=STRATEGY,
        )
    except Exception as e:
        logger.error(f"❌ Failed to init Limiter; limits disabled | err={e}")
        return None
    logger.info(
        "✅ RateLimiter ready | enabled={} | default={} | storage={} | ns={}",
        RATE_LIMIT_ENABLED, _build_default_limits(), storage_uri, NAMESPACE,
    )
    return limiter


limiter: Optional[Limiter] = _make_limiter()


# ──────────────────────────────────────────────────────────────
# 🎛 Decorators
# ──────────────────────────────────────────────────────────────
def _exempt_when() -> bool:
    req = None
    ctx = getattr(limiter, "_request_context", None)
    if ctx is not None:
        try:
            req = ctx.get()
        except LookupError:
            req = None
    return should_exempt_request(req)


def rate_limit(*limits: str) -> Callable:
    """
    Apply per-route limits with the shared exemptions.

    Examples
    --------
    @rate_limit("60/minute")
    @rate_limit("5/second", "100/minute")
    """
    if limiter is None:
        def _noop(fn: Callable) -> Callable:
            return fn
        return _noop

    selected = list(limits) if limits else _build_default_limits()

    def _apply(fn: Callable) -> Callable:
        for limit_value in reversed(selected):
            fn = limiter.limit(limit_value, exempt_when=_exempt_when)(fn)
        return fn
    return _apply


def rate_limit_exempt() -> Callable:
    """Explicitly exempt a route from limiting."""
    if limiter is None:
        def _noop(fn: Callable) -> Callable:
            return fn
        return _noop
    return limiter.exempt


# ──────────────────────────────────────────────────────────────
# 🔧 Installer
# ──────────────────────────────────────────────────────────────
def install_rate_limiter(app) -> None:
    """Attach SlowAPI state + middleware (skipped when RATE_LIMIT_ENABLED is false)."""
    if not limiter:
        logger.warning("RateLimiter not initialized; middleware not installed")
        return
    if not RATE_LIMIT_ENABLED:
        logger.info("RateLimiter disabled by env; middleware not installed")
        return
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    logger.info("✅ SlowAPI middleware installed")


__all__ = [
    "limiter",
    "rate_limit",
    "rate_limit_exempt",
    "install_rate_limiter",
    "get_principal_rate_limit_key",
    "should_exempt_request",
]
