from __future__ import annotations

"""
StudioPass · HTTP Utilities
===========================

Shared helpers for API routers:

- Resource id sanitization
- Client IP resolution (proxy-aware, opt-in)
- Internal API key enforcement (edge → binding verification)
- No-store JSON helper

All helpers are side-effect free; dependency functions return `None` on
success or raise on failure.
"""

import hmac
import ipaddress
import os
import re
from typing import Any, Mapping, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import InvalidTokenException

__all__ = [
    "sanitize_resource_id",
    "get_client_ip",
    "enforce_internal_api_key",
    "json_no_store",
]


# ─────────────────────────────────────────────────────────────────────────────
# 🧩 ID Sanitization
# ─────────────────────────────────────────────────────────────────────────────

_SANITIZE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def sanitize_resource_id(resource_id: str) -> str:
    """Validate a content identifier (slug or UUID-like, ≤128 chars).

    Raises
    ------
    HTTPException
        400 when the format is invalid.
    """
    if _SANITIZE_ID_RE.match(resource_id):
        return resource_id
    raise HTTPException(status_code=400, detail="Invalid resource_id format")


# ─────────────────────────────────────────────────────────────────────────────
# 🌐 Client IP Resolution (proxy/CDN aware, opt-in)
# ─────────────────────────────────────────────────────────────────────────────

def _parse_ip(value: Optional[str]) -> Optional[str]:
    """Parse an IP (v4/v6) possibly containing zone IDs or ports; None if invalid."""
    if not value:
        return None
    value = value.split("%", 1)[0].strip()
    if value.startswith("["):
        host = value.split("]", 1)[0].lstrip("[")
    else:
        host = value.split(":")[0] if value.count(":") == 1 else value
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return None
    return host


def get_client_ip(request: Request) -> str:
    """Best-guess client IP for audit records.

    By default the socket peer is used. With ``TRUST_FORWARD_HEADERS=1`` the
    CDN headers are consulted in order: ``CF-Connecting-IP``, ``True-Client-IP``,
    ``X-Real-Ip``, then the first hop of ``X-Forwarded-For``.
    """
    peer = request.client.host if request.client and request.client.host else None
    peer_ip = _parse_ip(peer)

    if os.environ.get("TRUST_FORWARD_HEADERS") not in {"1", "true", "True"}:
        return peer_ip or "unknown"

    headers = {k.lower(): v for k, v in request.headers.items()}
    for hdr in ("cf-connecting-ip", "true-client-ip", "x-real-ip"):
        ip = _parse_ip(headers.get(hdr))
        if ip:
            return ip

    xff = headers.get("x-forwarded-for")
    if xff:
        ip = _parse_ip(xff.split(",")[0].strip())
        if ip:
            return ip

    return peer_ip or "unknown"


# ─────────────────────────────────────────────────────────────────────────────
# 🔐 Internal API key
# ─────────────────────────────────────────────────────────────────────────────

def _compare_ct(a: str, b: str) -> bool:
    """Constant-time string comparison to resist timing attacks."""
    return hmac.compare_digest(str(a), str(b))


def enforce_internal_api_key(request: Request) -> None:
    """Require ``X-Internal-Key`` to match ``INTERNAL_API_KEY``.

    Unlike public endpoints this check is never a no-op: with no key
    configured every call is refused (401).
    """
    expected = settings.INTERNAL_API_KEY.get_secret_value() if settings.INTERNAL_API_KEY else ""
    provided = request.headers.get("x-internal-key") or ""
    if not expected or not provided or not _compare_ct(provided, expected):
        raise InvalidTokenException()


# ─────────────────────────────────────────────────────────────────────────────
# 🧊 No-store JSON
# ─────────────────────────────────────────────────────────────────────────────

def json_no_store(
    payload: Any,
    status_code: int = 200,
    *,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    """
    Return a JSON response with strict `no-store` caching.

    Pydantic models are dumped by alias (None fields dropped). Extra
    `headers` (e.g. `X-Expires-At`) are copied onto the response.
    """
    def _to_plain(obj: Any) -> Any:
        if hasattr(obj, "model_dump"):
            return obj.model_dump(mode="json", by_alias=True, exclude_none=True)
        if isinstance(obj, (list, tuple)):
            return [_to_plain(x) for x in obj]
        if isinstance(obj, dict):
            return {k: _to_plain(v) for k, v in obj.items()}
        return obj

    resp = JSONResponse(content=_to_plain(payload), status_code=status_code)
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"

    for key, value in (headers or {}).items():
        resp.headers[key] = value
    return resp
