from __future__ import annotations

"""
Problem+JSON exception handlers (RFC 7807).

FastAPI integrates these via app/main.py.
All HTTP errors are rendered as application/problem+json with a stable schema;
`AppException` subclasses (including `MediaAccessError`) additionally carry
their `reason`, `request_id` and any paywall extras. Every error response is
`Cache-Control: no-store`.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import AppException, ErrorKind, MediaAccessError
from app.core.metrics import inc_limiter_block

logger = logging.getLogger(__name__)

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache", "Expires": "0"}

# Kinds a client may retry, with the suggested delay in seconds
_RETRY_AFTER: Dict[ErrorKind, int] = {
    ErrorKind.PROVIDER_UNAVAILABLE: 10,
    ErrorKind.RATE_LIMITED: 60,
}


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _problem(
    title: str,
    detail: str,
    status_code: int,
    request: Request,
    *,
    extra: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "type": "about:blank",
        "title": title,
        "detail": detail,
        "status": status_code,
        "instance": str(request.url),
    }
    if extra:
        content.update(extra)
    merged = dict(_NO_STORE)
    if headers:
        merged.update(headers)
    return JSONResponse(
        status_code=status_code,
        content=content,
        media_type="application/problem+json",
        headers=merged,
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:  # type: ignore
    if isinstance(exc, MediaAccessError) and exc.operator_only:
        logger.error(
            "Media access failure kind=%s path=%s detail=%s",
            exc.kind.value, request.url.path, exc.operator_detail,
        )
    body = exc.to_problem(fallback_request_id=_request_id(request))
    extra: Dict[str, Any] = {k: v for k, v in body.items() if k != "error"}
    details = body.get("details")
    if isinstance(details, dict) and "reason" in details:
        extra["reason"] = details["reason"]
        if "detail" in details:
            extra["reasonDetail"] = details["detail"]
    headers = dict(exc.headers or {})
    if isinstance(exc, MediaAccessError) and exc.kind in _RETRY_AFTER:
        retry_after = _RETRY_AFTER[exc.kind]
        extra.update(retryable=True, retryAfter=retry_after)
        headers.setdefault("Retry-After", str(retry_after))
    title = exc.__class__.__name__.replace("Exception", "").replace("Error", "").strip() or "Error"
    return _problem(title, exc.message, exc.status_code, request, extra=extra, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:  # type: ignore
    title = exc.__class__.__name__.replace("Exception", "").strip() or "Error"
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _problem(title, detail, exc.status_code, request, headers=getattr(exc, "headers", None))


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:  # type: ignore
    inc_limiter_block()
    err = MediaAccessError(ErrorKind.RATE_LIMITED, detail=str(exc.detail))
    response = await app_exception_handler(request, err)
    # Let SlowAPI add its X-RateLimit-* / Retry-After headers when enabled
    limiter = getattr(request.app.state, "limiter", None)
    view_limit = getattr(request.state, "view_rate_limit", None)
    if limiter is not None and view_limit is not None:
        try:
            response = limiter._inject_headers(response, view_limit)  # type: ignore[attr-defined]
        except Exception:
            logger.debug("Could not inject rate-limit headers", exc_info=True)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore
    detail = "Validation error"
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "type": "about:blank",
            "title": detail,
            "detail": detail,
            "status": status.HTTP_422_UNPROCESSABLE_ENTITY,
            "instance": str(request.url),
            "errors": exc.errors(),
        },
        media_type="application/problem+json",
        headers=dict(_NO_STORE),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore
    # Hide internals; the stack trace goes to the server log only.
    logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
    return _problem("Internal Server Error", "An unexpected error occurred.", status.HTTP_500_INTERNAL_SERVER_ERROR, request)


__all__ = [
    "app_exception_handler",
    "http_exception_handler",
    "rate_limit_exceeded_handler",
    "validation_exception_handler",
    "global_exception_handler",
]
