# app/core/exceptions.py
from __future__ import annotations

"""
StudioPass — Application Exceptions
===================================
A small, consistent layer on top of FastAPI/Starlette's `HTTPException` that
lets us attach structured metadata and integrate cleanly with the problem+json
shape rendered by `app.core.exception_handlers`.

Key ideas
---------
- One base `AppException` that carries `code`, `request_id`, `user_id`, `details`, `extra`.
- Media access failures are a single `MediaAccessError` with a closed `ErrorKind`.
  Status codes and client-facing messages come from one table (`ERROR_TABLE`),
  so callers match on `kind` instead of juggling subclasses.
- Operator-facing kinds (configuration/provider) never leak their detail to
  clients; the detail goes to the server log only.

Usage
-----
    raise MediaAccessError(ErrorKind.PROVIDER_UNAVAILABLE, detail="stream token API timed out")

    # Or create a typed app error directly
    raise AppException(status_code=409, message="Already exists", code=40901, details={"field": "id"})
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException, status

__all__ = [
    "AppException",
    "ErrorKind",
    "ERROR_TABLE",
    "GENERIC_MEDIA_ERROR",
    "MediaAccessError",
    "InvalidTokenException",
]

GENERIC_MEDIA_ERROR = "Media temporarily unavailable. Please try again."


# ──────────────────────────────────────────────────────────────
# 📦 Core: AppException
# ──────────────────────────────────────────────────────────────
class AppException(HTTPException):
    """Base application-level exception with optional metadata.

    Attributes
    -----------
    status_code : int
        HTTP status code (e.g., 401/403/404/429/500/503).
    message : str
        Human-readable error message (serialized as `detail` as well).
    code : int
        Optional internal/typed error code. Defaults to `status_code`.
    request_id : str | None
        Optional request correlation id (middleware adds it to the response body).
    user_id : str | None
        Principal id for auditing/context.
    details : dict | list | str | None
        Machine-readable details (e.g., reason codes, ids).
    extra : dict | None
        Additional non-sensitive metadata to surface to clients.
    headers : dict | None
        Optional headers (e.g., `{"Retry-After": "5"}`).
    """

    def __init__(
        self,
        *,
        status_code: int,
        message: str,
        code: Optional[int] = None,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[Any] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code: int = int(code or status_code)
        self.message: str = message
        self.request_id: Optional[str] = request_id
        self.user_id: Optional[str] = user_id
        self.details: Optional[Any] = details
        self.extra: Dict[str, Any] = extra or {}

    # ── [Helper] Canonical body used by handlers ───────────────────────────
    def to_problem(self, *, fallback_request_id: Optional[str] = None) -> Dict[str, Any]:
        """Return a dict matching our problem-like JSON shape."""
        body: Dict[str, Any] = {
            "error": True,
            "message": self.message,
            "code": self.code,
            "request_id": self.request_id or fallback_request_id or "N/A",
        }
        if self.details is not None:
            body["details"] = self.details
        # Avoid leaking obvious secrets if someone passed them in `extra`.
        extra_sanitized = dict(self.extra) if self.extra else {}
        for k in ("token", "authorization", "password", "secret", "binding"):
            extra_sanitized.pop(k, None)
        body.update(extra_sanitized)
        return body


# ──────────────────────────────────────────────────────────────
# 🎬 Media access errors (closed set of kinds)
# ──────────────────────────────────────────────────────────────
class ErrorKind(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    NO_ENTITLEMENT = "no_entitlement"
    RESOURCE_UNAVAILABLE = "resource_unavailable"
    CONFIGURATION = "configuration"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INVALID_BINDING = "invalid_binding"
    RATE_LIMITED = "rate_limited"


# kind → (HTTP status, client message, operator-only?)
ERROR_TABLE: Dict[ErrorKind, Tuple[int, str, bool]] = {
    ErrorKind.NOT_AUTHENTICATED: (
        status.HTTP_401_UNAUTHORIZED,
        "Sign in to access this content.",
        False,
    ),
    ErrorKind.NO_ENTITLEMENT: (
        status.HTTP_403_FORBIDDEN,
        "Subscribe to access this content.",
        False,
    ),
    ErrorKind.RESOURCE_UNAVAILABLE: (
        status.HTTP_404_NOT_FOUND,
        "Content not found.",
        False,
    ),
    ErrorKind.CONFIGURATION: (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        GENERIC_MEDIA_ERROR,
        True,
    ),
    ErrorKind.PROVIDER_UNAVAILABLE: (
        status.HTTP_503_SERVICE_UNAVAILABLE,
        GENERIC_MEDIA_ERROR,
        True,
    ),
    ErrorKind.INVALID_BINDING: (
        status.HTTP_403_FORBIDDEN,
        "Access link is invalid or has expired.",
        False,
    ),
    ErrorKind.RATE_LIMITED: (
        status.HTTP_429_TOO_MANY_REQUESTS,
        "Too many requests. Please slow down.",
        False,
    ),
}


class MediaAccessError(AppException):
    """Raised by the decision/issuance path; `kind` selects status and message.

    `detail` is the operator-facing explanation. For configuration and provider
    kinds it is kept off the response body; for business kinds it is exposed
    as `details.reason` alongside any paywall `extra`.
    """

    def __init__(
        self,
        kind: ErrorKind,
        *,
        detail: Optional[str] = None,
        message: Optional[str] = None,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        status_code, default_message, operator_only = ERROR_TABLE[kind]
        details: Dict[str, Any] = {"reason": kind.value}
        if detail and not operator_only:
            details["detail"] = detail
        super().__init__(
            status_code=status_code,
            message=message or default_message,
            request_id=request_id,
            user_id=user_id,
            details=details,
            extra=extra,
            headers=headers,
        )
        self.kind: ErrorKind = kind
        self.operator_detail: Optional[str] = detail
        self.operator_only: bool = operator_only

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.operator_detail or self.message}"

    # ── Convenience constructors used by the issuer ─────────────
    @classmethod
    def configuration(cls, detail: str) -> "MediaAccessError":
        return cls(ErrorKind.CONFIGURATION, detail=detail)

    @classmethod
    def provider_unavailable(cls, detail: str) -> "MediaAccessError":
        return cls(ErrorKind.PROVIDER_UNAVAILABLE, detail=detail)

    @classmethod
    def resource_unavailable(cls, detail: str) -> "MediaAccessError":
        return cls(ErrorKind.RESOURCE_UNAVAILABLE, detail=detail)


# ──────────────────────────────────────────────────────────────
# 🔑 Auth/Token exceptions
# ──────────────────────────────────────────────────────────────
class InvalidTokenException(AppException):
    """Raised when the internal API key is missing or wrong (401 by default)."""

    def __init__(
        self,
        *,
        detail: str = "Invalid or missing internal key",
        status_code: int = status.HTTP_401_UNAUTHORIZED,
        headers: Optional[Dict[str, str]] = None,
        request_id: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(
            status_code=status_code,
            message=detail,
            code=status_code,
            request_id=request_id,
            details=details,
            headers=headers,
        )
