# app/security_headers.py
from __future__ import annotations

"""
# StudioPass — Security Headers & CORS

Security headers and CORS utilities for a JSON API that hands out signed
media URLs.

## What you get
- **Headers**: locked-down CSP (`default-src 'none'`), HSTS (production only),
  `Referrer-Policy: no-referrer` so signed URLs never leak via `Referer`,
  X-Content-Type-Options, X-Frame-Options.
- **CORS installer**: strict allow-list from `FRONTEND_ORIGINS` (localhost
  defaults in dev); exposes the expiry and correlation headers players read.
- **Skip list**: configurable path prefixes (docs/metrics).

## Quick start
    from app.security_headers import install_security, configure_cors

    app = FastAPI()
    install_security(app)   # HTTPS redirect (opt-in) + headers middleware
    configure_cors(app)     # CORS allow-list

## Env knobs
- ENABLE_HTTPS_REDIRECT (default "false")
- SECURITY_SKIP_PATHS (CSV; default "/docs,/redoc,/openapi.json")
- ALLOW_ORIGINS_REGEX (single regex)
- HSTS_MAX_AGE (31536000), HSTS_INCLUDE_SUBDOMAINS ("true")
- REFERRER_POLICY (default "no-referrer")
"""

import os
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

from app.core.config import settings


# ─────────────────────────────────────────────────────────────
# ⚙️ Configuration
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SecurityHeadersConfig:
    """Runtime configuration for security headers (env-driven)."""

    hsts_enabled: bool = field(default_factory=lambda: settings.is_production)
    hsts_max_age: int = int(os.getenv("HSTS_MAX_AGE", "31536000"))
    hsts_include_subdomains: bool = os.getenv("HSTS_INCLUDE_SUBDOMAINS", "true").lower() == "true"
    content_security_policy: str = "default-src 'none'; frame-ancestors 'none'"
    referrer_policy: str = os.getenv("REFERRER_POLICY", "no-referrer")
    skip_paths_csv: str = os.getenv("SECURITY_SKIP_PATHS", "/docs,/redoc,/openapi.json")


_CFG = SecurityHeadersConfig()


# ─────────────────────────────────────────────────────────────
# 🧩 Middleware
# ─────────────────────────────────────────────────────────────

class SecurityHeadersMiddleware:
    """
    ASGI middleware that applies security headers idempotently on every
    response, skipping configured path prefixes (docs UI needs scripts).
    """

    def __init__(self, app: ASGIApp, cfg: SecurityHeadersConfig = _CFG) -> None:
        self.app = app
        self.cfg = cfg
        self._skip_prefixes: Tuple[str, ...] = tuple(
            p.strip() for p in (cfg.skip_paths_csv or "").split(",") if p.strip()
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        path = scope.get("path", "")
        if any(path.startswith(prefix) for prefix in self._skip_prefixes):
            return await self.app(scope, receive, send)

        async def send_wrapper(message):
            if message.get("type") == "http.response.start":
                raw_headers: List[Tuple[bytes, bytes]] = message.setdefault("headers", [])  # type: ignore[assignment]
                _apply_headers_to_raw(raw_headers, self.cfg)
            await send(message)

        await self.app(scope, receive, send_wrapper)


def _has_header(raw_headers: List[Tuple[bytes, bytes]], name: str) -> bool:
    lname = name.lower().encode("latin-1")
    return any(h[0].lower() == lname for h in raw_headers)


def _append_header(raw_headers: List[Tuple[bytes, bytes]], name: str, value: str) -> None:
    raw_headers.append((name.encode("latin-1"), value.encode("latin-1")))


def _apply_headers_to_raw(raw_headers: List[Tuple[bytes, bytes]], cfg: SecurityHeadersConfig) -> None:
    """Append security headers idempotently to the ASGI raw header list."""
    wanted = [
        ("X-Content-Type-Options", "nosniff"),
        ("X-Frame-Options", "DENY"),
        ("Referrer-Policy", cfg.referrer_policy),
        ("Content-Security-Policy", cfg.content_security_policy),
    ]
    if cfg.hsts_enabled:
        hsts = f"max-age={cfg.hsts_max_age}"
        if cfg.hsts_include_subdomains:
            hsts += "; includeSubDomains"
        wanted.append(("Strict-Transport-Security", hsts))
    for name, value in wanted:
        if not _has_header(raw_headers, name):
            _append_header(raw_headers, name, value)


# ─────────────────────────────────────────────────────────────
# 🌐 CORS installer (allow-list, not '*')
# ─────────────────────────────────────────────────────────────

def configure_cors(
    app,
    *,
    allow_credentials: bool = True,
    allow_methods: Optional[Iterable[str]] = None,
    allow_headers: Optional[Iterable[str]] = None,
) -> None:
    """Install strict CORS based on settings/env."""
    allow_methods = allow_methods or ["GET", "HEAD", "OPTIONS", "POST"]
    allow_headers = allow_headers or [
        "Authorization",
        "Content-Type",
        "X-Request-ID",
        settings.PRINCIPAL_HEADER,
    ]

    origins = settings.frontend_origins_list
    origins_regex = os.getenv("ALLOW_ORIGINS_REGEX", "").strip() or None

    if not origins and not origins_regex and not settings.is_production:
        # localhost-friendly defaults in dev
        origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=origins_regex,
        allow_credentials=allow_credentials,
        allow_methods=list(allow_methods),
        allow_headers=list(allow_headers),
        expose_headers=["Retry-After", "X-Request-ID", "X-Expires-At", "X-Next-Check-In"],
        max_age=3600,
    )


# ─────────────────────────────────────────────────────────────
# 🔐 HTTPS redirect + headers middleware
# ─────────────────────────────────────────────────────────────

def install_security(app) -> None:
    """Add HTTPS redirect (opt-in) and the security headers middleware."""
    if os.getenv("ENABLE_HTTPS_REDIRECT", "false").lower() == "true":
        app.add_middleware(HTTPSRedirectMiddleware)

    app.add_middleware(SecurityHeadersMiddleware, cfg=_CFG)


__all__ = [
    "SecurityHeadersConfig",
    "SecurityHeadersMiddleware",
    "install_security",
    "configure_cors",
]
