from __future__ import annotations

"""
Signing utilities for principal-bound media capabilities.

- TTL clamping into the configured floor/ceiling (clamped, never rejected).
- HMAC-SHA256 binding tokens tying principal, resource and expiry together.
- Constant-time verification.
- Watermark display ids for signed video tokens.

Token format
------------
    "<expires_at>.<nonce>.<hex hmac-sha256(secret, principal|resource_id|expires_at|nonce)>"

The nonce makes two issuances for the same decision distinct; the secret never
leaves the process. Parsing accepts only the canonical encoding (ASCII digits
without leading zeros, lowercase hex), so a verified token has exactly one
string form.
"""

import hashlib
import hmac
import logging
import os
import re
import secrets
from typing import NamedTuple, Optional

from app.core.config import settings
from app.core.exceptions import MediaAccessError

logger = logging.getLogger(__name__)

NONCE_BYTES = 8
_TOKEN_RE = re.compile(r"([1-9][0-9]{0,17})\.([0-9a-f]{%d})\.([0-9a-f]{64})" % (NONCE_BYTES * 2))
_DEV_SECRET = "dev-secret-change-me"


class BindingParts(NamedTuple):
    expires_at: int
    nonce: str
    signature: str


# ─────────────────────────────────────────────────────────────────────────────
# TTL
# ─────────────────────────────────────────────────────────────────────────────

def clamp_ttl(ttl: Optional[int]) -> int:
    """Clamp a requested lifetime into [min, max]; missing/0 → default."""
    lo = settings.MEDIA_URL_MIN_TTL_SECONDS
    hi = settings.MEDIA_URL_MAX_TTL_SECONDS
    requested = int(ttl) if ttl else settings.MEDIA_URL_DEFAULT_TTL_SECONDS
    return max(lo, min(hi, requested))


# ─────────────────────────────────────────────────────────────────────────────
# Secret
# ─────────────────────────────────────────────────────────────────────────────

def _secret() -> bytes:
    """Signing secret from settings.

    ALLOW_DEV_SIGNING=1 permits a fixed dev secret outside production.
    """
    if settings.MEDIA_SIGNING_SECRET is not None:
        value = settings.MEDIA_SIGNING_SECRET.get_secret_value()
        if value:
            return value.encode("utf-8")
    allow_dev = os.environ.get("ALLOW_DEV_SIGNING") in {"1", "true", "True"}
    if allow_dev and not settings.is_production:
        logger.warning("MEDIA_SIGNING_SECRET missing; using dev-secret (DEV MODE)")
        return _DEV_SECRET.encode("utf-8")
    raise MediaAccessError.configuration("MEDIA_SIGNING_SECRET not configured")


def _digest(secret: bytes, *parts: object) -> str:
    msg = "|".join(str(p) for p in parts).encode("utf-8")
    return hmac.new(secret, msg, hashlib.sha256).hexdigest()


# ─────────────────────────────────────────────────────────────────────────────
# Binding tokens
# ─────────────────────────────────────────────────────────────────────────────

def new_nonce() -> str:
    return secrets.token_hex(NONCE_BYTES)


def create_binding_token(
    principal: str,
    resource_id: str,
    expires_at: int,
    nonce: Optional[str] = None,
) -> str:
    """Mint a binding token for (principal, resource_id, expires_at)."""
    nonce = nonce or new_nonce()
    sig = _digest(_secret(), principal, resource_id, int(expires_at), nonce)
    return f"{int(expires_at)}.{nonce}.{sig}"


def resource_binding(resource_id: str, expires_at: int, nonce: str) -> str:
    """Principal-independent digest tying a locator to one resource."""
    return _digest(_secret(), "resource", resource_id, int(expires_at), nonce)


def parse_binding_token(token: str) -> Optional[BindingParts]:
    m = _TOKEN_RE.fullmatch(token or "")
    if m is None:
        return None
    exp_str, nonce, sig = m.groups()
    return BindingParts(int(exp_str), nonce, sig)


def verify_binding(token: str, principal: str, resource_id: str, now: int) -> bool:
    """True only for an unexpired token minted for this principal and resource."""
    parts = parse_binding_token(token)
    if parts is None:
        return False
    if now > parts.expires_at:
        return False
    expected = _digest(_secret(), principal, resource_id, parts.expires_at, parts.nonce)
    return hmac.compare_digest(parts.signature, expected)


# ─────────────────────────────────────────────────────────────────────────────
# Watermark
# ─────────────────────────────────────────────────────────────────────────────

def watermark_display_id(principal: str) -> str:
    """First 8 hex chars of sha256(principal), upper-cased."""
    return hashlib.sha256(principal.encode("utf-8")).hexdigest()[:8].upper()


__all__ = [
    "BindingParts",
    "clamp_ttl",
    "new_nonce",
    "create_binding_token",
    "resource_binding",
    "parse_binding_token",
    "verify_binding",
    "watermark_display_id",
]
