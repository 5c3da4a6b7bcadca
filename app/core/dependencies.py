# app/core/dependencies.py
from __future__ import annotations

"""
Request dependencies — StudioPass
=================================

Identity is established upstream (session layer / edge). This service trusts
one header, `settings.PRINCIPAL_HEADER`, and treats its absence as the
anonymous principal. No token parsing happens here.

The collaborators used by the media routes (repository, issuer, audit sink,
clock) are exposed as plain dependency callables so tests can swap them with
`app.dependency_overrides`.
"""

import logging
import re
from functools import lru_cache

from fastapi import HTTPException, Request, status

from app.core.clock import get_clock  # noqa: F401  (re-exported for routers)
from app.core.config import settings
from app.repositories.entitlements import get_entitlement_repository  # noqa: F401
from app.schemas.media import ANONYMOUS_PRINCIPAL
from app.services.audit_log_service import get_audit_sink  # noqa: F401
from app.services.capability_service import CapabilityIssuer

logger = logging.getLogger(__name__)

__all__ = [
    "get_principal",
    "get_capability_issuer",
    "get_entitlement_repository",
    "get_audit_sink",
    "get_clock",
]

_PRINCIPAL_RE = re.compile(r"^[A-Za-z0-9_.:@-]{1,256}$")


# ──────────────────────────────────────────────────────────────
# 👤 Dependency: get_principal
# ──────────────────────────────────────────────────────────────
def get_principal(request: Request) -> str:
    """Return the caller's principal id, or `anonymous`.

    Raises
    ------
    HTTPException
        400 when the header is present but malformed.
    """
    raw = (request.headers.get(settings.PRINCIPAL_HEADER) or "").strip()
    if not raw:
        return ANONYMOUS_PRINCIPAL
    if not _PRINCIPAL_RE.match(raw) or raw == ANONYMOUS_PRINCIPAL:
        logger.warning(
            "[AUTH] Rejected malformed principal header",
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid principal header")
    return raw


# ──────────────────────────────────────────────────────────────
# 🎟️ Dependency: get_capability_issuer
# ──────────────────────────────────────────────────────────────
@lru_cache(maxsize=1)
def get_capability_issuer() -> CapabilityIssuer:
    """Process-wide issuer (stateless; holds only the clock and token signer)."""
    return CapabilityIssuer()
