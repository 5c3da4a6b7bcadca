# app/services/audit_log_service.py
from __future__ import annotations

"""
StudioPass — Media Access Audit Sink
====================================

Purpose
-------
Emit one structured record for every capability issuance, denial,
revalidation and binding check, for compliance and debugging.

Design notes
------------
- The primary writer is loguru: records are bound with `audit=True`, so
  `LOG_JSON=1` yields JSON lines and `AUDIT_LOG_FILE` gets a dedicated file.
- Extra writers (SIEM shippers, test collectors) can be attached.
- Correlates with `request.state.request_id` (see RequestID middleware).
- **Best‑effort**: a failing writer is logged and counted
  (`audit_sink_failures_total`), never raised. The sink has no feedback
  into the decision path.

Usage
-----
    audit_sink.record(
        build_event(
            AuditAction.URL_GENERATED,
            principal=principal,
            resource=resource,
            request=request,
            expires_at=cap.expires_at,
        )
    )
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import Request
from loguru import logger as _loguru

from app.api.http_utils import get_client_ip
from app.core.metrics import inc_audit_failure
from app.schemas.audit import MediaAccessEvent
from app.schemas.enums import AuditAction
from app.schemas.media import ResourceMeta

logger = logging.getLogger(__name__)

AuditWriter = Callable[[Dict[str, Any]], None]

# ─────────────────────────────────────────────────────────────
# 🔎 Helpers: meta scrubbing
# ─────────────────────────────────────────────────────────────
_SENSITIVE_KEYS = {
    "authorization",
    "token",
    "binding",
    "principal_binding",
    "signed_locator",
    "locator",
    "secret",
    "cookie",
}


def _scrub(obj: Any) -> Any:
    """Recursively drop credential-like keys from dicts/lists."""
    if isinstance(obj, dict):
        return {k: _scrub(v) for k, v in obj.items() if str(k).lower() not in _SENSITIVE_KEYS}
    if isinstance(obj, list):
        return [_scrub(v) for v in obj]
    return obj


def build_event(
    action: AuditAction,
    *,
    principal: str,
    resource_id: Optional[str] = None,
    resource: Optional[ResourceMeta] = None,
    request: Optional[Request] = None,
    decision: Optional[str] = None,
    reason: Optional[str] = None,
    expires_at: Optional[int] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> MediaAccessEvent:
    """Assemble an event, pulling request id and client IP off the request."""
    return MediaAccessEvent(
        action=action,
        principal=principal,
        resource_id=resource.id if resource is not None else (resource_id or ""),
        owner_id=resource.owner_id if resource is not None else None,
        media_type=resource.media_kind if resource is not None else None,
        decision=decision,
        reason=reason,
        expires_at=expires_at,
        request_id=getattr(request.state, "request_id", None) if request is not None else None,
        client_ip=get_client_ip(request) if request is not None else None,
        meta=_scrub(meta) if meta else None,
    )


# ─────────────────────────────────────────────────────────────
# 🧠 Sink (best‑effort, never raises)
# ─────────────────────────────────────────────────────────────
def _loguru_writer(payload: Dict[str, Any]) -> None:
    _loguru.bind(audit=True, service="media-access", **payload).info(
        "media_access action={} principal={} resource={}",
        payload.get("action"), payload.get("principal"), payload.get("resource_id"),
    )


class AuditSink:
    """Fan an event out to every writer; failures are swallowed and counted."""

    def __init__(self, writers: Optional[List[AuditWriter]] = None) -> None:
        self._writers: List[AuditWriter] = list(writers) if writers is not None else [_loguru_writer]

    def add_writer(self, writer: AuditWriter) -> None:
        self._writers.append(writer)

    def remove_writer(self, writer: AuditWriter) -> None:
        if writer in self._writers:
            self._writers.remove(writer)

    def record(self, event: MediaAccessEvent) -> None:
        try:
            payload = event.model_dump(mode="json", exclude_none=True)
        except Exception as e:  # pragma: no cover
            inc_audit_failure("serialize")
            logger.warning("[AUDIT] Could not serialize audit event: %s", e)
            return
        for writer in list(self._writers):
            try:
                writer(payload)
            except Exception as e:
                inc_audit_failure(getattr(writer, "__name__", type(writer).__name__))
                logger.warning("[AUDIT] Audit writer failed (ignored): %s", e)


audit_sink = AuditSink()


def get_audit_sink() -> AuditSink:
    """FastAPI dependency; override in tests to capture events."""
    return audit_sink


__all__ = ["AuditSink", "AuditWriter", "audit_sink", "build_event", "get_audit_sink"]
