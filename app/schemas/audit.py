# app/schemas/audit.py
from __future__ import annotations

"""
Pydantic schema for media access audit events — StudioPass
==========================================================

One record per issuance, denial, revalidation and binding check. Records are
emitted as structured log lines (see `app.services.audit_log_service`), never
persisted by this service.

Notes
-----
- No credentials are carried: neither the signed locator nor the binding token.
- `timestamp` is UTC; `expires_at` is epoch seconds like the API.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.enums import AuditAction, MediaKind


class MediaAccessEvent(BaseModel):
    """Single media access audit record.

    Fields
    ------
    action
        What happened (`url_generated`, `access_denied`, ...).
    principal
        Principal id, or `anonymous`.
    decision
        `allow` / `deny` when a decision was made.
    reason
        Grant or denial detail code.
    """

    model_config = ConfigDict(frozen=True)

    action: AuditAction
    principal: str
    resource_id: str
    owner_id: Optional[str] = None
    media_type: Optional[MediaKind] = None
    decision: Optional[str] = None
    reason: Optional[str] = None
    expires_at: Optional[int] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None
    client_ip: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None
