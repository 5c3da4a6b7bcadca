from __future__ import annotations

"""
StudioPass • Media Access Schemas
=================================

Purpose
-------
- Domain records the evaluator and issuer consume (`ResourceMeta`,
  `EntitlementSnapshot`) and produce (`Allow`/`Deny`, `Capability`).
- Outward API models for the media-access, revalidate and binding-verify
  endpoints (camelCase on the wire, snake_case in Python).

Design
------
- Domain records are frozen: a decision is made against one immutable view.
- `Capability` is never persisted; expiry forces reissuance.
- Timestamps on the wire are epoch seconds, matching `X-Expires-At`.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.schemas.enums import (
    AccessClass,
    AccessGrant,
    DenyDetail,
    DenyReason,
    MediaKind,
    PriceTier,
    ResourceStatus,
    SubscriptionStatus,
)

ANONYMOUS_PRINCIPAL = "anonymous"

_FROZEN = ConfigDict(frozen=True)
_WIRE = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# === Domain records =======================================================

class ResourceMeta(BaseModel):
    """A content item as the data layer reports it."""
    model_config = _FROZEN

    id: str
    owner_id: str
    access_class: AccessClass = AccessClass.PAID
    status: ResourceStatus = ResourceStatus.PUBLISHED
    owner_active: bool = True
    media_locator: Optional[str] = None
    media_kind: MediaKind = MediaKind.VIDEO
    title: Optional[str] = None
    duration_seconds: Optional[int] = None
    thumbnail_url: Optional[str] = None


class EntitlementSnapshot(BaseModel):
    """Principal ↔ owner relationship at one instant; built fresh per call."""
    model_config = _FROZEN

    has_active_or_trialing_subscription: bool = False
    subscription_status: Optional[str] = None
    current_period_end: Optional[datetime] = None
    is_owner: bool = False
    is_following: bool = False

    @property
    def status(self) -> Optional[SubscriptionStatus]:
        return SubscriptionStatus.parse(self.subscription_status)


class PriceDisplay(BaseModel):
    model_config = _FROZEN

    amount: str
    cents: int

    @classmethod
    def from_tier(cls, tier: Optional[str]) -> Optional["PriceDisplay"]:
        if not tier:
            return None
        try:
            t = PriceTier(tier)
        except ValueError:
            return None
        return cls(amount=t.display, cents=t.cents)


class OwnerSummary(BaseModel):
    """Creator card shown on paywalls."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    id: str
    handle: str
    display_name: str
    avatar_url: Optional[str] = None
    subscription_price: Optional[PriceDisplay] = None
    trial_enabled: bool = False


# === Decisions ============================================================

class Allow(BaseModel):
    model_config = _FROZEN

    decision: Literal["allow"] = "allow"
    grant: AccessGrant

    @property
    def allowed(self) -> bool:
        return True


class Deny(BaseModel):
    model_config = _FROZEN

    decision: Literal["deny"] = "deny"
    reason: DenyReason
    detail: DenyDetail

    @property
    def allowed(self) -> bool:
        return False


Decision = Union[Allow, Deny]


# === Capabilities =========================================================

class WatermarkClaim(BaseModel):
    """Non-reversible viewer id embedded in signed video tokens."""
    model_config = _FROZEN

    principal_display_id: str
    resource_id: str


class Capability(BaseModel):
    """Short-lived credential for one principal on one resource."""
    model_config = _FROZEN

    signed_locator: str
    principal_binding: str
    resource_binding: str
    principal: str
    resource_id: str
    kind: MediaKind
    issued_at: int
    expires_at: int
    nonce: str
    watermark: Optional[WatermarkClaim] = None

    @property
    def ttl_seconds(self) -> int:
        return self.expires_at - self.issued_at

    def is_expired(self, now_epoch: int) -> bool:
        return now_epoch > self.expires_at


# === Wire models ==========================================================

class MediaAccessResponse(BaseModel):
    model_config = _WIRE

    locator: str
    expires_at: int
    kind: MediaKind
    revalidate_in_seconds: int
    resource_id: str
    principal_binding: str
    title: Optional[str] = None
    duration: Optional[int] = None
    thumbnail_url: Optional[str] = None


class RevalidateInput(BaseModel):
    model_config = _WIRE

    playback_position: Optional[float] = Field(None, ge=0.0)
    session_id: Optional[str] = Field(None, max_length=128)


class RevalidateResponse(BaseModel):
    model_config = _WIRE

    valid: bool
    reason: str
    expires_in: int = 0
    next_check_in: int = 0
    owner_summary: Optional[OwnerSummary] = None
    acknowledged: Optional[Dict[str, Any]] = None


class BindingVerifyInput(BaseModel):
    model_config = _WIRE

    token: str = Field(..., min_length=1, max_length=512)
    principal: str = Field(..., min_length=1, max_length=256)
    resource_id: str = Field(..., min_length=1, max_length=128)


class BindingVerifyResponse(BaseModel):
    valid: bool


__all__ = [
    "ANONYMOUS_PRINCIPAL",
    "ResourceMeta",
    "EntitlementSnapshot",
    "PriceDisplay",
    "OwnerSummary",
    "Allow",
    "Deny",
    "Decision",
    "WatermarkClaim",
    "Capability",
    "MediaAccessResponse",
    "RevalidateInput",
    "RevalidateResponse",
    "BindingVerifyInput",
    "BindingVerifyResponse",
]
