from __future__ import annotations

"""
Central enum definitions used across StudioPass.

Design notes
------------
• All enums subclass `str, PyEnum` for JSON-friendly serialization.
• VALUE STRINGS are **stable** once deployed (clients and audit records depend on them).
• Grouped by domain for clarity; keep `__all__` in sync when adding new enums.
"""

from enum import Enum as PyEnum
from typing import Optional


# ──────────────────────────────────────────────────────────────
# Content
# ──────────────────────────────────────────────────────────────
class AccessClass(str, PyEnum):
    """Whether a content item sits behind the paywall."""
    FREE = "free"
    PAID = "paid"


class MediaKind(str, PyEnum):
    """Media family; selects the credential type at issuance."""
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    TEXT = "text"  # no media object; never issued


class ResourceStatus(str, PyEnum):
    PUBLISHED = "published"
    DRAFT = "draft"
    ARCHIVED = "archived"
    REMOVED = "removed"


# ──────────────────────────────────────────────────────────────
# Subscriptions
# ──────────────────────────────────────────────────────────────
class SubscriptionStatus(str, PyEnum):
    """Billing-side states as reported by the data layer (read-only here)."""
    ACTIVE = "active"
    TRIALING = "trialing"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    INCOMPLETE = "incomplete"
    UNPAID = "unpaid"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["SubscriptionStatus"]:
        """Lenient parse; unknown strings map to None rather than raising."""
        if not value:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class PriceTier(str, PyEnum):
    """Creator subscription price tiers (cents encoded in the name)."""
    TIER_FREE = "TIER_FREE"
    TIER_500 = "TIER_500"
    TIER_1000 = "TIER_1000"
    TIER_1500 = "TIER_1500"
    TIER_2000 = "TIER_2000"
    TIER_2500 = "TIER_2500"
    TIER_3000 = "TIER_3000"
    TIER_4000 = "TIER_4000"
    TIER_5000 = "TIER_5000"
    TIER_7500 = "TIER_7500"
    TIER_9900 = "TIER_9900"

    @property
    def cents(self) -> int:
        return 0 if self is PriceTier.TIER_FREE else int(self.value.split("_", 1)[1])

    @property
    def display(self) -> str:
        cents = self.cents
        if cents == 0:
            return "Free"
        dollars, rem = divmod(cents, 100)
        return f"${dollars}" if rem == 0 else f"${dollars}.{rem:02d}"


# ──────────────────────────────────────────────────────────────
# Decisions
# ──────────────────────────────────────────────────────────────
class AccessGrant(str, PyEnum):
    """Why an Allow was given."""
    FREE_CONTENT = "free_content"
    OWNER = "owner"
    ACTIVE_SUBSCRIPTION = "active_subscription"
    TRIALING = "trialing"


class DenyReason(str, PyEnum):
    """Coarse denial reasons (mapped to HTTP status by the router)."""
    NOT_AUTHENTICATED = "not_authenticated"
    NO_ENTITLEMENT = "no_entitlement"
    RESOURCE_UNAVAILABLE = "resource_unavailable"


class DenyDetail(str, PyEnum):
    """Fine-grained, user-actionable denial codes."""
    NOT_AUTHENTICATED = "not_authenticated"
    NO_SUBSCRIPTION = "no_subscription"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    SUBSCRIPTION_PAST_DUE = "subscription_past_due"
    CONTENT_NOT_FOUND = "content_not_found"
    UNPUBLISHED = "unpublished"
    OWNER_INACTIVE = "owner_inactive"
    MISSING_MEDIA = "missing_media"


# ──────────────────────────────────────────────────────────────
# Audit
# ──────────────────────────────────────────────────────────────
class AuditAction(str, PyEnum):
    URL_GENERATED = "url_generated"
    TOKEN_GENERATED = "token_generated"
    ACCESS_DENIED = "access_denied"
    ACCESS_REVALIDATED = "access_revalidated"
    BINDING_REJECTED = "binding_rejected"
    ISSUANCE_FAILED = "issuance_failed"


# ──────────────────────────────────────────────────────────────
# Player
# ──────────────────────────────────────────────────────────────
class PlaybackState(str, PyEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    PLAYING = "playing"
    PAUSED = "paused"
    DENIED = "denied"
    EXPIRED = "expired"
    STOPPED = "stopped"
    ERROR = "error"


__all__ = [
    "AccessClass",
    "MediaKind",
    "ResourceStatus",
    "SubscriptionStatus",
    "PriceTier",
    "AccessGrant",
    "DenyReason",
    "DenyDetail",
    "AuditAction",
    "PlaybackState",
]
