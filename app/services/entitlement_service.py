from __future__ import annotations

"""
StudioPass • Entitlement Evaluator
==================================

Pure decision logic: given a principal, a resource and a freshly built
entitlement snapshot, decide whether access holds *right now*.

Order of checks
---------------
1. Resource not servable (unpublished, owner inactive, no media) → Deny.
   This runs first so free-but-removed content is never served.
2. Free content → Allow for everyone, anonymous included.
3. Anonymous principal → Deny(not_authenticated).
4. Owner → Allow (creators always see their own content).
5. Active / trialing / canceled-but-paid-through subscription → Allow.
6. Otherwise Deny(no_entitlement), with a detail derived from the
   subscription status.

A follow is surfaced in the snapshot for paywall copy only; it never
unlocks paid content.

Nothing here performs I/O, caches, or raises for business outcomes.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Mapping, Optional, Tuple

from app.core.clock import system_clock
from app.schemas.enums import (
    AccessClass,
    AccessGrant,
    DenyDetail,
    DenyReason,
    MediaKind,
    ResourceStatus,
    SubscriptionStatus,
)
from app.schemas.media import (
    ANONYMOUS_PRINCIPAL,
    Allow,
    Decision,
    Deny,
    EntitlementSnapshot,
    ResourceMeta,
)

FREE_CONTENT_EXPIRES_IN = 3600
FREE_CONTENT_NEXT_CHECK = 600
UNKNOWN_PERIOD_FALLBACK = timedelta(days=30)

_DENIAL_MESSAGES: Dict[DenyDetail, str] = {
    DenyDetail.NOT_AUTHENTICATED: "Please sign in to access this content.",
    DenyDetail.NO_SUBSCRIPTION: "Subscribe to access this content.",
    DenyDetail.SUBSCRIPTION_CANCELED: "Your subscription has ended. Subscribe again to access this content.",
    DenyDetail.SUBSCRIPTION_PAST_DUE: "There was an issue with your payment. Please update your payment method.",
    DenyDetail.CONTENT_NOT_FOUND: "This content is no longer available.",
    DenyDetail.UNPUBLISHED: "This content is no longer available.",
    DenyDetail.OWNER_INACTIVE: "This content is no longer available.",
    DenyDetail.MISSING_MEDIA: "This content is no longer available.",
}


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def is_anonymous(principal: Optional[str]) -> bool:
    return not principal or principal == ANONYMOUS_PRINCIPAL


def _unavailable_detail(resource: ResourceMeta) -> Optional[DenyDetail]:
    if resource.status != ResourceStatus.PUBLISHED:
        return DenyDetail.UNPUBLISHED
    if not resource.owner_active:
        return DenyDetail.OWNER_INACTIVE
    if resource.media_kind != MediaKind.TEXT and not (resource.media_locator or "").strip():
        return DenyDetail.MISSING_MEDIA
    return None


def subscription_grants_access(snapshot: EntitlementSnapshot, now: datetime) -> bool:
    """Active or trialing, or canceled with the paid period still running.

    When the snapshot carries a recognizable status it is re-checked against
    `now`; otherwise the data layer's boolean is taken as-is.
    """
    status = snapshot.status
    if status is None:
        return snapshot.has_active_or_trialing_subscription
    if status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
        return True
    if status == SubscriptionStatus.CANCELED:
        end = snapshot.current_period_end
        return end is not None and _aware(end) > now
    return False


def _aware(dt: datetime) -> datetime:
    # naive datetimes from the data layer are UTC
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def status_to_detail(status: Optional[SubscriptionStatus]) -> DenyDetail:
    if status == SubscriptionStatus.CANCELED:
        return DenyDetail.SUBSCRIPTION_CANCELED
    if status == SubscriptionStatus.PAST_DUE:
        return DenyDetail.SUBSCRIPTION_PAST_DUE
    return DenyDetail.NO_SUBSCRIPTION


def deny_missing() -> Deny:
    """Decision for a resource id the data layer does not know."""
    return Deny(reason=DenyReason.RESOURCE_UNAVAILABLE, detail=DenyDetail.CONTENT_NOT_FOUND)


# ─────────────────────────────────────────────────────────────────────────────
# Decision
# ─────────────────────────────────────────────────────────────────────────────

def decide(
    principal: Optional[str],
    resource: ResourceMeta,
    snapshot: EntitlementSnapshot,
    *,
    now: Optional[datetime] = None,
) -> Decision:
    """Decide access for one principal on one resource."""
    now = now or system_clock.now()

    unavailable = _unavailable_detail(resource)
    if unavailable is not None:
        return Deny(reason=DenyReason.RESOURCE_UNAVAILABLE, detail=unavailable)

    if resource.access_class == AccessClass.FREE:
        return Allow(grant=AccessGrant.FREE_CONTENT)

    if is_anonymous(principal):
        return Deny(reason=DenyReason.NOT_AUTHENTICATED, detail=DenyDetail.NOT_AUTHENTICATED)

    if snapshot.is_owner:
        return Allow(grant=AccessGrant.OWNER)

    if subscription_grants_access(snapshot, now):
        if snapshot.status == SubscriptionStatus.TRIALING:
            return Allow(grant=AccessGrant.TRIALING)
        return Allow(grant=AccessGrant.ACTIVE_SUBSCRIPTION)

    return Deny(reason=DenyReason.NO_ENTITLEMENT, detail=status_to_detail(snapshot.status))


def decide_batch(
    principal: Optional[str],
    resources: Iterable[ResourceMeta],
    snapshots: Mapping[str, EntitlementSnapshot],
    *,
    now: Optional[datetime] = None,
) -> Dict[str, bool]:
    """Access map for a feed page; `snapshots` is keyed by owner id.

    A missing snapshot is treated as "no relationship".
    """
    now = now or system_clock.now()
    empty = EntitlementSnapshot()
    return {
        r.id: decide(principal, r, snapshots.get(r.owner_id, empty), now=now).allowed
        for r in resources
    }


def revalidation_window(
    decision: Decision,
    snapshot: EntitlementSnapshot,
    now: datetime,
    interval: int,
) -> Tuple[int, int]:
    """(expires_in, next_check_in) hints for a playing client."""
    if isinstance(decision, Deny):
        return 0, 0
    if decision.grant == AccessGrant.FREE_CONTENT:
        return FREE_CONTENT_EXPIRES_IN, FREE_CONTENT_NEXT_CHECK

    end = snapshot.current_period_end
    if end is None or decision.grant == AccessGrant.OWNER:
        end = now + UNKNOWN_PERIOD_FALLBACK
    else:
        end = _aware(end)
    expires_in = max(0, int((end - now).total_seconds()))
    return expires_in, min(int(interval), expires_in)


def denial_message(detail: DenyDetail) -> str:
    return _DENIAL_MESSAGES.get(detail, "You don't have access to this content.")


__all__ = [
    "decide",
    "decide_batch",
    "deny_missing",
    "denial_message",
    "is_anonymous",
    "revalidation_window",
    "status_to_detail",
    "subscription_grants_access",
]
