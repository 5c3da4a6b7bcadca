"""
StudioPass • Media Access (signed playback & downloads)
=======================================================

Routes that turn an entitlement decision into a short-lived, principal-bound
media credential, and let a playing client re-check access.

Route Index
-----------
- GET  /content/{resource_id}/media        → Decide, then issue a capability
- GET  /content/{resource_id}/revalidate   → Fresh decision for a playing client
- POST /content/{resource_id}/revalidate   → Same, echoing playback position / session id
- POST /media/binding/verify               → Internal: verify a principal binding token

Security & Rate Limits
----------------------
- Principal comes from the trusted identity header (absent → anonymous).
- Per-principal SlowAPI limits (`MEDIA_ACCESS_RATE_LIMIT`, `REVALIDATE_RATE_LIMIT`).
- Binding verification requires `X-Internal-Key`.
- All responses are **no-store**; signed locators never reach logs or audit records.

Outcomes
--------
- Allow → 200 with `locator`, `expiresAt`, `revalidateInSeconds` and header `X-Expires-At`.
- Deny  → 401 / 403 (paywall with `ownerSummary`) / 404, rendered as problem+json.
- Provider or config failure → 503 / 500 with a generic message.
"""

# ── [Imports] ─────────────────────────────────────────────────────────────────────────────
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request

from app.api.http_utils import enforce_internal_api_key, json_no_store, sanitize_resource_id
from app.core.clock import Clock, epoch_seconds
from app.core.config import settings
from app.core.dependencies import (
    get_audit_sink,
    get_capability_issuer,
    get_clock,
    get_entitlement_repository,
    get_principal,
)
from app.core.exceptions import ErrorKind, MediaAccessError
from app.core.limiter import rate_limit
from app.core.metrics import inc_access_denied, inc_binding_verified, inc_issuance_failure
from app.repositories.entitlements import EntitlementRepositoryProtocol
from app.schemas.enums import AuditAction, DenyReason, MediaKind
from app.schemas.media import (
    BindingVerifyInput,
    BindingVerifyResponse,
    Decision,
    Deny,
    EntitlementSnapshot,
    MediaAccessResponse,
    ResourceMeta,
    RevalidateInput,
    RevalidateResponse,
)
from app.services.audit_log_service import AuditSink, build_event
from app.services.capability_service import CapabilityIssuer, revalidate_in_seconds
from app.services.entitlement_service import (
    decide,
    denial_message,
    deny_missing,
    is_anonymous,
    revalidation_window,
)
from app.services.signing import verify_binding

router = APIRouter(tags=["Media Access"])
logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# 🔧 Helpers
# ─────────────────────────────────────────────────────────────────────────────

async def _evaluate(
    repo: EntitlementRepositoryProtocol,
    principal: str,
    resource_id: str,
    clock: Clock,
) -> tuple[Optional[ResourceMeta], EntitlementSnapshot, Decision]:
    """Load metadata + a fresh snapshot and decide. Nothing here is cached."""
    resource = await repo.get_resource_meta(resource_id)
    if resource is None:
        return None, EntitlementSnapshot(), deny_missing()
    if is_anonymous(principal):
        snapshot = EntitlementSnapshot()
    else:
        snapshot = await repo.get_entitlement_snapshot(principal, resource.owner_id)
    return resource, snapshot, decide(principal, resource, snapshot, now=clock.now())


async def _owner_summary(repo: EntitlementRepositoryProtocol, resource: Optional[ResourceMeta]) -> Optional[Dict[str, Any]]:
    if resource is None:
        return None
    summary = await repo.get_owner_summary(resource.owner_id)
    if summary is None:
        return None
    return summary.model_dump(mode="json", by_alias=True, exclude_none=True)


def _audit_denied(
    sink: AuditSink,
    request: Request,
    principal: str,
    resource_id: str,
    resource: Optional[ResourceMeta],
    decision: Deny,
) -> None:
    inc_access_denied(decision.detail.value)
    sink.record(
        build_event(
            AuditAction.ACCESS_DENIED,
            principal=principal,
            resource_id=resource_id,
            resource=resource,
            request=request,
            decision="deny",
            reason=decision.detail.value,
        )
    )


# ─────────────────────────────────────────────────────────────────────────────
# 🎬 Media access
# ─────────────────────────────────────────────────────────────────────────────

@router.get(
    "/content/{resource_id}/media",
    response_model=MediaAccessResponse,
    response_model_by_alias=True,
    summary="Get a short-lived media credential",
)
@rate_limit(settings.MEDIA_ACCESS_RATE_LIMIT)
async def get_media_access(
    request: Request,
    resource_id: str,
    ttl: Optional[int] = None,
    principal: str = Depends(get_principal),
    repo: EntitlementRepositoryProtocol = Depends(get_entitlement_repository),
    issuer: CapabilityIssuer = Depends(get_capability_issuer),
    sink: AuditSink = Depends(get_audit_sink),
    clock: Clock = Depends(get_clock),
):
    """
    Decide access for the caller and, on Allow, issue a capability.

    Steps
    -----
    1) Validate the id; load metadata and a fresh entitlement snapshot
    2) Decide (pure); Deny → audited, 401/403/404 with paywall data
    3) Issue (clamped TTL); failures → audited `issuance_failed`, 5xx
    4) Audit the grant; respond no-store with `X-Expires-At`
    """
    resource_id = sanitize_resource_id(resource_id)
    resource, _snapshot, decision = await _evaluate(repo, principal, resource_id, clock)

    if isinstance(decision, Deny):
        _audit_denied(sink, request, principal, resource_id, resource, decision)
        extra: Dict[str, Any] = {}
        if decision.reason == DenyReason.NO_ENTITLEMENT:
            summary = await _owner_summary(repo, resource)
            if summary is not None:
                extra["ownerSummary"] = summary
        raise MediaAccessError(
            ErrorKind(decision.reason.value),
            detail=decision.detail.value,
            message=denial_message(decision.detail),
            user_id=principal,
            extra=extra,
        )

    try:
        cap = await issuer.issue(principal, resource, decision, ttl=ttl)
    except MediaAccessError as e:
        inc_issuance_failure(e.kind.value)
        sink.record(
            build_event(
                AuditAction.ISSUANCE_FAILED,
                principal=principal,
                resource=resource,
                request=request,
                decision="allow",
                reason=e.kind.value,
            )
        )
        raise

    sink.record(
        build_event(
            AuditAction.TOKEN_GENERATED if cap.kind == MediaKind.VIDEO else AuditAction.URL_GENERATED,
            principal=principal,
            resource=resource,
            request=request,
            decision="allow",
            reason=decision.grant.value,
            expires_at=cap.expires_at,
        )
    )

    body = MediaAccessResponse(
        locator=cap.signed_locator,
        expires_at=cap.expires_at,
        kind=cap.kind,
        revalidate_in_seconds=revalidate_in_seconds(cap.expires_at, cap.issued_at),
        resource_id=resource.id,
        principal_binding=cap.principal_binding,
        title=resource.title,
        duration=resource.duration_seconds,
        thumbnail_url=resource.thumbnail_url,
    )
    return json_no_store(body, headers={"X-Expires-At": str(cap.expires_at)})


# ─────────────────────────────────────────────────────────────────────────────
# 🔁 Revalidation
# ─────────────────────────────────────────────────────────────────────────────

async def _revalidate(
    request: Request,
    resource_id: str,
    principal: str,
    repo: EntitlementRepositoryProtocol,
    sink: AuditSink,
    clock: Clock,
    payload: Optional[RevalidateInput] = None,
):
    resource_id = sanitize_resource_id(resource_id)
    if is_anonymous(principal):
        raise MediaAccessError(ErrorKind.NOT_AUTHENTICATED, extra={"valid": False})

    now = clock.now()
    resource, snapshot, decision = await _evaluate(repo, principal, resource_id, clock)
    acknowledged = None
    if payload is not None:
        acknowledged = payload.model_dump(mode="json", by_alias=True, exclude_none=True) or None

    if isinstance(decision, Deny):
        sink.record(
            build_event(
                AuditAction.ACCESS_REVALIDATED,
                principal=principal,
                resource_id=resource_id,
                resource=resource,
                request=request,
                decision="deny",
                reason=decision.detail.value,
            )
        )
        inc_access_denied(decision.detail.value)
        summary = await repo.get_owner_summary(resource.owner_id) if resource is not None else None
        body = RevalidateResponse(
            valid=False,
            reason=decision.detail.value,
            owner_summary=summary,
            acknowledged=acknowledged,
        )
        return json_no_store(body)

    expires_in, next_check_in = revalidation_window(
        decision, snapshot, now, settings.REVALIDATE_INTERVAL_SECONDS
    )
    sink.record(
        build_event(
            AuditAction.ACCESS_REVALIDATED,
            principal=principal,
            resource=resource,
            request=request,
            decision="allow",
            reason=decision.grant.value,
            expires_at=epoch_seconds(now) + expires_in,
        )
    )
    body = RevalidateResponse(
        valid=True,
        reason=decision.grant.value,
        expires_in=expires_in,
        next_check_in=next_check_in,
        acknowledged=acknowledged,
    )
    return json_no_store(body, headers={"X-Next-Check-In": str(next_check_in)})


@router.get(
    "/content/{resource_id}/revalidate",
    response_model=RevalidateResponse,
    response_model_by_alias=True,
    summary="Re-check access for a playing client",
)
@rate_limit(settings.REVALIDATE_RATE_LIMIT)
async def revalidate_access(
    request: Request,
    resource_id: str,
    principal: str = Depends(get_principal),
    repo: EntitlementRepositoryProtocol = Depends(get_entitlement_repository),
    sink: AuditSink = Depends(get_audit_sink),
    clock: Clock = Depends(get_clock),
):
    """Fresh decision; `valid=false` is an explicit instruction to stop playback."""
    return await _revalidate(request, resource_id, principal, repo, sink, clock)


@router.post(
    "/content/{resource_id}/revalidate",
    response_model=RevalidateResponse,
    response_model_by_alias=True,
    summary="Re-check access and report playback progress",
)
@rate_limit(settings.REVALIDATE_RATE_LIMIT)
async def revalidate_access_with_progress(
    request: Request,
    resource_id: str,
    payload: Optional[RevalidateInput] = Body(None),
    principal: str = Depends(get_principal),
    repo: EntitlementRepositoryProtocol = Depends(get_entitlement_repository),
    sink: AuditSink = Depends(get_audit_sink),
    clock: Clock = Depends(get_clock),
):
    return await _revalidate(request, resource_id, principal, repo, sink, clock, payload)


# ─────────────────────────────────────────────────────────────────────────────
# 🔏 Binding verification (edge → control plane)
# ─────────────────────────────────────────────────────────────────────────────

@router.post(
    "/media/binding/verify",
    response_model=BindingVerifyResponse,
    summary="Verify a principal binding token (internal)",
)
async def verify_binding_token(
    request: Request,
    payload: BindingVerifyInput,
    _key=Depends(enforce_internal_api_key),
    sink: AuditSink = Depends(get_audit_sink),
    clock: Clock = Depends(get_clock),
):
    """
    Check that a binding token was minted for this principal and resource and
    has not expired. A mismatch is audited as a potential forgery and answered
    with 403 `invalid_binding` (`valid=false`).
    """
    ok = verify_binding(payload.token, payload.principal, payload.resource_id, epoch_seconds(clock.now()))
    inc_binding_verified("ok" if ok else "rejected")
    if not ok:
        logger.warning(
            "Rejected binding token principal=%s resource=%s",
            payload.principal, payload.resource_id,
        )
        sink.record(
            build_event(
                AuditAction.BINDING_REJECTED,
                principal=payload.principal,
                resource_id=payload.resource_id,
                request=request,
                decision="deny",
                reason=ErrorKind.INVALID_BINDING.value,
            )
        )
        raise MediaAccessError(ErrorKind.INVALID_BINDING, user_id=payload.principal, extra={"valid": False})
    return json_no_store(BindingVerifyResponse(valid=True))


__all__ = ["router"]
