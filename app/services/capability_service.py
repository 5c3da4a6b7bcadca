from __future__ import annotations

"""
StudioPass • Capability Issuer
==============================

Turns an Allow decision into a short-lived, principal-bound credential.

Flow
----
1. Refuse anything that is not an Allow (issuance never precedes a decision).
2. Clamp the TTL, compute `expires_at`, draw a nonce, mint the binding token.
3. By media kind:
   - **video** → stream uid from the locator; signed playback token
     (local RS256 or provider API); HLS manifest URL.
   - **audio / image** → object key from the locator; presigned R2 GET with
     the binding folded into the signed `ResponseContentDisposition`.
   - **text** → nothing to sign (`resource_unavailable`).

Failure modes
-------------
- Missing secret, key or provider config; unparseable locator → `configuration`.
- Provider error, timeout or presign failure → `provider_unavailable` (retryable).

The issuer is stateless; capabilities are returned to the caller and never stored.
"""

import functools
import logging
import time
from typing import Optional

import anyio.to_thread

from app.core.clock import Clock, epoch_seconds, system_clock
from app.core.config import settings
from app.core.exceptions import ErrorKind, MediaAccessError
from app.core.metrics import inc_capability_issued, observe_provider_seconds
from app.schemas.enums import MediaKind
from app.schemas.media import Allow, Capability, Decision, ResourceMeta, WatermarkClaim
from app.services.signing import (
    clamp_ttl,
    create_binding_token,
    new_nonce,
    resource_binding,
    watermark_display_id,
)
from app.services.stream_tokens import StreamTokenSigner, playback_url
from app.utils.aws import S3Client, S3StorageError
from app.utils.media_locator import extract_storage_key, extract_video_uid

logger = logging.getLogger(__name__)


def _s3() -> S3Client:
    """Return an initialized R2 client or raise a configuration error."""
    try:
        return S3Client()
    except S3StorageError as e:
        raise MediaAccessError.configuration(str(e)) from e


def revalidate_in_seconds(expires_at: int, now: int, *, interval: Optional[int] = None, buffer: Optional[int] = None) -> int:
    """Seconds until the client should next revalidate: never past the refresh point."""
    interval = settings.REVALIDATE_INTERVAL_SECONDS if interval is None else interval
    buffer = settings.REFRESH_BUFFER_SECONDS if buffer is None else buffer
    return max(0, min(int(interval), int(expires_at) - int(now) - int(buffer)))


class CapabilityIssuer:
    def __init__(
        self,
        *,
        clock: Optional[Clock] = None,
        stream_signer: Optional[StreamTokenSigner] = None,
    ) -> None:
        self.clock = clock or system_clock
        self.stream_signer = stream_signer or StreamTokenSigner()

    async def issue(
        self,
        principal: str,
        resource: ResourceMeta,
        decision: Decision,
        ttl: Optional[int] = None,
    ) -> Capability:
        if not isinstance(decision, Allow):
            raise MediaAccessError(ErrorKind(decision.reason.value), detail=decision.detail.value)
        if resource.media_kind == MediaKind.TEXT:
            raise MediaAccessError.resource_unavailable("text content has no media to sign")

        ttl_s = clamp_ttl(ttl)
        now = epoch_seconds(self.clock.now())
        expires_at = now + ttl_s
        nonce = new_nonce()
        binding = create_binding_token(principal, resource.id, expires_at, nonce)
        res_binding = resource_binding(resource.id, expires_at, nonce)

        watermark: Optional[WatermarkClaim] = None
        if resource.media_kind == MediaKind.VIDEO:
            watermark = WatermarkClaim(
                principal_display_id=watermark_display_id(principal),
                resource_id=resource.id,
            )
            locator = await self._sign_video(
                resource, expires_at=expires_at, now=now, watermark=watermark, nonce=nonce
            )
        else:
            locator = await self._sign_object(resource, ttl=ttl_s, binding=binding)

        inc_capability_issued(resource.media_kind.value, decision.grant.value)
        return Capability(
            signed_locator=locator,
            principal_binding=binding,
            resource_binding=res_binding,
            principal=principal,
            resource_id=resource.id,
            kind=resource.media_kind,
            issued_at=now,
            expires_at=expires_at,
            nonce=nonce,
            watermark=watermark,
        )

    async def _sign_video(
        self,
        resource: ResourceMeta,
        *,
        expires_at: int,
        now: int,
        watermark: WatermarkClaim,
        nonce: str,
    ) -> str:
        uid = extract_video_uid(resource.media_locator)
        if not uid:
            raise MediaAccessError.configuration(f"invalid video locator for resource {resource.id}")
        token = await self.stream_signer.mint(
            uid, expires_at=expires_at, now=now, watermark=watermark, nonce=nonce
        )
        return playback_url(token)

    async def _sign_object(self, resource: ResourceMeta, *, ttl: int, binding: str) -> str:
        key = extract_storage_key(resource.media_locator)
        if not key:
            raise MediaAccessError.configuration(f"invalid storage locator for resource {resource.id}")
        s3 = _s3()
        presign = functools.partial(
            s3.presigned_get,
            key,
            expires_in=ttl,
            response_content_disposition=f"inline; binding={binding}",
        )
        t0 = time.perf_counter()
        try:
            url = await anyio.to_thread.run_sync(presign)
        except S3StorageError as e:
            observe_provider_seconds("r2", "error", time.perf_counter() - t0)
            raise MediaAccessError.provider_unavailable(str(e)) from e
        observe_provider_seconds("r2", "ok", time.perf_counter() - t0)
        return url


__all__ = ["CapabilityIssuer", "revalidate_in_seconds"]
