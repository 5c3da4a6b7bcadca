from __future__ import annotations

"""
StudioPass • Signed video playback tokens
=========================================

Two ways to mint a playback token for a stream video uid:

1. **Local RS256** (preferred): when `STREAM_SIGNING_KEY_ID` and
   `STREAM_SIGNING_KEY_PEM` are configured, a JWT is signed in-process with
   python-jose. Header carries `kid`; claims carry `sub=<uid>`, `kid`, `exp`,
   `nbf=now-60` (clock skew), `iat`, a per-issuance `jti`, an allow-all
   `accessRules` entry and the viewer watermark.
2. **Provider API**: otherwise `POST {STREAM_API_BASE}/accounts/{id}/stream/{uid}/token`
   with the API token, bounded by `PROVIDER_TIMEOUT_SECONDS`.

Failures
--------
- Missing key/token/account → `MediaAccessError(CONFIGURATION)`.
- Timeouts, transport errors, non-2xx, `success=false`, malformed `result` → `MediaAccessError(PROVIDER_UNAVAILABLE)`.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx
from jose import jwt
from jose.exceptions import JOSEError

from app.core.config import settings
from app.core.exceptions import MediaAccessError
from app.core.metrics import observe_provider_seconds
from app.schemas.media import WatermarkClaim

logger = logging.getLogger(__name__)

NBF_SKEW_SECONDS = 60
ACCESS_RULES = [{"type": "any", "action": "allow"}]


def playback_url(token: str) -> str:
    """HLS manifest URL for a signed token on the customer playback host."""
    host = settings.stream_playback_host
    if not host:
        raise MediaAccessError.configuration("STREAM_CUSTOMER_SUBDOMAIN / CLOUDFLARE_ACCOUNT_ID not configured")
    return f"{host}/{token}/manifest/video.m3u8"


class StreamTokenSigner:
    """Mints playback tokens; `transport` is injectable for tests."""

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport

    @property
    def signs_locally(self) -> bool:
        return bool(settings.STREAM_SIGNING_KEY_ID and settings.STREAM_SIGNING_KEY_PEM)

    async def mint(
        self,
        video_uid: str,
        *,
        expires_at: int,
        now: int,
        watermark: WatermarkClaim,
        nonce: str,
    ) -> str:
        if self.signs_locally:
            return self.local_token(
                video_uid, expires_at=expires_at, now=now, watermark=watermark, nonce=nonce
            )
        return await self.api_token(video_uid, expires_at=expires_at)

    # ── Local RS256 ──────────────────────────────────────────
    def local_token(
        self,
        video_uid: str,
        *,
        expires_at: int,
        now: int,
        watermark: WatermarkClaim,
        nonce: str,
    ) -> str:
        kid = settings.STREAM_SIGNING_KEY_ID
        pem = settings.STREAM_SIGNING_KEY_PEM.get_secret_value() if settings.STREAM_SIGNING_KEY_PEM else ""
        if not kid or not pem:
            raise MediaAccessError.configuration("Stream signing key not configured")

        claims: Dict[str, Any] = {
            "sub": video_uid,
            "kid": kid,
            "exp": int(expires_at),
            "nbf": int(now) - NBF_SKEW_SECONDS,
            "iat": int(now),
            "jti": nonce,
            "accessRules": ACCESS_RULES,
            "watermark": {
                "principalDisplayId": watermark.principal_display_id,
                "resourceId": watermark.resource_id,
            },
        }
        try:
            return jwt.encode(claims, pem, algorithm="RS256", headers={"kid": kid})
        except JOSEError as e:
            raise MediaAccessError.configuration(f"Stream signing key unusable: {e}") from e

    # ── Provider API ─────────────────────────────────────────
    async def api_token(self, video_uid: str, *, expires_at: int) -> str:
        account = settings.CLOUDFLARE_ACCOUNT_ID
        api_token = settings.STREAM_API_TOKEN.get_secret_value() if settings.STREAM_API_TOKEN else ""
        if not account or not api_token:
            raise MediaAccessError.configuration("Stream API credentials not configured")

        url = f"{settings.STREAM_API_BASE.rstrip('/')}/accounts/{account}/stream/{video_uid}/token"
        body = {"exp": int(expires_at), "accessRules": ACCESS_RULES, "downloadable": False}
        headers = {"Authorization": f"Bearer {api_token}"}

        t0 = time.perf_counter()
        result = "error"
        try:
            async with httpx.AsyncClient(
                timeout=settings.PROVIDER_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                response = await client.post(url, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict):
                data = {}
            result_obj = data.get("result")
            token = result_obj.get("token") if isinstance(result_obj, dict) else None
            if not data.get("success") or not token:
                raise MediaAccessError.provider_unavailable("Stream token API returned no token")
            result = "ok"
            return str(token)
        except httpx.TimeoutException as e:
            result = "timeout"
            raise MediaAccessError.provider_unavailable(f"Stream token API timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise MediaAccessError.provider_unavailable(
                f"Stream token API error: HTTP {e.response.status_code}"
            ) from e
        except (httpx.RequestError, ValueError) as e:
            raise MediaAccessError.provider_unavailable(f"Stream token API request failed: {e}") from e
        finally:
            observe_provider_seconds("stream", result, time.perf_counter() - t0)


__all__ = ["StreamTokenSigner", "playback_url", "NBF_SKEW_SECONDS", "ACCESS_RULES"]
