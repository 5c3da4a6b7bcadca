from __future__ import annotations

"""
StudioPass • Player HTTP client
===============================

Thin async client a player uses to talk to the media access API.

Outcomes are split into exactly two failure types so the playback state
machine never confuses "the server said no" with "we could not ask":

- `AccessDenied`: an explicit decision (401/403/404 on the media endpoint,
  `valid=false` or 401 on revalidation). Playback must stop.
- `TransientAccessError`: transport errors, timeouts, 429 and 5xx.
  Playback continues on the current capability and the call is retried.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from app.core.config import settings
from app.schemas.media import MediaAccessResponse, OwnerSummary, RevalidateResponse

logger = logging.getLogger(__name__)

_DENIAL_STATUSES = {401, 403, 404}


class AccessDenied(Exception):
    """The server decided against access; carries paywall data when present."""

    def __init__(
        self,
        reason: str,
        *,
        status_code: Optional[int] = None,
        message: Optional[str] = None,
        owner_summary: Optional[OwnerSummary] = None,
    ) -> None:
        super().__init__(message or reason)
        self.reason = reason
        self.status_code = status_code
        self.message = message
        self.owner_summary = owner_summary


class TransientAccessError(Exception):
    """Could not obtain a decision; safe to retry."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


def _owner_summary(raw: Any) -> Optional[OwnerSummary]:
    if not isinstance(raw, dict):
        return None
    try:
        return OwnerSummary.model_validate(raw)
    except ValidationError:
        logger.debug("Ignoring malformed ownerSummary in response")
        return None


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class MediaAccessClient:
    """
    Client for `/content/{id}/media` and `/content/{id}/revalidate`.

    Args:
        base_url: API root including the version prefix (e.g. `https://api.example.com/api/v1`)
        principal: Value for the trusted identity header (None → anonymous)
        transport: Optional httpx transport (tests use `httpx.MockTransport`)
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        principal: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        headers: Dict[str, str] = {"Accept": "application/json"}
        if principal:
            headers[settings.PRINCIPAL_HEADER] = principal
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "MediaAccessClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientAccessError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransientAccessError(f"Request failed: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _raise_for_failure(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        body = self._json(response)
        if status in _DENIAL_STATUSES:
            raise AccessDenied(
                str(body.get("reasonDetail") or body.get("reason") or "denied"),
                status_code=status,
                message=body.get("detail") or body.get("message"),
                owner_summary=_owner_summary(body.get("ownerSummary")),
            )
        raise TransientAccessError(
            f"Media access API error: HTTP {status}",
            status_code=status,
            retry_after=_retry_after(response),
        )

    async def fetch_capability(self, resource_id: str, *, ttl: Optional[int] = None) -> MediaAccessResponse:
        """Ask for a fresh decision and, on Allow, a new capability."""
        params = {"ttl": ttl} if ttl is not None else None
        response = await self._request("GET", f"/content/{resource_id}/media", params=params)
        self._raise_for_failure(response)
        try:
            return MediaAccessResponse.model_validate(self._json(response))
        except ValidationError as e:
            raise TransientAccessError(f"Malformed media access response: {e}") from e

    async def revalidate(
        self,
        resource_id: str,
        *,
        playback_position: Optional[float] = None,
        session_id: Optional[str] = None,
    ) -> RevalidateResponse:
        """Re-check access. `valid=false` is returned, not raised; a 401 raises `AccessDenied`."""
        payload: Dict[str, Any] = {}
        if playback_position is not None:
            payload["playbackPosition"] = playback_position
        if session_id is not None:
            payload["sessionId"] = session_id
        if payload:
            response = await self._request("POST", f"/content/{resource_id}/revalidate", json=payload)
        else:
            response = await self._request("GET", f"/content/{resource_id}/revalidate")
        self._raise_for_failure(response)
        try:
            return RevalidateResponse.model_validate(self._json(response))
        except ValidationError as e:
            raise TransientAccessError(f"Malformed revalidate response: {e}") from e


__all__ = ["AccessDenied", "MediaAccessClient", "TransientAccessError"]
