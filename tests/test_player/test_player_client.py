# tests/test_player/test_player_client.py

import httpx
import pytest

from app.player.client import AccessDenied, MediaAccessClient, TransientAccessError

BASE = "https://api.studio.test/api/v1"

CAPABILITY = {
    "locator": "https://customer-x.cloudflarestream.com/tok/manifest/video.m3u8",
    "expiresAt": 1_900_000_000,
    "kind": "video",
    "revalidateInSeconds": 300,
    "resourceId": "vid-1",
    "principalBinding": "1900000000.abc.def",
}


def _client(handler, principal="user-1") -> MediaAccessClient:
    return MediaAccessClient(BASE, principal, transport=httpx.MockTransport(handler))


@pytest.mark.anyio
async def test_fetch_capability_sends_principal_and_ttl():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["ttl"] = request.url.params.get("ttl")
        seen["principal"] = request.headers.get("x-user-id")
        return httpx.Response(200, json=CAPABILITY)

    async with _client(handler) as client:
        cap = await client.fetch_capability("vid-1", ttl=1200)

    assert seen == {"path": "/api/v1/content/vid-1/media", "ttl": "1200", "principal": "user-1"}
    assert cap.expires_at == CAPABILITY["expiresAt"]
    assert cap.principal_binding == CAPABILITY["principalBinding"]


@pytest.mark.anyio
async def test_anonymous_client_sends_no_principal_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["has_header"] = "x-user-id" in request.headers
        return httpx.Response(200, json=CAPABILITY)

    async with _client(handler, principal=None) as client:
        await client.fetch_capability("vid-1")
    assert seen["has_header"] is False


@pytest.mark.anyio
@pytest.mark.parametrize("status", [401, 403, 404])
async def test_denial_statuses_raise_access_denied(status):
    body = {
        "detail": "Subscribe to access this content.",
        "reason": "no_entitlement",
        "reasonDetail": "no_subscription",
        "ownerSummary": {"id": "o1", "handle": "ava", "displayName": "Ava", "trialEnabled": True},
    }

    async with _client(lambda r: httpx.Response(status, json=body)) as client:
        with pytest.raises(AccessDenied) as ei:
            await client.fetch_capability("vid-1")

    err = ei.value
    assert err.reason == "no_subscription"
    assert err.status_code == status
    assert err.message == "Subscribe to access this content."
    assert err.owner_summary.display_name == "Ava"
    assert err.owner_summary.trial_enabled is True


@pytest.mark.anyio
async def test_malformed_owner_summary_is_dropped():
    body = {"reason": "no_entitlement", "ownerSummary": {"id": "o1"}}
    async with _client(lambda r: httpx.Response(403, json=body)) as client:
        with pytest.raises(AccessDenied) as ei:
            await client.fetch_capability("vid-1")
    assert ei.value.reason == "no_entitlement"
    assert ei.value.owner_summary is None


@pytest.mark.anyio
async def test_server_errors_are_transient_with_retry_after():
    response = httpx.Response(503, headers={"Retry-After": "10"}, json={"reason": "provider_unavailable"})
    async with _client(lambda r: response) as client:
        with pytest.raises(TransientAccessError) as ei:
            await client.fetch_capability("vid-1")
    assert ei.value.status_code == 503
    assert ei.value.retry_after == 10.0


@pytest.mark.anyio
async def test_transport_failures_are_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    async with _client(handler) as client:
        with pytest.raises(TransientAccessError):
            await client.revalidate("vid-1")


@pytest.mark.anyio
async def test_malformed_success_body_is_transient():
    async with _client(lambda r: httpx.Response(200, json={"unexpected": True})) as client:
        with pytest.raises(TransientAccessError):
            await client.fetch_capability("vid-1")


@pytest.mark.anyio
async def test_revalidate_uses_get_without_progress_and_post_with_it():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.content))
        return httpx.Response(200, json={"valid": True, "reason": "active_subscription", "nextCheckIn": 300})

    async with _client(handler) as client:
        first = await client.revalidate("vid-1")
        await client.revalidate("vid-1", playback_position=12.0, session_id="s1")

    assert first.valid is True
    assert first.next_check_in == 300
    assert calls[0] == ("GET", b"")
    assert calls[1][0] == "POST"
    assert b'"playbackPosition"' in calls[1][1]


@pytest.mark.anyio
async def test_revalidate_invalid_is_returned_not_raised():
    body = {"valid": False, "reason": "subscription_canceled"}
    async with _client(lambda r: httpx.Response(200, json=body)) as client:
        result = await client.revalidate("vid-1")
    assert result.valid is False
    assert result.reason == "subscription_canceled"


@pytest.mark.anyio
async def test_client_against_the_app(api):
    """End to end through the ASGI app with the seeded repository."""
    test_client, _ = api
    transport = httpx.ASGITransport(app=test_client.app)

    async with MediaAccessClient("http://testserver/api/v1", "user-active", transport=transport) as client:
        cap = await client.fetch_capability("vid-paid")
        check = await client.revalidate("vid-paid", playback_position=5.0)
    assert cap.kind.value == "video"
    assert check.valid is True
    assert check.acknowledged == {"playbackPosition": 5.0}

    async with MediaAccessClient("http://testserver/api/v1", "user-nobody", transport=transport) as client:
        with pytest.raises(AccessDenied) as ei:
            await client.fetch_capability("vid-paid")
    assert ei.value.reason == "no_subscription"
    assert ei.value.owner_summary.handle == "ava"
