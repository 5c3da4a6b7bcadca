# tests/test_issuer/test_stream_tokens.py

import json

import httpx
import pytest
from jose import jwt
from pydantic import SecretStr

from app.core.config import settings
from app.core.exceptions import ErrorKind, MediaAccessError
from app.schemas.media import WatermarkClaim
from app.services.stream_tokens import ACCESS_RULES, StreamTokenSigner, playback_url
from tests.fixtures.media import VIDEO_UID

EXP = 1_900_000_000
NOW = EXP - 1800
WM = WatermarkClaim(principal_display_id="ABCDEF12", resource_id="vid-1")
NONCE = "0123456789abcdef"


@pytest.fixture()
def stream_api(monkeypatch):
    monkeypatch.setattr(settings, "CLOUDFLARE_ACCOUNT_ID", "acct-1")
    monkeypatch.setattr(settings, "STREAM_API_TOKEN", SecretStr("api-token"))
    monkeypatch.setattr(settings, "STREAM_API_BASE", "https://api.stream.test/client/v4")
    monkeypatch.setattr(settings, "STREAM_SIGNING_KEY_ID", None)
    monkeypatch.setattr(settings, "STREAM_SIGNING_KEY_PEM", None)


def _signer(handler) -> StreamTokenSigner:
    return StreamTokenSigner(transport=httpx.MockTransport(handler))


@pytest.mark.anyio
async def test_api_token_success(stream_api):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "result": {"token": "tok-123"}})

    token = await _signer(handler).mint(VIDEO_UID, expires_at=EXP, now=NOW, watermark=WM, nonce=NONCE)

    assert token == "tok-123"
    assert seen["url"] == f"https://api.stream.test/client/v4/accounts/acct-1/stream/{VIDEO_UID}/token"
    assert seen["auth"] == "Bearer api-token"
    assert seen["body"] == {"exp": EXP, "accessRules": ACCESS_RULES, "downloadable": False}


@pytest.mark.anyio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"success": False, "errors": [{"message": "nope"}]}),
        httpx.Response(200, json={"success": True, "result": {}}),
        httpx.Response(200, json={"success": True, "result": ["tok-123"]}),
        httpx.Response(200, json={"success": True, "result": "tok-123"}),
        httpx.Response(200, json=["tok-123"]),
        httpx.Response(200, text="not json"),
        httpx.Response(500, json={"success": False}),
        httpx.Response(403, json={"success": False}),
    ],
)
async def test_api_failures_are_provider_unavailable(stream_api, response):
    with pytest.raises(MediaAccessError) as ei:
        await _signer(lambda request: response).api_token(VIDEO_UID, expires_at=EXP)
    assert ei.value.kind == ErrorKind.PROVIDER_UNAVAILABLE
    assert ei.value.status_code == 503


@pytest.mark.anyio
async def test_api_timeout_is_provider_unavailable(stream_api):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(MediaAccessError) as ei:
        await _signer(handler).api_token(VIDEO_UID, expires_at=EXP)
    assert ei.value.kind == ErrorKind.PROVIDER_UNAVAILABLE
    assert "timed out" in ei.value.operator_detail


@pytest.mark.anyio
async def test_api_connect_error_is_provider_unavailable(stream_api):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(MediaAccessError) as ei:
        await _signer(handler).api_token(VIDEO_UID, expires_at=EXP)
    assert ei.value.kind == ErrorKind.PROVIDER_UNAVAILABLE


@pytest.mark.anyio
async def test_missing_api_credentials_is_configuration(stream_api, monkeypatch):
    monkeypatch.setattr(settings, "STREAM_API_TOKEN", None)
    called = []

    def handler(request: httpx.Request) -> httpx.Response:
        called.append(request)
        return httpx.Response(200, json={"success": True, "result": {"token": "x"}})

    with pytest.raises(MediaAccessError) as ei:
        await _signer(handler).mint(VIDEO_UID, expires_at=EXP, now=NOW, watermark=WM, nonce=NONCE)
    assert ei.value.kind == ErrorKind.CONFIGURATION
    assert called == []


def test_local_signing_preferred_when_key_configured(stream_local_signing):
    assert StreamTokenSigner().signs_locally


def test_unusable_local_key_is_configuration(monkeypatch):
    monkeypatch.setattr(settings, "STREAM_SIGNING_KEY_ID", "kid")
    monkeypatch.setattr(settings, "STREAM_SIGNING_KEY_PEM", SecretStr("not a pem"))
    with pytest.raises(MediaAccessError) as ei:
        StreamTokenSigner().local_token(VIDEO_UID, expires_at=EXP, now=NOW, watermark=WM, nonce=NONCE)
    assert ei.value.kind == ErrorKind.CONFIGURATION


def test_playback_url_needs_a_host(monkeypatch):
    monkeypatch.setattr(settings, "STREAM_CUSTOMER_SUBDOMAIN", None)
    monkeypatch.setattr(settings, "CLOUDFLARE_ACCOUNT_ID", None)
    with pytest.raises(MediaAccessError):
        playback_url("tok")
    monkeypatch.setattr(settings, "CLOUDFLARE_ACCOUNT_ID", "acct")
    assert playback_url("tok") == "https://customer-acct.cloudflarestream.com/tok/manifest/video.m3u8"


def test_local_token_carries_issue_time_and_unique_id(stream_local_signing):
    signer = StreamTokenSigner()
    a = signer.local_token(VIDEO_UID, expires_at=EXP, now=NOW, watermark=WM, nonce=NONCE)
    b = signer.local_token(VIDEO_UID, expires_at=EXP, now=NOW, watermark=WM, nonce="fedcba9876543210")

    assert a != b
    claims = jwt.decode(
        a,
        stream_local_signing["public"],
        algorithms=["RS256"],
        options={"verify_exp": False, "verify_nbf": False},
    )
    assert claims["jti"] == NONCE
    assert claims["iat"] == NOW
