# tests/test_media/test_media_access.py

import pytest

from app.core.clock import epoch_seconds
from app.schemas.enums import DenyDetail
from app.services.entitlement_service import denial_message
from app.utils.aws import S3StorageError
from tests.fixtures.media import CREATOR_PRINCIPAL, FakeS3

BASE = "/api/v1"

AVA_SUMMARY = {
    "id": "creator-1",
    "handle": "ava",
    "displayName": "Ava Studio",
    "subscriptionPrice": {"amount": "$5", "cents": 500},
    "trialEnabled": True,
}


def _as(principal):
    return {"x-user-id": principal} if principal else {}


def _media(client, resource_id, principal=None, **params):
    return client.get(f"{BASE}/content/{resource_id}/media", headers=_as(principal), params=params)


# ─────────────────────────────────────────────────────────────
# Allow
# ─────────────────────────────────────────────────────────────

def test_subscriber_gets_video_capability(api, fixed_clock):
    client, events = api
    r = _media(client, "vid-paid", "user-active")
    assert r.status_code == 200, r.text

    body = r.json()
    now = epoch_seconds(fixed_clock.now())
    assert body["kind"] == "video"
    assert body["resourceId"] == "vid-paid"
    assert body["expiresAt"] == now + 1800
    assert body["revalidateInSeconds"] == 300
    assert body["locator"].endswith("/manifest/video.m3u8")
    assert body["principalBinding"].startswith(f"{now + 1800}.")
    assert body["title"] == "Episode 1"
    assert body["duration"] == 600
    assert body["thumbnailUrl"] == "https://img.example/ep1.jpg"

    assert r.headers["X-Expires-At"] == str(body["expiresAt"])
    assert r.headers["Cache-Control"] == "no-store"

    event = events[-1]
    assert event["action"] == "token_generated"
    assert event["principal"] == "user-active"
    assert event["resource_id"] == "vid-paid"
    assert event["decision"] == "allow"
    assert event["reason"] == "active_subscription"
    assert event["expires_at"] == body["expiresAt"]
    assert body["locator"] not in str(event)
    assert body["principalBinding"] not in str(event)


def test_requested_ttl_is_clamped(api, fixed_clock):
    client, _ = api
    now = epoch_seconds(fixed_clock.now())
    short = _media(client, "vid-paid", "user-active", ttl=5).json()
    long = _media(client, "vid-paid", "user-active", ttl=86_400).json()
    assert short["expiresAt"] - now == 900
    assert long["expiresAt"] - now == 3600


@pytest.mark.parametrize("principal", ["user-trial", "user-canceled-future", CREATOR_PRINCIPAL])
def test_other_entitled_principals_get_access(api, principal):
    client, _ = api
    assert _media(client, "vid-paid", principal).status_code == 200


@pytest.mark.parametrize("principal", [None, "user-nobody"])
def test_free_content_needs_no_subscription(api, principal):
    client, _ = api
    assert _media(client, "vid-free", principal).status_code == 200


def test_audio_gets_presigned_url_with_binding(api, fake_s3):
    client, events = api
    r = _media(client, "aud-paid", "user-active")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["kind"] == "audio"
    assert body["locator"].startswith("https://signed.example/audio/track-1.mp3")
    assert fake_s3.presign_calls[-1]["content_disposition"] == f"inline; binding={body['principalBinding']}"
    assert events[-1]["action"] == "url_generated"


# ─────────────────────────────────────────────────────────────
# Deny
# ─────────────────────────────────────────────────────────────

def test_anonymous_on_paid_content_is_401(api):
    client, events = api
    r = _media(client, "vid-paid")
    assert r.status_code == 401
    assert r.headers["content-type"].startswith("application/problem+json")
    body = r.json()
    assert body["reason"] == "not_authenticated"
    assert "ownerSummary" not in body
    assert events[-1]["action"] == "access_denied"
    assert events[-1]["principal"] == "anonymous"


def test_paywall_carries_owner_summary(api):
    client, events = api
    r = _media(client, "vid-paid", "user-nobody")
    assert r.status_code == 403
    body = r.json()
    assert body["reason"] == "no_entitlement"
    assert body["reasonDetail"] == "no_subscription"
    assert body["detail"] == denial_message(DenyDetail.NO_SUBSCRIPTION)
    assert body["ownerSummary"] == AVA_SUMMARY
    assert "locator" not in body
    assert events[-1]["reason"] == "no_subscription"


@pytest.mark.parametrize(
    "principal, detail",
    [
        ("user-canceled-past", "subscription_canceled"),
        ("user-pastdue", "subscription_past_due"),
        ("user-follower", "no_subscription"),
    ],
)
def test_lapsed_or_following_principals_are_denied(api, principal, detail):
    client, _ = api
    r = _media(client, "vid-paid", principal)
    assert r.status_code == 403
    assert r.json()["reasonDetail"] == detail


@pytest.mark.parametrize(
    "resource_id, detail",
    [
        ("does-not-exist", "content_not_found"),
        ("vid-draft", "unpublished"),
        ("vid-owner-gone", "owner_inactive"),
        ("vid-nomedia", "missing_media"),
    ],
)
def test_unservable_content_is_404(api, resource_id, detail):
    client, _ = api
    r = _media(client, resource_id, CREATOR_PRINCIPAL)
    assert r.status_code == 404
    body = r.json()
    assert body["reason"] == "resource_unavailable"
    assert body["reasonDetail"] == detail


def test_text_content_is_audited_as_issuance_failure(api):
    client, events = api
    r = _media(client, "txt-paid", "user-active")
    assert r.status_code == 404
    assert events[-1]["action"] == "issuance_failed"
    assert events[-1]["reason"] == "resource_unavailable"


@pytest.mark.parametrize("principal", ["anonymous", "bad principal!"])
def test_malformed_principal_header_is_400(api, principal):
    client, _ = api
    assert _media(client, "vid-paid", principal).status_code == 400


def test_malformed_resource_id_is_400(api):
    client, _ = api
    assert _media(client, "bad.id", "user-active").status_code == 400


# ─────────────────────────────────────────────────────────────
# Provider failures
# ─────────────────────────────────────────────────────────────

def test_presign_failure_is_503_with_retry_hint(api, monkeypatch):
    client, events = api
    failing = FakeS3(raise_on_presign=S3StorageError("r2 exploded"))
    monkeypatch.setattr("app.services.capability_service._s3", lambda: failing)

    r = _media(client, "aud-paid", "user-active")
    assert r.status_code == 503
    assert r.headers["Retry-After"] == "10"
    body = r.json()
    assert body["reason"] == "provider_unavailable"
    assert body["retryable"] is True
    assert body["retryAfter"] == 10
    assert "r2 exploded" not in r.text
    assert events[-1]["action"] == "issuance_failed"


def test_missing_provider_config_is_500(api, monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "STREAM_SIGNING_KEY_ID", None)
    monkeypatch.setattr(settings, "STREAM_API_TOKEN", None)
    client, _ = api
    r = _media(client, "vid-paid", "user-active")
    assert r.status_code == 500
    assert r.json()["reason"] == "configuration"
    assert "Retry-After" not in r.headers
