# tests/fixtures/media.py

"""
🧩 Media access fixtures:
- A seeded in-memory entitlement repository (owners, resources, subscriptions)
- A fixed clock pinned to "now" so real JWT/exp checks still pass
- FakeS3 stand-in for the R2 presigner
- A throwaway RSA key for local stream token signing
- An app/TestClient with dependency overrides and a capturing audit sink
- VirtualTime: deterministic sleep/clock for the playback session
"""

from __future__ import annotations

import asyncio
import heapq
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from pydantic import SecretStr

from app.core.config import settings
from app.repositories.entitlements import MemoryEntitlementRepository
from app.schemas.enums import AccessClass, MediaKind, ResourceStatus
from app.schemas.media import ResourceMeta
from app.services.audit_log_service import AuditSink

VIDEO_UID = "0123456789abcdef0123456789abcdef"
CREATOR_PRINCIPAL = "user-creator"
OWNER_ID = "creator-1"


# ─────────────────────────────────────────────────────────────
# Clock & time
# ─────────────────────────────────────────────────────────────

class FixedClock:
    def __init__(self, at: Optional[datetime] = None):
        self.at = (at or datetime.now(timezone.utc)).replace(microsecond=0)

    def now(self) -> datetime:
        return self.at

    def advance(self, **delta) -> None:
        self.at = self.at + timedelta(**delta)


class VirtualTime:
    """Cooperative fake time: `sleep` parks until `advance` passes its deadline."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self._sleepers: List[tuple] = []
        self._seq = 0

    def clock(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self._seq += 1
        heapq.heappush(self._sleepers, (self.now + max(0.0, delay), self._seq, fut))
        await fut

    @staticmethod
    async def settle(rounds: int = 25) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            wake_at, _, fut = heapq.heappop(self._sleepers)
            self.now = max(self.now, wake_at)
            if not fut.done():
                fut.set_result(None)
            await self.settle()
        self.now = target
        await self.settle()


# ─────────────────────────────────────────────────────────────
# Storage fake
# ─────────────────────────────────────────────────────────────

class FakeS3:
    """Captures presign calls; optionally raises to simulate R2 failures."""

    def __init__(self, *, raise_on_presign: Optional[Exception] = None):
        self.bucket = "unit-test-bucket"
        self._raise_on_presign = raise_on_presign
        self.presign_calls: List[Dict[str, Any]] = []

    def presigned_get(
        self,
        key,
        *,
        expires_in: int,
        response_content_type: Optional[str] = None,
        response_content_disposition: Optional[str] = None,
    ) -> str:
        self.presign_calls.append(
            {
                "key": key,
                "expires_in": expires_in,
                "content_disposition": response_content_disposition,
            }
        )
        if self._raise_on_presign:
            raise self._raise_on_presign
        url = f"https://signed.example/{key}?X-Amz-Expires={expires_in}"
        if response_content_disposition:
            url += "&response-content-disposition=" + quote(response_content_disposition, safe="")
        return url


# ─────────────────────────────────────────────────────────────
# Repository seed
# ─────────────────────────────────────────────────────────────

def build_repository(now: datetime) -> MemoryEntitlementRepository:
    repo = MemoryEntitlementRepository()
    repo.load(
        {
            "owners": [
                {
                    "id": OWNER_ID,
                    "handle": "ava",
                    "display_name": "Ava Studio",
                    "principal_id": CREATOR_PRINCIPAL,
                    "subscription_price": "TIER_500",
                    "trial_enabled": True,
                }
            ],
            "follows": [{"principal_id": "user-follower", "owner_id": OWNER_ID}],
        }
    )

    def res(id_: str, **kw) -> ResourceMeta:
        return ResourceMeta(id=id_, owner_id=OWNER_ID, **kw)

    for r in (
        res("vid-paid", media_locator=VIDEO_UID, title="Episode 1", duration_seconds=600,
            thumbnail_url="https://img.example/ep1.jpg"),
        res("vid-free", access_class=AccessClass.FREE, media_locator=VIDEO_UID),
        res("aud-paid", media_kind=MediaKind.AUDIO, media_locator="audio/track-1.mp3"),
        res("img-free", access_class=AccessClass.FREE, media_kind=MediaKind.IMAGE,
            media_locator="https://bucket.r2.example/images/cover.png?old=sig"),
        res("txt-paid", media_kind=MediaKind.TEXT),
        res("vid-draft", access_class=AccessClass.FREE, status=ResourceStatus.DRAFT, media_locator=VIDEO_UID),
        res("vid-owner-gone", owner_active=False, media_locator=VIDEO_UID),
        res("vid-nomedia"),
    ):
        repo.put_resource(r)

    repo.put_subscription("user-active", OWNER_ID, "active", now + timedelta(days=20))
    repo.put_subscription("user-trial", OWNER_ID, "trialing", now + timedelta(days=3))
    repo.put_subscription("user-canceled-future", OWNER_ID, "canceled", now + timedelta(days=7))
    repo.put_subscription("user-canceled-past", OWNER_ID, "canceled", now - timedelta(days=1))
    repo.put_subscription("user-pastdue", OWNER_ID, "past_due", now + timedelta(days=2))
    return repo


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────

@pytest.fixture()
def fixed_clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def repo(fixed_clock) -> MemoryEntitlementRepository:
    return build_repository(fixed_clock.now())


@pytest.fixture(scope="session")
def rsa_keypair() -> Dict[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return {"private": private_pem, "public": public_pem}


@pytest.fixture()
def stream_local_signing(monkeypatch, rsa_keypair):
    """Configure local RS256 stream signing + the playback host."""
    monkeypatch.setattr(settings, "STREAM_SIGNING_KEY_ID", "kid-test", raising=False)
    monkeypatch.setattr(settings, "STREAM_SIGNING_KEY_PEM", SecretStr(rsa_keypair["private"]), raising=False)
    monkeypatch.setattr(settings, "STREAM_CUSTOMER_SUBDOMAIN", "unit", raising=False)
    return rsa_keypair


@pytest.fixture()
def fake_s3(monkeypatch) -> FakeS3:
    s3 = FakeS3()
    monkeypatch.setattr("app.services.capability_service._s3", lambda: s3)
    return s3


@pytest.fixture()
def audit_events():
    """Capturing audit sink: returns (sink, events)."""
    events: List[Dict[str, Any]] = []
    return AuditSink(writers=[events.append]), events


@pytest.fixture()
def api(repo, fixed_clock, audit_events, fake_s3, stream_local_signing):
    """
    Full app with dependency overrides:
      - repository → seeded memory repo
      - clock → fixed clock
      - issuer → issuer on the fixed clock
      - audit sink → capturing sink
    Yields (client, events).
    """
    from app.core import dependencies as deps
    from app.main import create_app
    from app.services.capability_service import CapabilityIssuer

    sink, events = audit_events
    app = create_app()
    app.dependency_overrides[deps.get_entitlement_repository] = lambda: repo
    app.dependency_overrides[deps.get_clock] = lambda: fixed_clock
    app.dependency_overrides[deps.get_capability_issuer] = lambda: CapabilityIssuer(clock=fixed_clock)
    app.dependency_overrides[deps.get_audit_sink] = lambda: sink
    with TestClient(app) as client:
        yield client, events


__all__ = [
    "VIDEO_UID",
    "CREATOR_PRINCIPAL",
    "OWNER_ID",
    "FixedClock",
    "VirtualTime",
    "FakeS3",
    "build_repository",
    "fixed_clock",
    "repo",
    "rsa_keypair",
    "stream_local_signing",
    "fake_s3",
    "audit_events",
    "api",
]
