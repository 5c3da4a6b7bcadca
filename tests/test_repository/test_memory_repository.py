# tests/test_repository/test_memory_repository.py

import json
from datetime import datetime, timedelta, timezone

import pytest

from app.repositories import entitlements as repo_module
from app.repositories.entitlements import MemoryEntitlementRepository
from app.schemas.enums import AccessClass, MediaKind

FUTURE = (datetime.now(timezone.utc) + timedelta(days=5)).isoformat()
PAST = (datetime.now(timezone.utc) - timedelta(days=5)).isoformat()

SEED = {
    "owners": [
        {
            "id": "o1",
            "handle": "ava",
            "display_name": "Ava",
            "principal_id": "creator",
            "subscription_price": "TIER_999",
        },
        {"id": "o2", "handle": "bo", "display_name": "Bo", "subscription_price": "TIER_1500"},
    ],
    "resources": [
        {"id": "r1", "owner_id": "o1", "access_class": "free", "media_kind": "audio", "media_locator": "a.mp3"},
        {"id": "r2", "owner_id": "o2", "media_locator": "0123456789abcdef0123456789abcdef"},
        {"id": "r3", "owner_id": "o2", "media_locator": "https://cdn.example/covers/c1.webp?v=2"},
    ],
    "subscriptions": [
        {"principal_id": "u1", "owner_id": "o2", "status": "active", "current_period_end": FUTURE},
        {"principal_id": "u2", "owner_id": "o2", "status": "canceled", "current_period_end": FUTURE},
        {"principal_id": "u3", "owner_id": "o2", "status": "canceled", "current_period_end": PAST},
        {"principal_id": "u4", "owner_id": "o2", "status": "past_due"},
    ],
    "follows": [{"principal_id": "u5", "owner_id": "o2"}],
}


@pytest.fixture()
def seeded(tmp_path) -> MemoryEntitlementRepository:
    path = tmp_path / "entitlements.json"
    path.write_text(json.dumps(SEED), encoding="utf-8")
    return MemoryEntitlementRepository(str(path))


@pytest.mark.anyio
async def test_resources_load_from_json(seeded):
    r1 = await seeded.get_resource_meta("r1")
    assert r1.access_class == AccessClass.FREE
    assert r1.media_kind == MediaKind.AUDIO
    assert (await seeded.get_resource_meta("r2")).access_class == AccessClass.PAID
    assert await seeded.get_resource_meta("nope") is None


@pytest.mark.anyio
@pytest.mark.parametrize(
    "principal, active, status",
    [
        ("u1", True, "active"),
        ("u2", True, "canceled"),
        ("u3", False, "canceled"),
        ("u4", False, "past_due"),
        ("u5", False, None),
    ],
)
async def test_snapshot_reflects_subscription(seeded, principal, active, status):
    snap = await seeded.get_entitlement_snapshot(principal, "o2")
    assert snap.has_active_or_trialing_subscription is active
    assert snap.subscription_status == status
    assert snap.is_owner is False


@pytest.mark.anyio
async def test_snapshot_flags_owner_and_follow(seeded):
    assert (await seeded.get_entitlement_snapshot("creator", "o1")).is_owner is True
    assert (await seeded.get_entitlement_snapshot("u5", "o2")).is_following is True


@pytest.mark.anyio
async def test_period_end_parsed_as_aware_datetime(seeded):
    snap = await seeded.get_entitlement_snapshot("u1", "o2")
    assert snap.current_period_end.tzinfo is not None


@pytest.mark.anyio
async def test_owner_summary_price_display(seeded):
    bo = await seeded.get_owner_summary("o2")
    assert bo.subscription_price.amount == "$15"
    assert bo.subscription_price.cents == 1500
    # unknown tier is dropped rather than guessed
    ava = await seeded.get_owner_summary("o1")
    assert ava.subscription_price is None
    assert await seeded.get_owner_summary("missing") is None


@pytest.mark.anyio
async def test_cancel_subscription_removes_access(seeded):
    seeded.cancel_subscription("u1", "o2")
    snap = await seeded.get_entitlement_snapshot("u1", "o2")
    assert snap.has_active_or_trialing_subscription is False
    assert snap.subscription_status is None


@pytest.mark.anyio
async def test_unreadable_file_leaves_repository_empty(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    repo = MemoryEntitlementRepository(str(path))
    assert await repo.get_resource_meta("r1") is None


@pytest.mark.anyio
async def test_partial_load_failure_is_rolled_back(tmp_path):
    data = {"resources": [SEED["resources"][0], {"id": "bad"}]}
    path = tmp_path / "partial.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    repo = MemoryEntitlementRepository(str(path))
    assert await repo.get_resource_meta("r1") is None


def test_factory_loads_custom_implementation(monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(
        settings,
        "ENTITLEMENT_REPOSITORY_IMPL",
        "app.repositories.entitlements:MemoryEntitlementRepository",
    )
    repo_module.get_entitlement_repository.cache_clear()
    try:
        assert isinstance(repo_module.get_entitlement_repository(), MemoryEntitlementRepository)
    finally:
        repo_module.get_entitlement_repository.cache_clear()


def test_factory_rejects_malformed_path(monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "ENTITLEMENT_REPOSITORY_IMPL", "no_colon_here")
    repo_module.get_entitlement_repository.cache_clear()
    try:
        with pytest.raises(ValueError):
            repo_module.get_entitlement_repository()
    finally:
        repo_module.get_entitlement_repository.cache_clear()


@pytest.mark.anyio
async def test_media_kind_inferred_from_locator_when_absent(seeded):
    assert (await seeded.get_resource_meta("r2")).media_kind == MediaKind.VIDEO
    assert (await seeded.get_resource_meta("r3")).media_kind == MediaKind.IMAGE
