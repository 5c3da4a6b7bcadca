from __future__ import annotations

"""Entitlement data repository.

The media access core never talks to the relational store directly; it asks
this interface for three things: a resource's metadata, a fresh
principal↔owner entitlement snapshot, and an owner's paywall summary.

A simple in-memory implementation is provided, optionally seeded from a JSON
file, plus a factory that loads a custom implementation from an env var.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional, Set, Tuple

from app.core.clock import system_clock
from app.core.config import settings
from app.schemas.enums import SubscriptionStatus
from app.schemas.media import (
    EntitlementSnapshot,
    OwnerSummary,
    PriceDisplay,
    ResourceMeta,
)
from app.utils.media_locator import extract_storage_key, media_kind_from_key

logger = logging.getLogger(__name__)


class EntitlementRepositoryProtocol:
    async def get_resource_meta(self, resource_id: str) -> Optional[ResourceMeta]:
        raise NotImplementedError

    async def get_entitlement_snapshot(self, principal_id: str, owner_id: str) -> EntitlementSnapshot:
        raise NotImplementedError

    async def get_owner_summary(self, owner_id: str) -> Optional[OwnerSummary]:
        raise NotImplementedError


@dataclass
class _MemoryOwner:
    id: str
    handle: str
    display_name: str
    principal_id: Optional[str] = None  # the creator's own principal
    avatar_url: Optional[str] = None
    subscription_price: Optional[str] = None  # PriceTier name
    trial_enabled: bool = False


@dataclass
class _MemorySubscription:
    principal_id: str
    owner_id: str
    status: str
    current_period_end: Optional[datetime] = None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class MemoryEntitlementRepository(EntitlementRepositoryProtocol):
    """
    In-memory repository, optionally backed by a JSON file.

    Env:
      - ENTITLEMENTS_DATA_PATH: Path to a JSON object with optional keys
        `resources`, `owners`, `subscriptions` and `follows` (lists of objects).
        Resources without `media_kind` get one guessed from the locator extension.
    """

    def __init__(self, data_path: Optional[str] = None):
        self._reset()
        data_path = data_path or settings.ENTITLEMENTS_DATA_PATH or os.environ.get("ENTITLEMENTS_DATA_PATH")
        if data_path and os.path.exists(data_path):
            try:
                with open(data_path, "r", encoding="utf-8") as f:
                    self.load(json.load(f) or {})
            except (OSError, ValueError, TypeError) as e:
                # Load failure -> keep empty (deny-by-default)
                logger.warning("Could not load entitlement data from %s: %s", data_path, e)
                self._reset()

    def _reset(self) -> None:
        self._resources: Dict[str, ResourceMeta] = {}
        self._owners: Dict[str, _MemoryOwner] = {}
        self._subscriptions: Dict[Tuple[str, str], _MemorySubscription] = {}
        self._follows: Set[Tuple[str, str]] = set()

    # Seeding
    def load(self, raw: Dict[str, Any]) -> None:
        for r in raw.get("resources") or []:
            if "media_kind" not in r and r.get("media_locator"):
                key = extract_storage_key(r["media_locator"]) or ""
                r = {**r, "media_kind": media_kind_from_key(key)}
            self.put_resource(ResourceMeta(**r))
        for o in raw.get("owners") or []:
            self.put_owner(_MemoryOwner(**o))
        for s in raw.get("subscriptions") or []:
            self.put_subscription(
                s["principal_id"], s["owner_id"], s["status"], _parse_dt(s.get("current_period_end"))
            )
        for fl in raw.get("follows") or []:
            self.follow(fl["principal_id"], fl["owner_id"])

    def put_resource(self, resource: ResourceMeta) -> None:
        self._resources[resource.id] = resource

    def put_owner(self, owner: _MemoryOwner) -> None:
        self._owners[owner.id] = owner

    def put_subscription(
        self,
        principal_id: str,
        owner_id: str,
        status: str,
        current_period_end: Optional[datetime] = None,
    ) -> None:
        self._subscriptions[(principal_id, owner_id)] = _MemorySubscription(
            principal_id, owner_id, status, current_period_end
        )

    def cancel_subscription(self, principal_id: str, owner_id: str) -> None:
        """Drop the subscription outright (no paid-through period)."""
        self._subscriptions.pop((principal_id, owner_id), None)

    def follow(self, principal_id: str, owner_id: str) -> None:
        self._follows.add((principal_id, owner_id))

    # Interface
    async def get_resource_meta(self, resource_id: str) -> Optional[ResourceMeta]:
        return self._resources.get(resource_id)

    async def get_entitlement_snapshot(self, principal_id: str, owner_id: str) -> EntitlementSnapshot:
        owner = self._owners.get(owner_id)
        sub = self._subscriptions.get((principal_id, owner_id))
        active = False
        if sub is not None:
            status = SubscriptionStatus.parse(sub.status)
            if status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
                active = True
            elif status == SubscriptionStatus.CANCELED and sub.current_period_end is not None:
                active = sub.current_period_end > system_clock.now()
        return EntitlementSnapshot(
            has_active_or_trialing_subscription=active,
            subscription_status=sub.status if sub else None,
            current_period_end=sub.current_period_end if sub else None,
            is_owner=bool(owner and owner.principal_id and owner.principal_id == principal_id),
            is_following=(principal_id, owner_id) in self._follows,
        )

    async def get_owner_summary(self, owner_id: str) -> Optional[OwnerSummary]:
        o = self._owners.get(owner_id)
        if o is None:
            return None
        return OwnerSummary(
            id=o.id,
            handle=o.handle,
            display_name=o.display_name,
            avatar_url=o.avatar_url,
            subscription_price=PriceDisplay.from_tier(o.subscription_price),
            trial_enabled=o.trial_enabled,
        )


def _import_string(path: str):
    module_path, _, class_name = path.partition(":")
    if not module_path or not class_name:
        raise ValueError("ENTITLEMENT_REPOSITORY_IMPL must be 'module.sub:ClassName'")
    module = __import__(module_path, fromlist=[class_name])
    return getattr(module, class_name)


@lru_cache(maxsize=1)
def get_entitlement_repository() -> EntitlementRepositoryProtocol:
    """
    Factory/dependency for the entitlement repository (process-wide instance).
    Configure via `ENTITLEMENT_REPOSITORY_IMPL` to point to a custom class.
    Defaults to MemoryEntitlementRepository.
    """
    impl_path = settings.ENTITLEMENT_REPOSITORY_IMPL or os.environ.get("ENTITLEMENT_REPOSITORY_IMPL")
    if impl_path:
        cls = _import_string(impl_path)
        return cls()  # type: ignore
    return MemoryEntitlementRepository()


__all__ = [
    "EntitlementRepositoryProtocol",
    "MemoryEntitlementRepository",
    "get_entitlement_repository",
]
