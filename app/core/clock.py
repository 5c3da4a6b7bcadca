from __future__ import annotations

"""
Clock seam for decisions, issuance and binding verification.

Everything that compares against "now" takes a `Clock` so tests can pin time
without patching `datetime`. Timestamps are timezone-aware UTC; capability
expiries are whole epoch seconds.
"""

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def epoch_seconds(dt: datetime) -> int:
    """Whole epoch seconds for an aware (or UTC-naive) datetime."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def from_epoch(ts: int) -> datetime:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


system_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency; override in tests with a fixed clock."""
    return system_clock


__all__ = ["Clock", "SystemClock", "system_clock", "get_clock", "epoch_seconds", "from_epoch"]
