from __future__ import annotations

"""
StudioPass • Playback session (revalidation loop + credential refresh)
======================================================================

One `PlaybackSession` per resource a player has open. It owns two timers on
the running asyncio loop:

- **Revalidation**: every `revalidate_interval` seconds while `playing`, ask
  the server for a fresh decision. `valid=false` (or 401) tears playback
  down and fires `on_denied(owner_summary)`. Transport errors and 5xx keep
  playing on the current capability.
- **Refresh**: at `expires_at - refresh_buffer`, fetch a new capability from
  the media endpoint (a fresh decision). A deny ends playback; transient
  failures retry with backoff until `expires_at`, then the session expires.

States
------
    idle → fetching → playing ⇄ paused
                 ↘        ↘ denied | expired
                  error          stopped (from any state)

`pause()` and `stop()` cancel both timers; `resume()` restarts them and
refetches when the capability already expired. A result that arrives after
the session left `playing` is discarded, so a deny always wins over an
in-flight refresh.
An unexpected error inside either timer moves the session to `error`.

`clock` (epoch seconds) and `sleep` are injectable for tests.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Sequence

from app.core.config import settings
from app.player.client import AccessDenied, MediaAccessClient, TransientAccessError
from app.schemas.enums import PlaybackState
from app.schemas.media import MediaAccessResponse, OwnerSummary

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAYS: Sequence[float] = (1.0, 2.0, 5.0, 10.0)
MIN_REFRESH_DELAY = 1.0

StateCallback = Callable[[PlaybackState, PlaybackState], Any]
DeniedCallback = Callable[[Optional[OwnerSummary]], Any]
CapabilityCallback = Callable[[MediaAccessResponse], Any]


class PlaybackSession:
    def __init__(
        self,
        client: MediaAccessClient,
        resource_id: str,
        *,
        revalidate_interval: Optional[float] = None,
        refresh_buffer: Optional[float] = None,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        on_state_change: Optional[StateCallback] = None,
        on_denied: Optional[DeniedCallback] = None,
        on_capability: Optional[CapabilityCallback] = None,
        session_id: Optional[str] = None,
        position: Optional[Callable[[], Optional[float]]] = None,
    ) -> None:
        self._client = client
        self.resource_id = resource_id
        self.revalidate_interval = float(
            settings.REVALIDATE_INTERVAL_SECONDS if revalidate_interval is None else revalidate_interval
        )
        self.refresh_buffer = float(settings.REFRESH_BUFFER_SECONDS if refresh_buffer is None else refresh_buffer)
        self.retry_delays = tuple(retry_delays) or (1.0,)
        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep
        self._on_state_change = on_state_change
        self._on_denied = on_denied
        self._on_capability = on_capability
        self.session_id = session_id
        self._position = position

        self._state = PlaybackState.IDLE
        self._generation = 0
        self._revalidate_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._failure_task: Optional[asyncio.Task] = None

        self.capability: Optional[MediaAccessResponse] = None
        self.deny_reason: Optional[str] = None
        self.owner_summary: Optional[OwnerSummary] = None
        self.last_error: Optional[BaseException] = None

    # ── Public surface ───────────────────────────────────────
    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def timers_active(self) -> bool:
        return any(t is not None and not t.done() for t in (self._revalidate_task, self._refresh_task))

    async def start(self) -> PlaybackState:
        """Fetch the first capability and start playing on success."""
        if self._state not in (PlaybackState.IDLE, PlaybackState.ERROR, PlaybackState.EXPIRED):
            raise RuntimeError(f"cannot start a session in state {self._state.value}")
        await self._fetch()
        return self._state

    async def pause(self) -> None:
        if self._state != PlaybackState.PLAYING:
            return
        self._generation += 1
        await self._cancel_timers()
        await self._set_state(PlaybackState.PAUSED)

    async def resume(self) -> PlaybackState:
        """Restart the timers, refetching first when the capability has expired."""
        if self._state != PlaybackState.PAUSED:
            return self._state
        if self.capability is None or self._clock() >= self.capability.expires_at:
            await self._fetch()
        else:
            await self._set_state(PlaybackState.PLAYING)
            self._start_timers()
        return self._state

    async def stop(self) -> None:
        """Navigation away: cancel every timer and ignore late results."""
        self._generation += 1
        await self._cancel_timers()
        await self._set_state(PlaybackState.STOPPED)

    # ── Transitions ──────────────────────────────────────────
    async def _set_state(self, new: PlaybackState) -> None:
        old = self._state
        if old == new:
            return
        self._state = new
        logger.debug("playback %s: %s -> %s", self.resource_id, old.value, new.value)
        await self._emit(self._on_state_change, old, new)

    async def _emit(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Playback callback failed for %s", self.resource_id)

    def _is_current(self, generation: int) -> bool:
        return self._state == PlaybackState.PLAYING and generation == self._generation

    async def _fetch(self) -> None:
        self._generation += 1
        generation = self._generation
        await self._set_state(PlaybackState.FETCHING)
        try:
            capability = await self._client.fetch_capability(self.resource_id)
        except AccessDenied as e:
            if generation == self._generation:
                await self._deny(e.reason, e.owner_summary)
            return
        except TransientAccessError as e:
            self.last_error = e
            if generation == self._generation:
                logger.warning("Capability fetch failed for %s: %s", self.resource_id, e)
                await self._set_state(PlaybackState.ERROR)
            return
        if generation != self._generation or self._state != PlaybackState.FETCHING:
            return
        await self._accept(capability)
        await self._set_state(PlaybackState.PLAYING)
        self._start_timers()

    async def _accept(self, capability: MediaAccessResponse) -> None:
        self.capability = capability
        self.last_error = None
        await self._emit(self._on_capability, capability)

    async def _deny(self, reason: str, owner_summary: Optional[OwnerSummary]) -> None:
        if self._state in (PlaybackState.DENIED, PlaybackState.STOPPED):
            return
        self._generation += 1
        self.deny_reason = reason
        self.owner_summary = owner_summary
        await self._cancel_timers()
        await self._set_state(PlaybackState.DENIED)
        await self._emit(self._on_denied, owner_summary)

    async def _expire(self) -> None:
        self._generation += 1
        await self._cancel_timers()
        await self._set_state(PlaybackState.EXPIRED)

    # ── Timers ───────────────────────────────────────────────
    def _start_timers(self) -> None:
        loop = asyncio.get_running_loop()
        self._revalidate_task = loop.create_task(self._revalidate_loop(self._generation))
        self._refresh_task = loop.create_task(self._refresh_loop(self._generation))
        self._revalidate_task.add_done_callback(self._on_timer_done)
        self._refresh_task.add_done_callback(self._on_timer_done)

    def _on_timer_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        if task is not self._revalidate_task and task is not self._refresh_task:
            return
        exc = task.exception()
        logger.error("Playback timer failed for %s", self.resource_id, exc_info=exc)
        self.last_error = exc
        self._failure_task = task.get_loop().create_task(self._fail())

    async def _fail(self) -> None:
        # playing implies both timers are alive
        if self._state != PlaybackState.PLAYING:
            return
        self._generation += 1
        await self._cancel_timers()
        await self._set_state(PlaybackState.ERROR)

    async def _cancel_timers(self) -> None:
        current = asyncio.current_task()
        pending = []
        for task in (self._revalidate_task, self._refresh_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                pending.append(task)
        self._revalidate_task = None
        self._refresh_task = None
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _revalidate_loop(self, generation: int) -> None:
        while True:
            await self._sleep(self.revalidate_interval)
            if not self._is_current(generation):
                return
            try:
                result = await self._client.revalidate(
                    self.resource_id,
                    playback_position=self._position() if self._position else None,
                    session_id=self.session_id,
                )
            except AccessDenied as e:
                if self._is_current(generation):
                    await self._deny(e.reason, e.owner_summary)
                return
            except TransientAccessError as e:
                # keep playing on the current capability
                self.last_error = e
                logger.info("Revalidation unavailable for %s: %s", self.resource_id, e)
                continue
            if not self._is_current(generation):
                return
            if not result.valid:
                await self._deny(result.reason, result.owner_summary)
                return

    async def _refresh_loop(self, generation: int) -> None:
        while self.capability is not None:
            delay = self.capability.expires_at - self.refresh_buffer - self._clock()
            await self._sleep(max(MIN_REFRESH_DELAY, delay))
            if not self._is_current(generation):
                return
            if not await self._refresh(generation, self.capability):
                return

    async def _refresh(self, generation: int, current: MediaAccessResponse) -> bool:
        """One refresh with retries; True when a fresh capability was accepted."""
        attempt = 0
        while True:
            try:
                fresh = await self._client.fetch_capability(self.resource_id)
            except AccessDenied as e:
                if self._is_current(generation):
                    await self._deny(e.reason, e.owner_summary)
                return False
            except TransientAccessError as e:
                self.last_error = e
                remaining = current.expires_at - self._clock()
                if remaining <= 0:
                    if self._is_current(generation):
                        await self._expire()
                    return False
                delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
                if e.retry_after:
                    delay = max(delay, e.retry_after)
                attempt += 1
                logger.info("Refresh failed for %s (attempt %d): %s", self.resource_id, attempt, e)
                await self._sleep(min(delay, remaining))
                if not self._is_current(generation):
                    return False
                if self._clock() >= current.expires_at:
                    await self._expire()
                    return False
                continue
            if not self._is_current(generation):
                # session left playing while the refresh was in flight
                return False
            await self._accept(fresh)
            return True


__all__ = ["PlaybackSession", "DEFAULT_RETRY_DELAYS"]
