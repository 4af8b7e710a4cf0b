"""
Navigation: One Channel for Location Changes

The browser reports navigation three ways: history mutations
(pushState/replaceState), popstate (back/forward), and a periodic poll of
the current location as a backup for anything missed. Each is an adapter that
feeds the same ``LocationChannel.emit``; the tracker then decides whether the
move changed collection, changed section, or nothing at all.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .session_state import SessionStateTracker, Transition

logger = logging.getLogger(__name__)

LocationGetter = Callable[[], Optional[str]]


class LocationChannel:
    """Single emit point for location changes."""

    def __init__(self, tracker: SessionStateTracker):
        self.tracker = tracker
        self.last_trigger: Optional[str] = None

    async def emit(self, location: str, trigger: str) -> Transition:
        transition = await self.tracker.handle_location_change(location)
        if transition is not Transition.UNCHANGED:
            self.last_trigger = trigger
            logger.info(f"[NAV] {trigger}: {transition.value} -> {location}")
        return transition


class HistoryAdapter:
    """pushState / replaceState interception."""

    def __init__(self, channel: LocationChannel):
        self.channel = channel

    async def push_state(self, location: str) -> Transition:
        return await self.channel.emit(location, "pushState")

    async def replace_state(self, location: str) -> Transition:
        return await self.channel.emit(location, "replaceState")


class PopStateAdapter:
    """Back/forward navigation."""

    def __init__(self, channel: LocationChannel):
        self.channel = channel

    async def on_popstate(self, location: str) -> Transition:
        return await self.channel.emit(location, "popstate")


class PollingWatcher:
    """
    Polls the current location and emits when it differs from the tracked one.

    Usage:
        watcher = PollingWatcher(channel, lambda: page.location, interval_s=0.5)
        watcher.start()
        ...
        await watcher.stop()
    """

    def __init__(self, channel: LocationChannel, get_location: LocationGetter, interval_s: float = 0.5):
        self.channel = channel
        self.get_location = get_location
        self.interval_s = interval_s
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self) -> Transition:
        location = self.get_location()
        if not location or location == self.channel.tracker.state.location:
            return Transition.UNCHANGED
        logger.debug("[NAV] Location change detected via interval check")
        return await self.channel.emit(location, "poll")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"[NAV] Poll failed: {e}")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


TRIGGERS = {
    "pushState": HistoryAdapter.push_state,
    "replaceState": HistoryAdapter.replace_state,
}


async def dispatch_history_event(
    history: HistoryAdapter, popstate: PopStateAdapter, trigger: str, location: str
) -> Transition:
    """Route a named browser navigation event to its adapter."""
    if trigger == "popstate":
        return await popstate.on_popstate(location)
    handler: Optional[Callable[[HistoryAdapter, str], Awaitable[Transition]]] = TRIGGERS.get(trigger)
    if handler is None:
        return await history.channel.emit(location, trigger or "unknown")
    return await handler(history, location)
