"""Presence cache — time-bounded view of currently visible devices.

One cycle is discover → resolve locations → merge → notify.  Cycles run on
a fixed period; a failing cycle is logged and the next one runs on
schedule regardless.

Merge rules:
  - every existing entry is first marked ``connected=False``;
  - each sighting updates the entry with the same address in place (or
    inserts a new one) with ``connected=True`` and ``last_seen=now``;
  - entries whose ``last_seen`` is older than the staleness window are
    evicted, connected or not.  Eviction runs on empty cycles too, so a
    device that vanishes is gone once the window has elapsed.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from dronewatch.models.config import DEFAULT_DEVICE_KEYWORDS
from dronewatch.models.presence import PresenceEntry
from dronewatch.presence.discovery import normalize_sightings

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Sequence

    from dronewatch.location.resolver import LocationResolver
    from dronewatch.models.location import LocationEstimate
    from dronewatch.models.presence import Sighting
    from dronewatch.presence.discovery import DiscoveryBackend

    PresenceListener = Callable[[list[PresenceEntry]], Awaitable[None] | None]

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def select_device(
    entries: Iterable[PresenceEntry],
    keywords: Sequence[str] = DEFAULT_DEVICE_KEYWORDS,
) -> PresenceEntry | None:
    """Pick the device observers should focus on.

    Among connected entries, the first whose name contains one of
    *keywords* (case-insensitive) wins; otherwise the first connected
    entry.  ``None`` means nothing is connected.
    """
    connected = [e for e in entries if e.connected]
    lowered = [k.lower() for k in keywords]
    for entry in connected:
        name = entry.display_name.lower()
        if any(k in name for k in lowered):
            return entry
    return connected[0] if connected else None


class PresenceCache:
    """Owns the presence entries and the periodic discovery task.

    Parameters:
        discovery: Backend producing raw sightings.
        resolver: Location resolver consulted once per sighting per cycle.
        interval: Seconds between cycle starts.
        staleness_window: Seconds after which an unseen entry is evicted.
        device_keywords: Keywords preferred by :meth:`selected`.
        clock: Returns "now"; injectable for tests.
    """

    def __init__(
        self,
        discovery: DiscoveryBackend,
        resolver: LocationResolver,
        *,
        interval: float = 2.0,
        staleness_window: float = 30.0,
        device_keywords: Sequence[str] = DEFAULT_DEVICE_KEYWORDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._discovery = discovery
        self._resolver = resolver
        self._interval = interval
        self._staleness = timedelta(seconds=staleness_window)
        self._keywords = tuple(device_keywords)
        self._clock = clock
        self._entries: dict[str, PresenceEntry] = {}
        self._lock = asyncio.Lock()
        self._listeners: list[PresenceListener] = []
        self._task: asyncio.Task[None] | None = None
        self._cycle_count = 0
        self._failure_count = 0

    # -- Introspection -------------------------------------------------------

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def failure_count(self) -> int:
        """Cycles that raised and were skipped."""
        return self._failure_count

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> list[PresenceEntry]:
        """Copies of all entries in insertion order.

        Merges never await, so a snapshot is always either fully before or
        fully after a merge.
        """
        return [e.copy() for e in self._entries.values()]

    def get(self, address: str) -> PresenceEntry | None:
        entry = self._entries.get(address)
        return entry.copy() if entry is not None else None

    def selected(self) -> PresenceEntry | None:
        return select_device(self.snapshot(), self._keywords)

    # -- Listeners -------------------------------------------------------------

    def add_listener(self, listener: PresenceListener) -> None:
        """Register a sync or async callable receiving each post-cycle snapshot."""
        self._listeners.append(listener)

    def remove_listener(self, listener: PresenceListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    # -- Cycle -----------------------------------------------------------------

    async def run_cycle(self) -> list[PresenceEntry]:
        """Run one discover → resolve → merge → notify cycle."""
        sightings = await self._discover()
        resolved = await self._resolve(sightings)

        async with self._lock:
            self._merge(resolved, self._clock())
            snapshot = self.snapshot()

        self._cycle_count += 1
        connected = sum(1 for e in snapshot if e.connected)
        logger.debug(
            "Presence cycle %d: %d sighting(s), %d cached, %d connected",
            self._cycle_count,
            len(sightings),
            len(snapshot),
            connected,
        )
        await self._notify(snapshot)
        return snapshot

    async def _discover(self) -> list[Sighting]:
        try:
            raw = await self._discovery.scan()
        except Exception:
            logger.warning("Discovery scan failed — treating as no sightings", exc_info=True)
            return []
        return normalize_sightings(raw or [])

    async def _resolve(
        self, sightings: list[Sighting]
    ) -> list[tuple[Sighting, LocationEstimate]]:
        if not sightings:
            return []
        estimates = await asyncio.gather(
            *(self._resolver.resolve(self._device_id(s)) for s in sightings)
        )
        return list(zip(sightings, estimates, strict=True))

    @staticmethod
    def _device_id(sighting: Sighting) -> str:
        return sighting.source_id or sighting.address

    def _merge(
        self, resolved: list[tuple[Sighting, LocationEstimate]], now: datetime
    ) -> None:
        for entry in self._entries.values():
            entry.connected = False

        if not resolved and self._entries:
            logger.info("No devices detected — marking all as disconnected")
        for sighting, estimate in resolved:
            entry = self._entries.get(sighting.address)
            if entry is None:
                entry = PresenceEntry(
                    device_id=self._device_id(sighting),
                    display_name=sighting.display_name,
                    address=sighting.address,
                    last_seen=now,
                )
                self._entries[sighting.address] = entry
                logger.info("New device: %s (%s)", sighting.display_name, sighting.address)
            entry.display_name = sighting.display_name
            entry.battery_level = sighting.battery_level or 0
            entry.signal_indicator = (
                sighting.signal_indicator
                if sighting.signal_indicator is not None
                else entry.signal_indicator
            )
            entry.latitude = estimate.latitude
            entry.longitude = estimate.longitude
            entry.connected = True
            entry.last_seen = now

        cutoff = now - self._staleness
        stale = [addr for addr, e in self._entries.items() if e.last_seen < cutoff]
        for addr in stale:
            evicted = self._entries.pop(addr)
            logger.info("Evicted stale device: %s (%s)", evicted.display_name, addr)
            self._resolver.forget(evicted.device_id)

    async def _notify(self, snapshot: list[PresenceEntry]) -> None:
        for listener in list(self._listeners):
            try:
                result: Any = listener([e.copy() for e in snapshot])
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Presence listener %s failed", listener, exc_info=True)

    # -- Scheduling ------------------------------------------------------------

    def start(self) -> None:
        """Begin running cycles every ``interval`` seconds (first one immediately)."""
        if self.is_running:
            logger.warning("Presence scanning already running")
            return
        self._task = asyncio.create_task(self._run_loop(), name="presence-scan")
        logger.info("Presence scanning started (%.1fs interval)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Presence scanning stopped")

    async def _run_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._failure_count += 1
                logger.warning("Presence cycle failed", exc_info=True)
            await asyncio.sleep(max(0.0, self._interval - (loop.time() - started)))
