"""Forward presence snapshots into the telemetry hub.

Each connected entry becomes a :class:`TelemetryRecord` tagged
``status="presence"`` and goes through the hub's normal persist →
broadcast path.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dronewatch.models.telemetry import TelemetryRecord

if TYPE_CHECKING:
    from dronewatch.hub.hub import TelemetryHub
    from dronewatch.models.presence import PresenceEntry

logger = logging.getLogger(__name__)

PRESENCE_STATUS = "presence"


def entry_to_record(entry: PresenceEntry) -> TelemetryRecord:
    return TelemetryRecord(
        device_id=entry.device_id,
        latitude=entry.latitude,
        longitude=entry.longitude,
        battery_level=max(0, min(100, entry.battery_level)),
        status=PRESENCE_STATUS,
        timestamp=entry.last_seen,
    )


class PresenceRelay:
    """Presence listener that publishes connected devices through the hub."""

    def __init__(self, hub: TelemetryHub) -> None:
        self._hub = hub
        self._forwarded = 0

    @property
    def forwarded_count(self) -> int:
        return self._forwarded

    async def __call__(self, entries: list[PresenceEntry]) -> None:
        sent = 0
        for entry in entries:
            if not entry.connected:
                continue
            await self._hub.publish(entry_to_record(entry))
            sent += 1
        self._forwarded += sent
        if sent:
            logger.debug("Relayed presence for %d device(s)", sent)
