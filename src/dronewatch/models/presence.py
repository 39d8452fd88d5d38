"""Presence models: raw discovery sightings and cached presence entries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class Sighting:
    """One raw discovery result, before location resolution."""

    address: str
    display_name: str
    battery_level: int | None = None
    signal_indicator: int | None = None
    source_id: str | None = None


@dataclass(slots=True)
class PresenceEntry:
    """A device currently (or recently) visible to discovery.

    Owned by :class:`~dronewatch.presence.cache.PresenceCache`; only the
    discovery cycle mutates it.
    """

    device_id: str
    display_name: str
    address: str
    last_seen: datetime
    latitude: float = 0.0
    longitude: float = 0.0
    battery_level: int = 0
    connected: bool = True
    signal_indicator: int = -100

    @property
    def proximity(self) -> tuple[float, str]:
        """Distance score (0 = touching, 100 = far) and its band label."""
        from dronewatch.presence.signal import proximity_from_rssi

        return proximity_from_rssi(self.signal_indicator)

    def copy(self) -> PresenceEntry:
        return PresenceEntry(
            device_id=self.device_id,
            display_name=self.display_name,
            address=self.address,
            last_seen=self.last_seen,
            latitude=self.latitude,
            longitude=self.longitude,
            battery_level=self.battery_level,
            connected=self.connected,
            signal_indicator=self.signal_indicator,
        )

    def to_dict(self) -> dict[str, Any]:
        score, band = self.proximity
        return {
            "deviceId": self.device_id,
            "displayName": self.display_name,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "batteryLevel": self.battery_level,
            "connected": self.connected,
            "lastSeen": self.last_seen.isoformat(),
            "rssi": self.signal_indicator,
            "proximity": score,
            "proximityBand": band,
        }
