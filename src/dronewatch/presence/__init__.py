"""Device presence — discovery, caching and forwarding."""

from __future__ import annotations

from dronewatch.presence.cache import PresenceCache, select_device
from dronewatch.presence.discovery import (
    CommandDiscovery,
    DiscoveryBackend,
    NullDiscovery,
    StaticDiscovery,
    normalize_sightings,
)
from dronewatch.presence.relay import PresenceRelay
from dronewatch.presence.signal import proximity_from_rssi

__all__ = [
    "CommandDiscovery",
    "DiscoveryBackend",
    "NullDiscovery",
    "PresenceCache",
    "PresenceRelay",
    "StaticDiscovery",
    "normalize_sightings",
    "proximity_from_rssi",
    "select_device",
]
