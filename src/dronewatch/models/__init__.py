"""Pydantic models and dataclasses shared across dronewatch."""

from __future__ import annotations

from dronewatch.models.config import AppSettings
from dronewatch.models.location import LocationEstimate, LocationSourceTag
from dronewatch.models.presence import PresenceEntry, Sighting
from dronewatch.models.telemetry import Device, TelemetryRecord

__all__ = [
    "AppSettings",
    "Device",
    "LocationEstimate",
    "LocationSourceTag",
    "PresenceEntry",
    "Sighting",
    "TelemetryRecord",
]
