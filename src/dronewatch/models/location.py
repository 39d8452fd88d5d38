"""Location estimate produced by the resolver chain."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum


class LocationSourceTag(StrEnum):
    """Where an estimate came from, most precise first."""

    GPS = "GPS"
    NETWORK = "NETWORK"
    SURVEY = "SURVEY"
    IP = "IP"
    CACHED_DRIFT = "CACHED_DRIFT"
    SYNTHETIC = "SYNTHETIC"


@dataclass(frozen=True, slots=True)
class LocationEstimate:
    """A single position fix.  Lower ``accuracy_m`` is better."""

    latitude: float
    longitude: float
    accuracy_m: float
    source: LocationSourceTag
    produced_at: datetime = field(default_factory=lambda: datetime.now(UTC))
