"""Location resolution — prioritised fallback chain of positioning sources."""

from __future__ import annotations

from dronewatch.location.resolver import (
    COARSE_THRESHOLD_M,
    PRECISE_THRESHOLD_M,
    ChainStep,
    LocationResolver,
    build_resolver,
)
from dronewatch.location.sources import (
    CachedDriftSource,
    CallableSource,
    IpGeolocationSource,
    SyntheticSource,
)

__all__ = [
    "COARSE_THRESHOLD_M",
    "PRECISE_THRESHOLD_M",
    "CachedDriftSource",
    "CallableSource",
    "ChainStep",
    "IpGeolocationSource",
    "LocationResolver",
    "SyntheticSource",
    "build_resolver",
]
