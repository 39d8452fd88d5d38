"""Location sources for the resolver chain.

Every source exposes ``tag`` and ``async lookup(device_id)`` returning a
:class:`LocationEstimate` or ``None``.  Raising
:class:`SourceUnavailableError` (or anything else) means "unavailable";
the resolver moves on to the next source.
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
from typing import TYPE_CHECKING, Any, Protocol

from dronewatch.errors import SourceUnavailableError
from dronewatch.models.location import LocationEstimate, LocationSourceTag

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import httpx

logger = logging.getLogger(__name__)

# Origin for synthetic fallback points (New York City).
DEFAULT_ORIGIN = (40.7128, -74.0060)

IP_ACCURACY_M = 5000.0
SYNTHETIC_ACCURACY_M = 50.0
SYNTHETIC_SPREAD_DEG = 0.1  # ±0.05° ≈ ±5 km
DRIFT_SPREAD_DEG = 0.001  # ±0.0005° ≈ ±50 m
DRIFT_ACCURACY_PENALTY_M = 10.0
_IP_CACHE_SECONDS = 300.0


class LocationSource(Protocol):
    tag: LocationSourceTag

    async def lookup(self, device_id: str) -> LocationEstimate | None: ...


class CallableSource:
    """Adapts a host-supplied coroutine function into a chain source.

    Used for GPS, network-assisted and radio-survey positioning, whose real
    backends are platform specific.
    """

    def __init__(
        self,
        tag: LocationSourceTag,
        fn: Callable[[str], Awaitable[LocationEstimate | None]],
    ) -> None:
        self.tag = tag
        self._fn = fn

    async def lookup(self, device_id: str) -> LocationEstimate | None:
        return await self._fn(device_id)

    def __repr__(self) -> str:
        return f"CallableSource({self.tag.value})"


class IpGeolocationSource:
    """Coarse position of this host from an ip-api compatible endpoint.

    The answer does not depend on the device, so one lookup is reused for
    every device for a few minutes.
    """

    tag = LocationSourceTag.IP

    def __init__(
        self,
        url: str = "http://ip-api.com/json/?fields=lat,lon,status",
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
        cache_seconds: float = _IP_CACHE_SECONDS,
    ) -> None:
        self._url = url
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._cache_seconds = cache_seconds
        self._cached: tuple[float, float] | None = None
        self._cached_at = 0.0

    async def lookup(self, device_id: str) -> LocationEstimate | None:
        now = time.monotonic()
        if self._cached is None or now - self._cached_at > self._cache_seconds:
            self._cached = await self._fetch()
            self._cached_at = now
        lat, lon = self._cached
        return LocationEstimate(lat, lon, IP_ACCURACY_M, self.tag)

    async def _fetch(self) -> tuple[float, float]:
        import httpx

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        try:
            resp = await self._client.get(self._url)
            resp.raise_for_status()
            body: dict[str, Any] = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SourceUnavailableError("ip", str(exc)) from exc

        if body.get("status") != "success":
            raise SourceUnavailableError("ip", f"status={body.get('status')!r}")
        try:
            lat, lon = float(body["lat"]), float(body["lon"])
        except (KeyError, TypeError, ValueError) as exc:
            raise SourceUnavailableError("ip", "response missing lat/lon") from exc
        if lat == 0.0 and lon == 0.0:
            raise SourceUnavailableError("ip", "null island")
        logger.info("IP geolocation obtained: %.4f, %.4f", lat, lon)
        return lat, lon

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class CachedDriftSource:
    """Re-use the device's previous estimate, nudged to simulate motion."""

    tag = LocationSourceTag.CACHED_DRIFT

    def __init__(
        self,
        recall: Callable[[str], LocationEstimate | None],
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._recall = recall
        self._rng = rng or random.Random()

    async def lookup(self, device_id: str) -> LocationEstimate | None:
        previous = self._recall(device_id)
        if previous is None:
            return None
        d_lat = (self._rng.random() - 0.5) * DRIFT_SPREAD_DEG
        d_lon = (self._rng.random() - 0.5) * DRIFT_SPREAD_DEG
        return LocationEstimate(
            previous.latitude + d_lat,
            previous.longitude + d_lon,
            previous.accuracy_m + DRIFT_ACCURACY_PENALTY_M,
            self.tag,
        )


class SyntheticSource:
    """Deterministic pseudo-random point per device.

    Seeded from a SHA-256 of the device id (not :func:`hash`, which is
    salted per process) so a device lands on the same point every run.
    """

    tag = LocationSourceTag.SYNTHETIC

    def __init__(self, origin: tuple[float, float] = DEFAULT_ORIGIN) -> None:
        self._origin = origin

    async def lookup(self, device_id: str) -> LocationEstimate:
        return self.point_for(device_id)

    def point_for(self, device_id: str) -> LocationEstimate:
        seed = int.from_bytes(hashlib.sha256(device_id.encode("utf-8")).digest()[:8], "big")
        rng = random.Random(seed)
        lat = self._origin[0] + (rng.random() - 0.5) * SYNTHETIC_SPREAD_DEG
        lon = self._origin[1] + (rng.random() - 0.5) * SYNTHETIC_SPREAD_DEG
        return LocationEstimate(lat, lon, SYNTHETIC_ACCURACY_M, self.tag)
