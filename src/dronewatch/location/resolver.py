"""Location resolver — best available estimate through a fallback chain.

The chain is an ordered list of :class:`ChainStep`.  Resolution is a fold
over it with a running best: a step is consulted only while the best so
far is worse than its threshold, and a candidate replaces the best only if
it is strictly more precise.  The final synthetic step always answers, so
:meth:`LocationResolver.resolve` never comes back empty-handed.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dronewatch.errors import SourceUnavailableError
from dronewatch.location.sources import (
    CachedDriftSource,
    CallableSource,
    IpGeolocationSource,
    SyntheticSource,
)
from dronewatch.models.location import LocationSourceTag

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    import httpx

    from dronewatch.location.sources import LocationSource
    from dronewatch.models.location import LocationEstimate

logger = logging.getLogger(__name__)

PRECISE_THRESHOLD_M = 100.0
COARSE_THRESHOLD_M = 1000.0


@dataclass(frozen=True, slots=True)
class ChainStep:
    """One source plus the condition under which it is consulted.

    ``try_above`` is an accuracy threshold in metres: the step runs while
    nothing has been found or the best so far is less precise than it.
    ``None`` means the step runs only when nothing has been found.
    """

    source: LocationSource
    try_above: float | None = math.inf

    def should_try(self, best: LocationEstimate | None) -> bool:
        if best is None:
            return True
        if self.try_above is None:
            return False
        return best.accuracy_m > self.try_above


class LocationResolver:
    """Resolves one device at a time through the configured chain.

    Parameters:
        chain: Steps in priority order.  Use :func:`build_resolver` for the
            standard GPS → network → survey → IP → cached → synthetic chain.
        timeout: Upper bound in seconds for each individual source lookup.
        memory: Dict the resolver records each final estimate into; share
            it with a :class:`CachedDriftSource` to enable drift fallback.
    """

    def __init__(
        self,
        chain: Sequence[ChainStep],
        *,
        timeout: float = 3.0,
        memory: dict[str, LocationEstimate] | None = None,
    ) -> None:
        if not chain:
            raise ValueError("Location chain must contain at least one step")
        self._chain = list(chain)
        self._timeout = timeout
        self._last: dict[str, LocationEstimate] = memory if memory is not None else {}
        self._resolved_at: dict[str, float] = {}

    @property
    def chain(self) -> list[ChainStep]:
        return list(self._chain)

    def recall(self, device_id: str) -> LocationEstimate | None:
        """Previous estimate for *device_id*, if any."""
        return self._last.get(device_id)

    async def resolve(self, device_id: str) -> LocationEstimate:
        best: LocationEstimate | None = None
        for step in self._chain:
            if not step.should_try(best):
                continue
            candidate = await self._lookup(step.source, device_id)
            if candidate is None:
                continue
            if best is None or candidate.accuracy_m < best.accuracy_m:
                best = candidate

        if best is None:
            # Only reachable with a custom chain lacking a synthetic step.
            best = SyntheticSource().point_for(device_id)

        self._last[device_id] = best
        self._resolved_at[device_id] = time.monotonic()
        logger.debug(
            "Device %s located at %.6f, %.6f (source: %s, accuracy: %.0fm)",
            device_id,
            best.latitude,
            best.longitude,
            best.source.value,
            best.accuracy_m,
        )
        return best

    async def _lookup(self, source: LocationSource, device_id: str) -> LocationEstimate | None:
        try:
            estimate = await asyncio.wait_for(source.lookup(device_id), timeout=self._timeout)
        except TimeoutError:
            logger.debug("%s lookup timed out after %.1fs", source.tag.value, self._timeout)
            return None
        except SourceUnavailableError as exc:
            logger.debug("%s", exc)
            return None
        except Exception:
            logger.debug("%s lookup failed", source.tag.value, exc_info=True)
            return None
        if estimate is None or not _is_usable(estimate):
            return None
        return estimate

    def describe(self, device_id: str) -> str:
        """Human-readable summary of the last estimate for *device_id*."""
        est = self._last.get(device_id)
        if est is None:
            return "No location data"
        age = int(time.monotonic() - self._resolved_at.get(device_id, time.monotonic()))
        return f"Source: {est.source.value} | Accuracy: ±{est.accuracy_m:.0f}m | Age: {age}s"

    def forget(self, device_id: str) -> None:
        """Drop the remembered estimate for a device that is no longer around."""
        self._last.pop(device_id, None)
        self._resolved_at.pop(device_id, None)

    def clear_cache(self) -> None:
        self._last.clear()
        self._resolved_at.clear()

    async def aclose(self) -> None:
        """Release source resources (HTTP clients)."""
        for step in self._chain:
            closer = getattr(step.source, "aclose", None)
            if closer is None:
                continue
            try:
                await closer()
            except Exception:
                logger.debug("Error closing %s source", step.source.tag.value, exc_info=True)


def _is_usable(estimate: LocationEstimate) -> bool:
    return (
        math.isfinite(estimate.latitude)
        and math.isfinite(estimate.longitude)
        and math.isfinite(estimate.accuracy_m)
        and -90.0 <= estimate.latitude <= 90.0
        and -180.0 <= estimate.longitude <= 180.0
        and estimate.accuracy_m >= 0
    )


def build_resolver(
    *,
    gps: Callable[[str], Awaitable[LocationEstimate | None]] | None = None,
    network: Callable[[str], Awaitable[LocationEstimate | None]] | None = None,
    survey: Callable[[str], Awaitable[LocationEstimate | None]] | None = None,
    ip_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 3.0,
    origin: tuple[float, float] | None = None,
) -> LocationResolver:
    """Assemble the standard six-step chain.

    Host-specific backends (*gps*, *network*, *survey*) are optional; a
    missing one is simply left out of the chain.
    """
    steps: list[ChainStep] = []
    if gps is not None:
        steps.append(ChainStep(CallableSource(LocationSourceTag.GPS, gps)))
    if network is not None:
        steps.append(
            ChainStep(CallableSource(LocationSourceTag.NETWORK, network), PRECISE_THRESHOLD_M)
        )
    if survey is not None:
        steps.append(
            ChainStep(CallableSource(LocationSourceTag.SURVEY, survey), PRECISE_THRESHOLD_M)
        )
    if ip_url:
        steps.append(
            ChainStep(
                IpGeolocationSource(ip_url, client=http_client, timeout=timeout),
                COARSE_THRESHOLD_M,
            )
        )

    memory: dict[str, LocationEstimate] = {}
    steps.append(ChainStep(CachedDriftSource(memory.get), None))
    steps.append(ChainStep(SyntheticSource(origin) if origin else SyntheticSource(), None))
    return LocationResolver(steps, timeout=timeout, memory=memory)
