"""Tests for LocationResolver — fallback order, thresholds and precision."""

from __future__ import annotations

import asyncio
import math
import random
from unittest.mock import AsyncMock

import pytest

from dronewatch.errors import SourceUnavailableError
from dronewatch.location.resolver import (
    COARSE_THRESHOLD_M,
    PRECISE_THRESHOLD_M,
    ChainStep,
    LocationResolver,
    build_resolver,
)
from dronewatch.location.sources import CachedDriftSource, CallableSource, SyntheticSource
from dronewatch.models.location import LocationEstimate, LocationSourceTag
from tests._helpers import estimate

T = LocationSourceTag


def _source(tag: LocationSourceTag, result: object) -> CallableSource:
    """Source whose lookup returns (or raises) *result*."""
    if isinstance(result, BaseException):
        fn = AsyncMock(side_effect=result)
    else:
        fn = AsyncMock(return_value=result)
    return CallableSource(tag, fn)


class TestChainStep:
    def test_runs_when_nothing_found(self) -> None:
        assert ChainStep(_source(T.IP, None), COARSE_THRESHOLD_M).should_try(None)
        assert ChainStep(_source(T.SYNTHETIC, None), None).should_try(None)

    def test_threshold(self) -> None:
        step = ChainStep(_source(T.NETWORK, None), PRECISE_THRESHOLD_M)
        assert step.should_try(estimate(150.0))
        assert not step.should_try(estimate(100.0))
        assert not step.should_try(estimate(20.0))

    def test_none_threshold_only_when_empty(self) -> None:
        step = ChainStep(_source(T.CACHED_DRIFT, None), None)
        assert not step.should_try(estimate(5000.0))


class TestResolve:
    @pytest.mark.asyncio
    async def test_precise_gps_short_circuits(self) -> None:
        network_fn = AsyncMock(return_value=estimate(30.0, T.NETWORK))
        ip_fn = AsyncMock(return_value=estimate(5000.0, T.IP))
        resolver = LocationResolver(
            [
                ChainStep(_source(T.GPS, estimate(8.0, T.GPS))),
                ChainStep(CallableSource(T.NETWORK, network_fn), PRECISE_THRESHOLD_M),
                ChainStep(CallableSource(T.IP, ip_fn), COARSE_THRESHOLD_M),
                ChainStep(SyntheticSource(), None),
            ]
        )

        result = await resolver.resolve("d1")

        assert result.source is T.GPS
        network_fn.assert_not_awaited()
        ip_fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_imprecise_gps_escalates_to_network(self) -> None:
        resolver = LocationResolver(
            [
                ChainStep(_source(T.GPS, estimate(250.0, T.GPS))),
                ChainStep(_source(T.NETWORK, estimate(40.0, T.NETWORK)), PRECISE_THRESHOLD_M),
            ]
        )
        result = await resolver.resolve("d1")
        assert result.source is T.NETWORK
        assert result.accuracy_m == 40.0

    @pytest.mark.asyncio
    async def test_less_precise_candidate_never_replaces_best(self) -> None:
        resolver = LocationResolver(
            [
                ChainStep(_source(T.GPS, estimate(150.0, T.GPS))),
                ChainStep(_source(T.NETWORK, estimate(400.0, T.NETWORK)), PRECISE_THRESHOLD_M),
                ChainStep(_source(T.SURVEY, estimate(90.0, T.SURVEY)), PRECISE_THRESHOLD_M),
                ChainStep(_source(T.IP, estimate(5000.0, T.IP)), COARSE_THRESHOLD_M),
            ]
        )
        result = await resolver.resolve("d1")
        assert result.source is T.SURVEY
        assert result.accuracy_m == 90.0

    @pytest.mark.asyncio
    async def test_ip_consulted_only_when_coarse(self) -> None:
        ip_fn = AsyncMock(return_value=estimate(5000.0, T.IP))
        resolver = LocationResolver(
            [
                ChainStep(_source(T.NETWORK, estimate(800.0, T.NETWORK))),
                ChainStep(CallableSource(T.IP, ip_fn), COARSE_THRESHOLD_M),
            ]
        )
        result = await resolver.resolve("d1")
        assert result.source is T.NETWORK
        ip_fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unavailable_sources_escalate(self) -> None:
        resolver = LocationResolver(
            [
                ChainStep(_source(T.GPS, SourceUnavailableError("gps", "no fix"))),
                ChainStep(_source(T.NETWORK, RuntimeError("driver crashed")), PRECISE_THRESHOLD_M),
                ChainStep(_source(T.IP, None), COARSE_THRESHOLD_M),
                ChainStep(SyntheticSource(), None),
            ]
        )
        result = await resolver.resolve("d1")
        assert result.source is T.SYNTHETIC

    @pytest.mark.asyncio
    async def test_timeout_treated_as_unavailable(self) -> None:
        async def _hang(device_id: str) -> LocationEstimate:
            await asyncio.sleep(10)
            return estimate(1.0)

        resolver = LocationResolver(
            [
                ChainStep(CallableSource(T.GPS, _hang)),
                ChainStep(_source(T.IP, estimate(5000.0, T.IP)), COARSE_THRESHOLD_M),
            ],
            timeout=0.05,
        )
        result = await resolver.resolve("d1")
        assert result.source is T.IP

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "bad",
        [
            LocationEstimate(math.nan, 0.0, 10.0, T.GPS),
            LocationEstimate(95.0, 0.0, 10.0, T.GPS),
            LocationEstimate(0.0, 200.0, 10.0, T.GPS),
            LocationEstimate(1.0, 1.0, -5.0, T.GPS),
        ],
    )
    async def test_unusable_estimate_ignored(self, bad: LocationEstimate) -> None:
        resolver = LocationResolver(
            [ChainStep(_source(T.GPS, bad)), ChainStep(SyntheticSource(), None)]
        )
        result = await resolver.resolve("d1")
        assert result.source is T.SYNTHETIC

    @pytest.mark.asyncio
    async def test_never_empty(self) -> None:
        resolver = LocationResolver([ChainStep(_source(T.GPS, None))])
        result = await resolver.resolve("d1")
        assert result.source is T.SYNTHETIC

    def test_empty_chain_rejected(self) -> None:
        with pytest.raises(ValueError):
            LocationResolver([])


class TestMemory:
    @pytest.mark.asyncio
    async def test_cached_drift_used_when_sources_fail(self) -> None:
        gps = AsyncMock(return_value=estimate(20.0, T.GPS, latitude=10.0, longitude=20.0))
        resolver = build_resolver(gps=gps)

        first = await resolver.resolve("d1")
        assert first.source is T.GPS

        gps.return_value = None
        second = await resolver.resolve("d1")

        assert second.source is T.CACHED_DRIFT
        assert abs(second.latitude - 10.0) <= 0.0005
        assert abs(second.longitude - 20.0) <= 0.0005
        assert second.accuracy_m == 30.0

    @pytest.mark.asyncio
    async def test_synthetic_for_unknown_device(self) -> None:
        resolver = build_resolver()
        result = await resolver.resolve("never-seen")
        assert result.source is T.SYNTHETIC

    @pytest.mark.asyncio
    async def test_describe_and_clear(self) -> None:
        resolver = build_resolver(gps=AsyncMock(return_value=estimate(12.0, T.GPS)))
        assert resolver.describe("d1") == "No location data"

        await resolver.resolve("d1")
        assert resolver.describe("d1").startswith("Source: GPS | Accuracy: ±12m")
        assert resolver.recall("d1") is not None

        resolver.clear_cache()
        assert resolver.recall("d1") is None

    @pytest.mark.asyncio
    async def test_forget_drops_one_device(self) -> None:
        gps = AsyncMock(return_value=estimate(20.0, T.GPS, latitude=10.0, longitude=20.0))
        resolver = build_resolver(gps=gps)
        await resolver.resolve("d1")
        await resolver.resolve("d2")

        resolver.forget("d1")
        resolver.forget("never-seen")

        assert resolver.recall("d1") is None
        assert resolver.describe("d1") == "No location data"
        assert resolver.recall("d2") is not None

        gps.return_value = None
        # Without a remembered fix there is nothing to drift from.
        assert (await resolver.resolve("d1")).source is T.SYNTHETIC
        assert (await resolver.resolve("d2")).source is T.CACHED_DRIFT


class TestBuildResolver:
    def test_standard_chain_order(self) -> None:
        resolver = build_resolver(
            gps=AsyncMock(),
            network=AsyncMock(),
            survey=AsyncMock(),
            ip_url="http://ip.test/json",
        )
        tags = [step.source.tag for step in resolver.chain]
        assert tags == [T.GPS, T.NETWORK, T.SURVEY, T.IP, T.CACHED_DRIFT, T.SYNTHETIC]
        thresholds = [step.try_above for step in resolver.chain]
        assert thresholds == [
            math.inf,
            PRECISE_THRESHOLD_M,
            PRECISE_THRESHOLD_M,
            COARSE_THRESHOLD_M,
            None,
            None,
        ]

    def test_missing_backends_left_out(self) -> None:
        resolver = build_resolver()
        assert [s.source.tag for s in resolver.chain] == [T.CACHED_DRIFT, T.SYNTHETIC]

    @pytest.mark.asyncio
    async def test_aclose_tolerates_sources_without_resources(self) -> None:
        await build_resolver().aclose()


class TestSources:
    @pytest.mark.asyncio
    async def test_synthetic_is_deterministic(self) -> None:
        a = await SyntheticSource().lookup("Drone-Alpha-001")
        b = await SyntheticSource().lookup("Drone-Alpha-001")
        c = await SyntheticSource().lookup("Drone-Beta-002")

        assert (a.latitude, a.longitude) == (b.latitude, b.longitude)
        assert (a.latitude, a.longitude) != (c.latitude, c.longitude)
        assert a.accuracy_m == 50.0

    def test_synthetic_stays_near_origin(self) -> None:
        source = SyntheticSource((40.7128, -74.0060))
        for i in range(100):
            p = source.point_for(f"dev-{i}")
            assert abs(p.latitude - 40.7128) <= 0.05
            assert abs(p.longitude - -74.0060) <= 0.05

    @pytest.mark.asyncio
    async def test_drift_without_history(self) -> None:
        source = CachedDriftSource(lambda device_id: None)
        assert await source.lookup("d1") is None

    @pytest.mark.asyncio
    async def test_drift_is_bounded(self) -> None:
        previous = estimate(40.0, T.NETWORK, latitude=1.0, longitude=2.0)
        source = CachedDriftSource(lambda device_id: previous, rng=random.Random(7))
        for _ in range(50):
            moved = await source.lookup("d1")
            assert moved is not None
            assert abs(moved.latitude - 1.0) <= 0.0005
            assert abs(moved.longitude - 2.0) <= 0.0005
            assert moved.accuracy_m == 50.0
            assert moved.source is T.CACHED_DRIFT
