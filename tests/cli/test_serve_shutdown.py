"""Tests for the ordered teardown in ``dronewatch serve``."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest

from dronewatch.cli.serve import _shutdown


def _recorder(order: list[str], name: str, exc: BaseException | None = None) -> AsyncMock:
    async def _step(*args: Any) -> None:
        order.append(name)
        if exc is not None:
            raise exc

    return AsyncMock(side_effect=_step)


def _http(order: list[str]) -> tuple[SimpleNamespace, asyncio.Task[None]]:
    uvi_server = SimpleNamespace(should_exit=False)

    async def _serve() -> None:
        while not uvi_server.should_exit:
            await asyncio.sleep(0.005)
        order.append("http")

    return uvi_server, asyncio.create_task(_serve())


class TestShutdown:
    @pytest.mark.asyncio
    async def test_steps_run_in_order(self) -> None:
        order: list[str] = []
        presence = SimpleNamespace(stop=_recorder(order, "presence"))
        server = SimpleNamespace(stop=_recorder(order, "observers"))
        resolver = SimpleNamespace(aclose=_recorder(order, "resolver"))
        gateway = SimpleNamespace(close=_recorder(order, "gateway"))
        uvi_server, http_task = _http(order)

        await _shutdown(presence, server, uvi_server, http_task, resolver, gateway)  # type: ignore[arg-type]

        assert order == ["presence", "observers", "http", "resolver", "gateway"]
        assert uvi_server.should_exit is True

    @pytest.mark.asyncio
    async def test_failing_steps_do_not_skip_later_ones(self) -> None:
        order: list[str] = []
        presence = SimpleNamespace(stop=_recorder(order, "presence", RuntimeError("scan stuck")))
        server = SimpleNamespace(stop=_recorder(order, "observers", OSError("socket gone")))
        resolver = SimpleNamespace(aclose=_recorder(order, "resolver", RuntimeError("http")))
        gateway = SimpleNamespace(close=_recorder(order, "gateway"))

        await _shutdown(presence, server, None, None, resolver, gateway)  # type: ignore[arg-type]

        assert order == ["presence", "observers", "resolver", "gateway"]
        resolver.aclose.assert_awaited_once()
        gateway.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_http_ingress_tolerated(self) -> None:
        order: list[str] = []

        async def _crashed() -> None:
            await asyncio.sleep(0.01)
            raise OSError("HTTP ingress failed to start on port 7071")

        http_task = asyncio.create_task(_crashed())
        presence = SimpleNamespace(stop=_recorder(order, "presence"))
        server = SimpleNamespace(stop=_recorder(order, "observers"))
        resolver = SimpleNamespace(aclose=_recorder(order, "resolver"))
        gateway = SimpleNamespace(close=_recorder(order, "gateway"))

        await _shutdown(
            presence, server, SimpleNamespace(should_exit=False), http_task, resolver, gateway  # type: ignore[arg-type]
        )

        assert order == ["presence", "observers", "resolver", "gateway"]
