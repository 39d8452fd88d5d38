"""End-to-end tests for HubServer over real WebSocket connections."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
import websockets.asyncio.client as ws_client

from dronewatch.hub.hub import TelemetryHub
from dronewatch.hub.server import HubServer
from dronewatch.storage.gateway import SQLiteGateway
from tests._helpers import ALPHA, make_payload


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestHubServer:
    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        server = HubServer(TelemetryHub(), port=0)
        await server.start()
        assert server.port != 0
        assert server.url.startswith("ws://127.0.0.1:")
        await server.stop()

    @pytest.mark.asyncio
    async def test_device_reading_persisted_and_relayed_verbatim(
        self, gateway: SQLiteGateway
    ) -> None:
        hub = TelemetryHub(gateway)
        server = HubServer(hub, port=0)
        await server.start()
        payload = (
            '{"deviceId":"Drone-Alpha-001","latitude":40.0,"longitude":-74.0,'
            '"batteryPercent":55}'
        )
        try:
            async with (
                ws_client.connect(server.url) as observer,
                ws_client.connect(server.url) as device,
            ):
                await _wait_for(lambda: hub.connection_count == 2)
                await device.send(payload)

                received = await asyncio.wait_for(observer.recv(), timeout=2)
                assert received == payload

            history = await gateway.get_history(ALPHA, 10)
            assert len(history) == 1
            assert history[0].latitude == 40.0
            assert history[0].battery_level == 55
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_malformed_message_keeps_connection_open(self) -> None:
        hub = TelemetryHub()
        server = HubServer(hub, port=0)
        await server.start()
        try:
            async with ws_client.connect(server.url) as ws:
                await ws.send("{broken")
                await ws.send(make_payload(battery=12))
                received = await asyncio.wait_for(ws.recv(), timeout=2)
                assert received == make_payload(battery=12)
            assert hub.rejected_count == 1
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_disconnect_removes_observer(self) -> None:
        hub = TelemetryHub()
        server = HubServer(hub, port=0)
        await server.start()
        try:
            async with ws_client.connect(server.url):
                await _wait_for(lambda: hub.connection_count == 1)
            await _wait_for(lambda: hub.connection_count == 0)
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_new_observer_gets_latest_reading(self, gateway: SQLiteGateway) -> None:
        hub = TelemetryHub(gateway, default_device_id=ALPHA)
        server = HubServer(hub, port=0)
        await server.start()
        try:
            await hub.on_message(None, make_payload(battery=42))
            async with ws_client.connect(server.url) as ws:
                replay = await asyncio.wait_for(ws.recv(), timeout=2)
            assert '"deviceId":"Drone-Alpha-001"' in replay
            assert '"batteryLevel":42' in replay
        finally:
            await server.stop()
