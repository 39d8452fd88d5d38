"""Tests for ObserverClient against a real in-process hub."""

from __future__ import annotations

import asyncio
import socket
from collections.abc import AsyncIterator, Callable

import pytest

from dronewatch.client.observer import ObserverClient
from dronewatch.client.reconnect import ConnectionState
from dronewatch.errors import ReconnectExhaustedError
from dronewatch.hub.hub import TelemetryHub
from dronewatch.hub.server import HubServer
from dronewatch.models.telemetry import TelemetryRecord
from tests._helpers import ALPHA, make_payload


async def _eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


@pytest.fixture()
async def hub_server() -> AsyncIterator[HubServer]:
    server = HubServer(TelemetryHub(), port=0)
    await server.start()
    yield server
    await server.stop()


class TestObserverClient:
    @pytest.mark.asyncio
    async def test_receives_broadcasts(self, hub_server: HubServer) -> None:
        received: list[tuple[TelemetryRecord, str]] = []
        client = ObserverClient(hub_server.url, lambda r, raw: received.append((r, raw)))
        try:
            await client.start()
            assert client.is_connected
            await _eventually(lambda: hub_server.hub.connection_count == 1)

            await hub_server.hub.on_message(None, make_payload(battery=64))
            await _eventually(lambda: len(received) == 1)
        finally:
            await client.close()

        record, raw = received[0]
        assert record.device_id == ALPHA
        assert record.battery_level == 64
        assert raw == make_payload(battery=64)
        assert client.received_count == 1

    @pytest.mark.asyncio
    async def test_async_callback(self, hub_server: HubServer) -> None:
        got = asyncio.Event()

        async def _on_message(record: TelemetryRecord, raw: str) -> None:
            got.set()

        client = ObserverClient(hub_server.url, _on_message)
        try:
            await client.start()
            await _eventually(lambda: hub_server.hub.connection_count == 1)
            await hub_server.hub.on_message(None, make_payload())
            await asyncio.wait_for(got.wait(), timeout=2)
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_invalid_broadcast_counted_not_fatal(self, hub_server: HubServer) -> None:
        client = ObserverClient(hub_server.url)
        try:
            await client.start()
            await _eventually(lambda: hub_server.hub.connection_count == 1)

            await hub_server.hub.broadcast("not a reading")
            await hub_server.hub.on_message(None, make_payload())
            await _eventually(lambda: client.received_count == 1)

            assert client.invalid_count == 1
            assert client.is_connected
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_send_reaches_hub(self, hub_server: HubServer) -> None:
        client = ObserverClient(hub_server.url)
        try:
            await client.start()
            await client.send(make_payload(battery=12))
            await _eventually(lambda: hub_server.hub.message_count == 1)
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_send_when_disconnected(self) -> None:
        client = ObserverClient("ws://127.0.0.1:1")
        with pytest.raises(ConnectionError):
            await client.send(make_payload())

    @pytest.mark.asyncio
    async def test_close_disconnects(self, hub_server: HubServer) -> None:
        client = ObserverClient(hub_server.url)
        await client.start()
        await _eventually(lambda: hub_server.hub.connection_count == 1)

        await client.close()

        assert client.state is ConnectionState.DISCONNECTED
        await _eventually(lambda: hub_server.hub.connection_count == 0)


class TestObserverReconnect:
    @pytest.mark.asyncio
    async def test_gives_up_on_unreachable_hub(self) -> None:
        client = ObserverClient(
            f"ws://127.0.0.1:{_free_port()}", reconnect_delay=0.01, max_attempts=3
        )
        try:
            with pytest.raises(ReconnectExhaustedError):
                await asyncio.wait_for(client.run_until_failed(), timeout=5)
            assert client.state is ConnectionState.FAILED
            assert client.controller.attempts == 3
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_reconnects_after_hub_restart(self) -> None:
        first = HubServer(TelemetryHub(), port=0)
        await first.start()
        port = first.port

        client = ObserverClient(first.url, reconnect_delay=0.05, max_attempts=20)
        second: HubServer | None = None
        try:
            await client.start()
            assert client.is_connected

            await first.stop()
            await _eventually(lambda: not client.is_connected)

            second = HubServer(TelemetryHub(), port=port)
            await second.start()
            await _eventually(lambda: client.is_connected, timeout=5)
            await _eventually(lambda: second.hub.connection_count == 1)  # type: ignore[union-attr]
        finally:
            await client.close()
            if second is not None:
                await second.stop()

    @pytest.mark.asyncio
    async def test_manual_reconnect_after_failure(self, hub_server: HubServer) -> None:
        client = ObserverClient(
            f"ws://127.0.0.1:{_free_port()}", reconnect_delay=0.01, max_attempts=1
        )
        try:
            await client.start()
            assert client.state is ConnectionState.FAILED

            client._url = hub_server.url
            await client.reconnect()

            assert client.is_connected
        finally:
            await client.close()
