"""WebSocket observer client with automatic reconnection.

Receives hub broadcasts, parses each one into a :class:`TelemetryRecord`
and hands it to a callback.  Connection loss is reported to a
:class:`ReconnectController`, which decides whether and when to retry.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import TYPE_CHECKING, Any

from dronewatch.client.reconnect import ConnectionState, ReconnectController
from dronewatch.errors import PayloadError
from dronewatch.hub.codec import parse_payload

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from dronewatch.models.telemetry import TelemetryRecord

    MessageCallback = Callable[[TelemetryRecord, str], Awaitable[None] | None]

logger = logging.getLogger(__name__)


class ObserverClient:
    """Maintains one observer connection to a hub.

    Parameters:
        url: Hub WebSocket URL, e.g. ``ws://127.0.0.1:7070``.
        on_message: Called with ``(record, raw)`` for every valid broadcast.
        reconnect_delay: Seconds between a drop and the next attempt.
        max_attempts: Consecutive failed attempts before giving up.
        open_timeout: Handshake timeout per attempt.
    """

    def __init__(
        self,
        url: str,
        on_message: MessageCallback | None = None,
        *,
        reconnect_delay: float = 5.0,
        max_attempts: int = 5,
        open_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._on_message = on_message
        self._open_timeout = open_timeout
        self._ws: Any = None
        self._recv_task: asyncio.Task[None] | None = None
        self._received = 0
        self._invalid = 0
        self._controller = ReconnectController(
            self._open, delay=reconnect_delay, max_attempts=max_attempts
        )

    @property
    def controller(self) -> ReconnectController:
        return self._controller

    @property
    def state(self) -> ConnectionState:
        return self._controller.state

    @property
    def is_connected(self) -> bool:
        return self._controller.state is ConnectionState.CONNECTED

    @property
    def received_count(self) -> int:
        return self._received

    @property
    def invalid_count(self) -> int:
        return self._invalid

    # -- Public API ------------------------------------------------------------

    async def start(self) -> None:
        await self._controller.start()

    async def reconnect(self) -> None:
        """Drop the current connection (if any) and start a fresh attempt cycle."""
        await self._detach()
        await self._controller.reconnect()

    async def run_until_failed(self) -> None:
        """Start and block until reconnection is exhausted.

        Raises :class:`~dronewatch.errors.ReconnectExhaustedError`.
        """
        await self.start()
        await self._controller.wait_failed()

    async def send(self, payload: str) -> None:
        """Push a reading to the hub over the observer connection."""
        if self._ws is None:
            raise ConnectionError(f"Not connected to {self._url}")
        await self._ws.send(payload)

    async def close(self) -> None:
        await self._controller.close()
        await self._detach()

    # -- Internals -------------------------------------------------------------

    async def _open(self) -> None:
        import websockets.asyncio.client as ws_client

        ws = await ws_client.connect(self._url, open_timeout=self._open_timeout)
        self._ws = ws
        self._recv_task = asyncio.create_task(self._receive_loop(ws))
        logger.info("Connected to hub at %s", self._url)

    async def _detach(self) -> None:
        ws, task = self._ws, self._recv_task
        self._ws = None
        self._recv_task = None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _receive_loop(self, ws: Any) -> None:
        from websockets.exceptions import ConnectionClosed

        error: BaseException | None = None
        try:
            async for raw in ws:
                await self._handle(raw)
        except ConnectionClosed as exc:
            logger.info("Disconnected from hub: %s", exc)
        except Exception as exc:
            error = exc
        finally:
            # A detached socket belongs to a superseded connection; stay quiet.
            if ws is self._ws:
                self._ws = None
                self._recv_task = None
                self._controller.notify_disconnected(error)

    async def _handle(self, raw: str | bytes) -> None:
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        try:
            record = parse_payload(text)
        except PayloadError as exc:
            self._invalid += 1
            logger.warning("Error parsing message: %s", exc)
            return
        self._received += 1
        logger.debug("Received update from device: %s", record.device_id)
        if self._on_message is None:
            return
        try:
            result = self._on_message(record, text)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("Observer callback failed", exc_info=True)
