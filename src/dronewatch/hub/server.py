"""Async WebSocket server binding observers to the :class:`TelemetryHub`.

Devices push readings over the same connection type observers listen on,
so every inbound text frame goes through :meth:`TelemetryHub.on_message`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import websockets.asyncio.server as ws_server

    from dronewatch.hub.hub import TelemetryHub

logger = logging.getLogger(__name__)


class HubServer:
    """WebSocket front-end for a :class:`TelemetryHub`.

    ``port=0`` lets the OS choose; read :attr:`port` after :meth:`start`.
    """

    def __init__(self, hub: TelemetryHub, *, host: str = "127.0.0.1", port: int = 7070) -> None:
        self._hub = hub
        self._host = host
        self._port = port
        self._server: ws_server.Server | None = None

    @property
    def hub(self) -> TelemetryHub:
        return self._hub

    @property
    def port(self) -> int:
        """The bound port (resolves ``0`` once listening)."""
        if self._server is not None:
            for sock in self._server.sockets:
                return int(sock.getsockname()[1])
        return self._port

    @property
    def url(self) -> str:
        return f"ws://{self._host}:{self.port}"

    async def start(self) -> None:
        """Run the hub's start-up check and begin listening."""
        import websockets.asyncio.server as ws_server_mod

        await self._hub.on_start()
        self._server = await ws_server_mod.serve(
            self._handler,
            host=self._host,
            port=self._port,
        )
        logger.info("Telemetry hub listening on %s", self.url)

    async def stop(self) -> None:
        """Close observer connections, then the listening socket."""
        await self._hub.close_all()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("Telemetry hub stopped")

    async def _handler(self, websocket: Any) -> None:
        """Serve one connection until it closes.

        Errors on one connection are logged and never reach the server or
        other observers.
        """
        from websockets.exceptions import ConnectionClosed

        remote = getattr(websocket, "remote_address", ("unknown", 0))
        await self._hub.on_connect(websocket)
        try:
            async for message in websocket:
                await self._hub.on_message(websocket, message)
        except ConnectionClosed:
            logger.debug("Connection closed: %s", remote)
        except Exception as exc:
            logger.warning("Connection error from %s", remote, exc_info=True)
            await self._hub.on_error(websocket, exc)
        finally:
            await self._hub.on_close(websocket)
