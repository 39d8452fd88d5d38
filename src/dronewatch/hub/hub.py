"""Telemetry hub — single broadcast point for live readings.

Transport-agnostic: the WebSocket server and the HTTP ingress both feed
:meth:`TelemetryHub.on_message` / :meth:`TelemetryHub.ingest`.  Each accepted
reading is persisted and then broadcast verbatim to every open connection.

All state mutation (connection set, persist + broadcast) runs under one
:class:`asyncio.Lock`, so broadcast order equals arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol

from dronewatch.errors import PayloadError, PersistenceError
from dronewatch.hub.codec import encode_record, parse_payload

if TYPE_CHECKING:
    from dronewatch.models.telemetry import TelemetryRecord
    from dronewatch.storage.gateway import PersistenceGateway

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """One observer.  ``websockets`` server connections satisfy this."""

    async def send(self, message: str | bytes) -> None: ...

    async def close(self) -> None: ...


class TelemetryHub:
    """Owns the open-connection set and the persist → broadcast pipeline.

    Parameters:
        gateway: Persistence gateway, or ``None`` to run broadcast-only.
        default_device_id: Device whose latest reading is replayed to each
            new observer (``None`` disables the replay).
        send_timeout: Per-connection send bound in seconds.  A slow or
            failing observer is skipped, never removed.
    """

    def __init__(
        self,
        gateway: PersistenceGateway | None = None,
        *,
        default_device_id: str | None = None,
        send_timeout: float = 2.0,
    ) -> None:
        self._gateway = gateway
        self._default_device_id = default_device_id
        self._send_timeout = send_timeout
        self._connections: dict[Connection, None] = {}
        self._lock = asyncio.Lock()
        self._degraded = gateway is None
        self._message_count = 0
        self._rejected_count = 0
        self._persist_failures = 0
        self._send_failures = 0

    # -- Introspection -----------------------------------------------------

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def degraded(self) -> bool:
        """``True`` while persistence is unreachable or the last write failed."""
        return self._degraded

    @property
    def message_count(self) -> int:
        """Readings accepted (persisted or not) and broadcast."""
        return self._message_count

    @property
    def rejected_count(self) -> int:
        return self._rejected_count

    @property
    def persist_failures(self) -> int:
        return self._persist_failures

    @property
    def send_failures(self) -> int:
        return self._send_failures

    def connections(self) -> list[Connection]:
        """Snapshot of the open connections, in registration order."""
        return list(self._connections)

    # -- Lifecycle -------------------------------------------------------------

    async def on_start(self) -> bool:
        """Check that persistence is reachable.

        The hub keeps accepting connections and broadcasting either way;
        when this returns ``False`` every write is attempted and logged
        per message.
        """
        if self._gateway is None:
            logger.warning("No persistence gateway configured — broadcast only")
            self._degraded = True
            return False
        try:
            ok = await self._gateway.ping()
        except Exception:
            logger.warning("Persistence health check raised", exc_info=True)
            ok = False
        self._degraded = not ok
        if ok:
            logger.info("Persistence gateway reachable")
        else:
            logger.warning("Persistence gateway unreachable — running degraded")
        return ok

    async def on_connect(self, conn: Connection) -> None:
        """Register *conn* and replay the default device's latest reading."""
        async with self._lock:
            self._connections[conn] = None
            logger.info("Observer connected (total: %d)", len(self._connections))

            latest = await self._load_latest()
            if latest is not None:
                await self._send_one(conn, encode_record(latest))

    async def on_close(self, conn: Connection) -> None:
        """Forget *conn*.  Unknown connections are ignored."""
        async with self._lock:
            if conn in self._connections:
                del self._connections[conn]
                logger.info("Observer disconnected (remaining: %d)", len(self._connections))

    async def on_error(self, conn: Connection, exc: BaseException | None = None) -> None:
        if exc is not None:
            logger.warning("Observer connection error: %s", exc)
        await self.on_close(conn)

    async def close_all(self) -> None:
        """Close every observer connection, tolerating individual failures."""
        async with self._lock:
            targets = list(self._connections)
            self._connections.clear()
        for conn in targets:
            try:
                await conn.close()
            except Exception:
                logger.debug("Error closing observer connection", exc_info=True)
        if targets:
            logger.info("Closed %d observer connection(s)", len(targets))

    # -- Inbound -----------------------------------------------------------------

    async def on_message(self, conn: Connection | None, payload: str | bytes) -> bool:
        """Handle one inbound message from *conn*.

        Malformed payloads are logged and dropped; the connection stays
        open.  Returns ``True`` when the reading was accepted.
        """
        try:
            record = parse_payload(payload)
        except PayloadError as exc:
            self._rejected_count += 1
            logger.warning("Dropping malformed payload: %s", exc)
            return False

        await self.publish(record, payload)
        return True

    async def ingest(self, payload: str | bytes) -> TelemetryRecord:
        """Accept a reading from a request/response endpoint.

        Unlike :meth:`on_message` this raises :class:`PayloadError` so the
        caller can report the rejection.
        """
        record = parse_payload(payload)
        await self.publish(record, payload)
        return record

    async def publish(self, record: TelemetryRecord, payload: str | bytes | None = None) -> int:
        """Persist *record* and broadcast *payload* (or its encoding).

        Returns the number of observers that received the broadcast.
        """
        message = payload if payload is not None else encode_record(record)
        async with self._lock:
            self._message_count += 1
            await self._persist(record)
            return await self._broadcast(message)

    async def broadcast(self, message: str | bytes) -> int:
        """Send *message* to every observer without persisting it."""
        async with self._lock:
            return await self._broadcast(message)

    # -- Internals -----------------------------------------------------------

    async def _load_latest(self) -> TelemetryRecord | None:
        if self._gateway is None or not self._default_device_id:
            return None
        try:
            return await self._gateway.get_latest(self._default_device_id)
        except Exception:
            logger.warning(
                "Could not load latest reading for %s", self._default_device_id, exc_info=True
            )
            return None

    async def _persist(self, record: TelemetryRecord) -> None:
        if self._gateway is None:
            return
        try:
            await self._gateway.upsert_device(record.device_id)
            await self._gateway.insert_telemetry(record)
        except PersistenceError as exc:
            self._persist_failures += 1
            if not self._degraded:
                logger.warning("Persistence failed — entering degraded mode: %s", exc)
            else:
                logger.debug("Persistence still failing: %s", exc)
            self._degraded = True
            return
        except Exception:
            self._persist_failures += 1
            self._degraded = True
            logger.warning("Unexpected persistence error for %s", record.device_id, exc_info=True)
            return
        if self._degraded:
            logger.info("Persistence recovered")
            self._degraded = False

    async def _broadcast(self, message: str | bytes) -> int:
        targets = list(self._connections)
        if not targets:
            return 0
        results = await asyncio.gather(*(self._send_one(c, message) for c in targets))
        delivered = sum(1 for ok in results if ok)
        logger.debug("Broadcast to %d/%d observer(s)", delivered, len(targets))
        return delivered

    async def _send_one(self, conn: Connection, message: str | bytes) -> bool:
        try:
            await asyncio.wait_for(conn.send(message), timeout=self._send_timeout)
        except Exception as exc:
            self._send_failures += 1
            logger.warning("Send to observer failed: %s", _describe(exc))
            return False
        return True


def _describe(exc: BaseException) -> str:
    if isinstance(exc, TimeoutError):
        return "timed out"
    return str(exc) or type(exc).__name__


def stats(hub: TelemetryHub) -> dict[str, Any]:
    """Counters for health endpoints and the CLI."""
    return {
        "observers": hub.connection_count,
        "persistence": "degraded" if hub.degraded else "ok",
        "messages": hub.message_count,
        "rejected": hub.rejected_count,
        "persistFailures": hub.persist_failures,
        "sendFailures": hub.send_failures,
    }
