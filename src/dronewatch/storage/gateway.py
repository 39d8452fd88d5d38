"""Persistence gateway — the ``devices`` / ``telemetry_data`` store.

Schema notes:
  - ``devices`` is keyed by ``device_id``; rows are created lazily on the
    first telemetry write and never updated afterwards.
  - ``telemetry_data.timestamp`` is a fixed-width UTC ISO-8601 string
    (``YYYY-MM-DDTHH:MM:SS.ffffffZ``) so lexical order equals time order.
  - ``INTEGER PRIMARY KEY`` breaks ties between rows sharing a timestamp.

``sqlite3`` calls are blocking, so every public coroutine hops to a worker
thread with :func:`asyncio.to_thread` and serialises on a lock.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from dronewatch.errors import ConfigError, PersistenceError
from dronewatch.models.telemetry import DEVICE_STATUS_ACTIVE, Device, TelemetryRecord

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_DDL = """
CREATE TABLE IF NOT EXISTS devices (
    device_id  TEXT PRIMARY KEY,
    name       TEXT NOT NULL,
    status     TEXT NOT NULL DEFAULT 'ACTIVE',
    created_at TEXT NOT NULL
               DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE TABLE IF NOT EXISTS telemetry_data (
    id            INTEGER PRIMARY KEY,
    device_id     TEXT    NOT NULL REFERENCES devices (device_id),
    latitude      REAL    NOT NULL,
    longitude     REAL    NOT NULL,
    altitude      REAL,
    speed         REAL,
    battery_level INTEGER NOT NULL,
    temperature   REAL,
    humidity      REAL,
    pressure      REAL,
    heading       REAL,
    status        TEXT,
    timestamp     TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_telemetry_device_ts
    ON telemetry_data (device_id, timestamp);
"""

_TELEMETRY_COLUMNS = (
    "device_id",
    "latitude",
    "longitude",
    "altitude",
    "speed",
    "battery_level",
    "temperature",
    "humidity",
    "pressure",
    "heading",
    "status",
    "timestamp",
)


class PersistenceGateway(Protocol):
    """What the hub needs from a telemetry store."""

    async def ping(self) -> bool: ...

    async def upsert_device(self, device_id: str) -> None: ...

    async def insert_telemetry(self, record: TelemetryRecord) -> None: ...

    async def get_latest(self, device_id: str) -> TelemetryRecord | None: ...

    async def get_history(self, device_id: str, limit: int) -> list[TelemetryRecord]: ...


def resolve_database_path(url: str) -> str:
    """Turn a ``sqlite:///path`` connection string into a filesystem path.

    ``sqlite://:memory:`` and bare ``:memory:`` select an in-memory database;
    a bare path is accepted as-is.

    >>> resolve_database_path("sqlite://:memory:")
    ':memory:'
    """
    if url in (":memory:", "sqlite://:memory:", "sqlite:///:memory:"):
        return ":memory:"
    if url.startswith("sqlite:///"):
        raw = url[len("sqlite:///") :]
    elif "://" in url:
        scheme = url.split("://", 1)[0]
        raise ConfigError(f"Unsupported database scheme '{scheme}' (expected sqlite:///path)")
    else:
        raw = url
    if not raw:
        raise ConfigError("Database URL has an empty path")
    return str(Path(raw).expanduser())


def _format_ts(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).strftime(_TS_FORMAT)


def _parse_ts(raw: str) -> datetime:
    return datetime.strptime(raw, _TS_FORMAT).replace(tzinfo=UTC)


def _row_to_record(row: sqlite3.Row) -> TelemetryRecord:
    return TelemetryRecord(
        device_id=row["device_id"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        battery_level=row["battery_level"],
        altitude=row["altitude"],
        speed=row["speed"],
        temperature=row["temperature"],
        humidity=row["humidity"],
        pressure=row["pressure"],
        heading=row["heading"],
        status=row["status"],
        timestamp=_parse_ts(row["timestamp"]),
    )


class SQLiteGateway:
    """SQLite-backed :class:`PersistenceGateway`.

    Parameters:
        url: ``sqlite:///path/to/file.db`` or ``sqlite://:memory:``.
    """

    def __init__(self, url: str) -> None:
        self._url = url
        self._path = resolve_database_path(url)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    # -- Lifecycle ---------------------------------------------------------

    async def open(self) -> None:
        """Connect and provision the schema.  Raises :class:`PersistenceError`."""
        await asyncio.to_thread(self._open_sync)

    def _open_sync(self) -> None:
        if self._conn is not None:
            return
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self._path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.executescript(_DDL)
            conn.commit()
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Cannot open database {self._url}: {exc}") from exc
        self._conn = conn
        logger.info("Telemetry database ready at %s", self._path)

    async def close(self) -> None:
        await asyncio.to_thread(self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # -- Operations ----------------------------------------------------------

    async def ping(self) -> bool:
        """Return ``True`` if a trivial query succeeds."""
        try:
            await self._run(lambda conn: conn.execute("SELECT 1").fetchone())
        except PersistenceError:
            return False
        return True

    async def upsert_device(self, device_id: str) -> None:
        """Create the device row if absent.  Existing rows are left untouched."""

        def _op(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO devices (device_id, name, status) VALUES (?, ?, ?) "
                "ON CONFLICT (device_id) DO NOTHING",
                (device_id, device_id, DEVICE_STATUS_ACTIVE),
            )
            conn.commit()

        await self._run(_op)

    async def insert_telemetry(self, record: TelemetryRecord) -> None:
        values = (
            record.device_id,
            record.latitude,
            record.longitude,
            record.altitude,
            record.speed,
            record.battery_level,
            record.temperature,
            record.humidity,
            record.pressure,
            record.heading,
            record.status,
            _format_ts(record.timestamp),
        )
        placeholders = ", ".join("?" for _ in _TELEMETRY_COLUMNS)
        sql = (
            f"INSERT INTO telemetry_data ({', '.join(_TELEMETRY_COLUMNS)}) "
            f"VALUES ({placeholders})"
        )

        def _op(conn: sqlite3.Connection) -> None:
            conn.execute(sql, values)
            conn.commit()

        await self._run(_op)

    async def get_latest(self, device_id: str) -> TelemetryRecord | None:
        history = await self.get_history(device_id, 1)
        return history[0] if history else None

    async def get_history(self, device_id: str, limit: int) -> list[TelemetryRecord]:
        """Return up to *limit* records for *device_id*, newest first."""
        if limit <= 0:
            return []

        def _op(conn: sqlite3.Connection) -> list[sqlite3.Row]:
            return conn.execute(
                "SELECT * FROM telemetry_data WHERE device_id = ? "
                "ORDER BY timestamp DESC, id DESC LIMIT ?",
                (device_id, limit),
            ).fetchall()

        rows = await self._run(_op)
        return [_row_to_record(r) for r in rows]

    async def get_device(self, device_id: str) -> Device | None:
        def _op(conn: sqlite3.Connection) -> sqlite3.Row | None:
            return conn.execute(
                "SELECT device_id, name, status FROM devices WHERE device_id = ?",
                (device_id,),
            ).fetchone()

        row = await self._run(_op)
        if row is None:
            return None
        return Device(device_id=row["device_id"], name=row["name"], status=row["status"])

    async def _run(self, op: Callable[[sqlite3.Connection], Any]) -> Any:
        return await asyncio.to_thread(self._run_sync, op)

    def _run_sync(self, op: Callable[[sqlite3.Connection], Any]) -> Any:
        with self._lock:
            if self._conn is None:
                raise PersistenceError("Database is not connected")
            try:
                return op(self._conn)
            except sqlite3.Error as exc:
                raise PersistenceError(str(exc)) from exc
