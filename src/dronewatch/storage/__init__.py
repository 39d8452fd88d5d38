"""Telemetry persistence."""

from __future__ import annotations

from dronewatch.storage.gateway import PersistenceGateway, SQLiteGateway, resolve_database_path

__all__ = ["PersistenceGateway", "SQLiteGateway", "resolve_database_path"]
