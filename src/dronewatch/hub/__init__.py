"""Telemetry hub — ingest, persist and broadcast live readings."""

from __future__ import annotations

from dronewatch.hub.codec import encode_record, parse_payload
from dronewatch.hub.hub import Connection, TelemetryHub
from dronewatch.hub.server import HubServer

__all__ = ["Connection", "HubServer", "TelemetryHub", "encode_record", "parse_payload"]
