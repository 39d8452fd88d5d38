"""JSON envelopes for piped CLI output.

Every command prints one envelope::

    {"ok": true,  "command": "latest", "data": {...},  "timestamp": "..."}
    {"ok": false, "command": "latest", "error": {"code": "...", "message": "..."}, ...}

Telemetry inside ``data`` uses the same camelCase shape as the wire
protocol, so ``dronewatch latest`` output can be fed back to ``send``.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from dronewatch.models.presence import PresenceEntry
from dronewatch.models.telemetry import TelemetryRecord


def _serialize(obj: Any) -> Any:
    if isinstance(obj, TelemetryRecord):
        return obj.to_wire()
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(obj, PresenceEntry):
        return obj.to_dict()
    if isinstance(obj, dict):
        return {key: _serialize(value) for key, value in obj.items()}
    if isinstance(obj, list | tuple):
        return [_serialize(item) for item in obj]
    return obj


def _envelope(command: str, *, ok: bool, **body: Any) -> str:
    doc: dict[str, Any] = {"ok": ok, "command": command, **body}
    doc["timestamp"] = datetime.now(UTC).isoformat()
    return json.dumps(doc, indent=2, default=str)


def format_json_response(*, data: Any, command: str) -> str:
    return _envelope(command, ok=True, data=_serialize(data))


def format_json_error(*, code: str, message: str, command: str, **extra: Any) -> str:
    """Error envelope; *extra* keys (e.g. ``attempts``) go into ``error``."""
    return _envelope(command, ok=False, error={"code": code, "message": message, **extra})
