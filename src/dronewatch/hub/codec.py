"""JSON codec for the observer protocol.

One flat JSON object per message, no extra framing.  Parsing fails closed:
anything that is not a valid reading raises :class:`PayloadError`.
"""

from __future__ import annotations

import json

from pydantic import ValidationError

from dronewatch.errors import PayloadError
from dronewatch.models.telemetry import TelemetryRecord


def parse_payload(raw: str | bytes) -> TelemetryRecord:
    """Parse a single inbound message into a :class:`TelemetryRecord`."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise PayloadError(f"not valid JSON: {exc}", payload=raw) from exc

    if not isinstance(data, dict):
        raise PayloadError(
            f"expected a JSON object, got {type(data).__name__}", payload=raw
        )

    try:
        return TelemetryRecord.model_validate(data)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in e["loc"]) or "?" for e in exc.errors())
        raise PayloadError(f"invalid reading ({fields})", payload=raw) from exc


def encode_record(record: TelemetryRecord) -> str:
    """Serialise a record for broadcast (used for replayed / relayed records)."""
    return json.dumps(record.to_wire(), separators=(",", ":"))
