"""Pydantic v2 models for telemetry readings and device rows.

The wire shape is a flat camelCase JSON object; Python attributes are
snake_case.  Both ``batteryLevel`` and ``batteryPercent`` are accepted on
input because the two generations of device firmware disagree on the key.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

DEVICE_STATUS_ACTIVE = "ACTIVE"


class TelemetryRecord(BaseModel):
    """One reading from one device.  Immutable once created."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    device_id: str = Field(alias="deviceId", min_length=1)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    battery_level: int = Field(
        validation_alias=AliasChoices("batteryLevel", "batteryPercent", "battery_level"),
        serialization_alias="batteryLevel",
        ge=0,
        le=100,
    )
    altitude: float | None = None
    speed: float | None = None
    temperature: float | None = None
    humidity: float | None = None
    pressure: float | None = None
    heading: float | None = None
    status: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_wire(self) -> dict[str, object]:
        """Return the flat JSON-ready dict observers expect.

        ``batteryPercent`` is emitted alongside ``batteryLevel`` so that
        observers written against either key keep working.
        """
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        data["batteryPercent"] = self.battery_level
        return data


class Device(BaseModel):
    """A row in the ``devices`` table."""

    device_id: str
    name: str
    status: str = DEVICE_STATUS_ACTIVE
