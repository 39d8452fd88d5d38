"""Tests for PresenceRelay — presence entries published through the hub."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from dronewatch.hub.hub import TelemetryHub
from dronewatch.models.presence import PresenceEntry
from dronewatch.presence.relay import PRESENCE_STATUS, PresenceRelay, entry_to_record
from tests._helpers import FakeConnection

SEEN = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


def _entry(name: str, *, connected: bool = True, battery: int = 75) -> PresenceEntry:
    return PresenceEntry(
        device_id=f"id-{name}",
        display_name=name,
        address=f"addr-{name}",
        last_seen=SEEN,
        latitude=40.7,
        longitude=-74.0,
        battery_level=battery,
        connected=connected,
    )


class TestEntryToRecord:
    def test_fields(self) -> None:
        record = entry_to_record(_entry("Drone"))
        assert record.device_id == "id-Drone"
        assert record.latitude == 40.7
        assert record.battery_level == 75
        assert record.status == PRESENCE_STATUS
        assert record.timestamp == SEEN

    def test_battery_clamped(self) -> None:
        assert entry_to_record(_entry("Drone", battery=130)).battery_level == 100


class TestPresenceRelay:
    @pytest.mark.asyncio
    async def test_publishes_connected_entries_only(self) -> None:
        hub = TelemetryHub()
        observer = FakeConnection()
        await hub.on_connect(observer)
        relay = PresenceRelay(hub)

        await relay([_entry("Drone"), _entry("Lost", connected=False)])

        assert relay.forwarded_count == 1
        assert len(observer.sent) == 1
        message = json.loads(observer.sent[0])
        assert message["deviceId"] == "id-Drone"
        assert message["status"] == PRESENCE_STATUS
