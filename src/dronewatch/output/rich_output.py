from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.table import Table

if TYPE_CHECKING:
    from rich.console import Console

    from dronewatch.models.presence import PresenceEntry
    from dronewatch.models.telemetry import TelemetryRecord


_PROXIMITY_STYLES = {
    "Very Close": "green",
    "Close": "green",
    "Medium": "yellow",
}


def _fmt(value: Any, suffix: str = "") -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:.6g}{suffix}"
    return f"{value}{suffix}"


class RichOutput:
    """Rich-based terminal output helpers for *dronewatch*."""

    def __init__(self, console: Console) -> None:
        self._con = console

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def telemetry(self, record: TelemetryRecord) -> None:
        """Print a field/value table for one reading (non-None only)."""
        table = Table(title=f"Telemetry: {record.device_id}")
        table.add_column("Field", style="bold")
        table.add_column("Value")

        rows: list[tuple[str, str]] = [
            ("Timestamp", record.timestamp.isoformat()),
            ("Latitude", _fmt(record.latitude)),
            ("Longitude", _fmt(record.longitude)),
            ("Battery", _fmt(record.battery_level, "%")),
        ]
        optional = (
            ("Altitude", record.altitude, " m"),
            ("Speed", record.speed, " m/s"),
            ("Heading", record.heading, "°"),
            ("Temperature", record.temperature, " °C"),
            ("Humidity", record.humidity, "%"),
            ("Pressure", record.pressure, " hPa"),
            ("Status", record.status, ""),
        )
        for label, value, suffix in optional:
            if value is not None:
                rows.append((label, _fmt(value, suffix)))

        for label, value in rows:
            table.add_row(label, value)
        self._con.print(table)

    def telemetry_history(self, device_id: str, records: list[TelemetryRecord]) -> None:
        """Print one row per reading, newest first."""
        table = Table(title=f"History: {device_id}")
        table.add_column("Timestamp", style="cyan")
        table.add_column("Latitude", justify="right")
        table.add_column("Longitude", justify="right")
        table.add_column("Battery", justify="right")
        table.add_column("Status")

        for r in records:
            table.add_row(
                r.timestamp.isoformat(),
                _fmt(r.latitude),
                _fmt(r.longitude),
                _fmt(r.battery_level, "%"),
                r.status or "",
            )
        self._con.print(table)

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def presence(self, entries: list[PresenceEntry], selected: str | None = None) -> None:
        """Print the presence snapshot; the selected device is starred."""
        table = Table(title="Nearby Devices")
        table.add_column("", width=1)
        table.add_column("Device", style="cyan")
        table.add_column("Address")
        table.add_column("Battery", justify="right")
        table.add_column("RSSI", justify="right")
        table.add_column("Proximity")
        table.add_column("Location")

        for e in entries:
            _score, band = e.proximity
            style = _PROXIMITY_STYLES.get(band, "red")
            location = f"{e.latitude:.5f}, {e.longitude:.5f}"
            table.add_row(
                "*" if e.device_id == selected else "",
                e.display_name,
                e.address,
                f"{e.battery_level}%",
                f"{e.signal_indicator} dBm",
                f"[{style}]{band}[/{style}]",
                location,
            )
        self._con.print(table)

    # ------------------------------------------------------------------
    # Generic
    # ------------------------------------------------------------------

    def error(self, message: str) -> None:
        self._con.print(f"[bold red]Error:[/bold red] {message}")

    def info(self, message: str) -> None:
        self._con.print(message)
