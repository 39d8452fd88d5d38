"""Exception hierarchy shared across the hub, presence and client layers."""

from __future__ import annotations


class DronewatchError(Exception):
    """Base class for all dronewatch errors."""


class ConfigError(DronewatchError):
    """Invalid or missing configuration."""


class PayloadError(DronewatchError):
    """An inbound telemetry payload could not be parsed."""

    def __init__(self, message: str, *, payload: str | bytes | None = None) -> None:
        super().__init__(message)
        self.payload = payload


class PersistenceError(DronewatchError):
    """The persistence gateway is unreachable or a write failed."""


class SourceUnavailableError(DronewatchError):
    """A location source timed out or could not produce an estimate."""

    def __init__(self, source: str, reason: str = "") -> None:
        super().__init__(f"{source} unavailable{': ' + reason if reason else ''}")
        self.source = source
        self.reason = reason


class ReconnectExhaustedError(DronewatchError):
    """Automatic reconnection gave up after the maximum number of attempts."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"Gave up after {attempts} connection attempt(s). Use reconnect() to retry."
        )
        self.attempts = attempts
