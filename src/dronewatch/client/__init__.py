"""Observer-side client and reconnection policy."""

from __future__ import annotations

from dronewatch.client.observer import ObserverClient
from dronewatch.client.reconnect import ConnectionState, ReconnectController

__all__ = ["ConnectionState", "ObserverClient", "ReconnectController"]
