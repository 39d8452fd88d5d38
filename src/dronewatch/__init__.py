"""dronewatch — live drone telemetry hub with device presence tracking."""

from __future__ import annotations

__version__ = "0.1.0"
