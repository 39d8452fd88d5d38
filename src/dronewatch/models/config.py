"""Application settings, read from ``DRONEWATCH_*`` environment variables and an optional ``.env`` file."""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_DEVICE_KEYWORDS = ("drone", "quadcopter", "uav")


class AppSettings(BaseSettings):
    """Application-wide settings populated from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DRONEWATCH_",
        extra="ignore",
    )

    hub_host: str = "127.0.0.1"
    hub_port: int = Field(default=7070, ge=0, le=65535)
    http_port: int = Field(default=7071, ge=0, le=65535)
    database_url: str = "sqlite:///~/.config/dronewatch/telemetry.db"
    default_device_id: str | None = "Drone-Alpha-001"

    scan_interval: float = Field(default=2.0, gt=0)
    staleness_window: float = Field(default=30.0, gt=0)
    source_timeout: float = Field(default=3.0, gt=0)
    send_timeout: float = Field(default=2.0, gt=0)
    forward_presence: bool = False
    device_keywords: Annotated[tuple[str, ...], NoDecode] = DEFAULT_DEVICE_KEYWORDS
    discovery_command: str | None = None
    ip_geolocation_url: str | None = "http://ip-api.com/json/?fields=lat,lon,status"

    observer_url: str = "ws://127.0.0.1:7070"
    reconnect_delay: float = Field(default=5.0, gt=0)
    max_reconnect_attempts: int = Field(default=5, ge=1)

    @field_validator("device_keywords", mode="before")
    @classmethod
    def _split_keywords(cls, value: Any) -> Any:
        # Env vars arrive as "drone,uav"; lists from code pass through.
        if isinstance(value, str):
            return tuple(k.strip().lower() for k in value.split(",") if k.strip())
        return value

    def merge_overrides(self, **overrides: Any) -> AppSettings:
        """Return a copy with every non-``None`` override applied."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return AppSettings.model_validate(data)
