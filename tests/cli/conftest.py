"""Shared fixtures for CLI execution tests."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture()
def cli_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> dict[str, str]:
    """Point every DRONEWATCH_* setting at throwaway local resources."""
    monkeypatch.chdir(tmp_path)
    env = {
        "DRONEWATCH_DATABASE_URL": f"sqlite:///{tmp_path / 'telemetry.db'}",
        "DRONEWATCH_RECONNECT_DELAY": "0.01",
        "DRONEWATCH_MAX_RECONNECT_ATTEMPTS": "2",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
