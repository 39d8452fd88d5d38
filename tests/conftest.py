"""Shared fixtures for the dronewatch test suite."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from dronewatch.storage.gateway import SQLiteGateway
from tests._helpers import ManualClock


@pytest.fixture()
async def gateway() -> AsyncIterator[SQLiteGateway]:
    gw = SQLiteGateway("sqlite://:memory:")
    await gw.open()
    yield gw
    await gw.close()


@pytest.fixture()
def manual_clock() -> ManualClock:
    return ManualClock()
