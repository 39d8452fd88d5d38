"""Signal-strength → proximity mapping."""

from __future__ import annotations

RSSI_MIN = -100
RSSI_MAX = -30

# (weakest RSSI in band, distance score, label), strongest band first.
_BANDS: tuple[tuple[int, float, str], ...] = (
    (-30, 0.0, "Very Close"),
    (-50, 20.0, "Close"),
    (-70, 50.0, "Medium"),
    (-85, 75.0, "Far"),
)
_FARTHEST = (95.0, "Very Far")


def clamp_rssi(rssi: int) -> int:
    return max(RSSI_MIN, min(RSSI_MAX, rssi))


def proximity_from_rssi(rssi: int) -> tuple[float, str]:
    """Return a 0–100 distance score and band label for *rssi* (dBm).

    >>> proximity_from_rssi(-30)
    (0.0, 'Very Close')
    >>> proximity_from_rssi(-60)
    (50.0, 'Medium')
    """
    for floor, score, label in _BANDS:
        if rssi >= floor:
            return score, label
    return _FARTHEST
