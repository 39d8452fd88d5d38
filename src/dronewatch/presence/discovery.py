"""Discovery backends and sighting hygiene.

A backend only has to implement ``async scan() -> list[Sighting]``.  Scans
are best-effort: an empty list is a normal result, and the presence cache
treats a raising backend the same as an empty one.

Raw OS tooling output is noisy: adapters and shell artefacts show up next
to real peripherals.  :func:`normalize_sightings` filters and completes
whatever a backend returns.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import shlex
import time
from typing import TYPE_CHECKING, Protocol

from dronewatch.models.presence import Sighting
from dronewatch.presence.signal import clamp_rssi

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

ADAPTER_KEYWORDS = (
    "adapter",
    "realtek",
    "intel",
    "mediatek",
    "broadcom",
    "qualcomm",
    "generic attribute",
    "bluetooth radio",
    "bluetooth device",
    "usb",
    "pci",
    "bth",
)
SYSTEM_KEYWORDS = (
    "enumerator",
    "rfcomm",
    "protocol",
    "information service",
    "phonebook access",
    "avrcp transport",
)

_MIN_NAME_LENGTH = 4
_ALNUM_RUN = re.compile(r"[A-Za-z0-9]{2,}")
_HEX12 = re.compile(r"[0-9A-Fa-f]{12}")

# Simulated RSSI changes every N seconds so that repeated scans drift a little.
_RSSI_WINDOW_SECONDS = 10


class DiscoveryBackend(Protocol):
    async def scan(self) -> list[Sighting]: ...


# -- Hygiene helpers ----------------------------------------------------------


def is_valid_name(name: str | None) -> bool:
    """Reject empty, too-short and shell-artefact names."""
    if not name:
        return False
    name = name.strip()
    if len(name) < _MIN_NAME_LENGTH:
        return False
    if name[0] in "+-" or "..." in name:
        return False
    return _ALNUM_RUN.search(name) is not None


def is_adapter(name: str) -> bool:
    lower = name.lower()
    return any(k in lower for k in ADAPTER_KEYWORDS)


def is_system_device(name: str) -> bool:
    lower = name.lower()
    return any(k in lower for k in SYSTEM_KEYWORDS)


def _digest(text: str) -> bytes:
    return hashlib.sha256(text.encode("utf-8")).digest()


def extract_address(instance_id: str | None) -> str:
    r"""Pull a hardware address out of an OS instance identifier.

    Looks for a path segment holding 12 hex digits.  When none is found a
    stable, locally-administered address is derived from the identifier so
    the same device keeps the same cache key across scans.

    >>> extract_address(r"BTHENUM\DEV_A1B2C3D4E5F6\7&1")
    'A1:B2:C3:D4:E5:F6'
    """
    if instance_id:
        for part in instance_id.split("\\"):
            match = _HEX12.search(part)
            if match:
                mac = match.group(0).upper()
                return ":".join(mac[i : i + 2] for i in range(0, 12, 2))
    raw = bytearray(_digest(instance_id or "unknown")[:6])
    raw[0] = (raw[0] | 0x02) & 0xFE
    return ":".join(f"{b:02X}" for b in raw)


def synthetic_battery_level(address: str) -> int:
    """Stable 70–99 % battery level for devices that do not report one."""
    return 70 + int.from_bytes(_digest(address)[:4], "big") % 30


def synthetic_rssi(address: str, *, now: float | None = None) -> int:
    """Plausible signal strength that drifts every few seconds."""
    if now is None:
        now = time.time()
    bucket = int(now) // _RSSI_WINDOW_SECONDS
    seed = _digest(f"{address}:{bucket}")
    base = -90 + seed[0] % 50
    variation = seed[1] % 10 - 5
    return clamp_rssi(base + variation)


def normalize_sightings(raw: Iterable[Sighting], *, now: float | None = None) -> list[Sighting]:
    """Filter a raw scan down to real peripherals and fill missing fields.

    Drops invalid names, adapters and protocol services, and duplicate
    addresses (first one wins).
    """
    result: list[Sighting] = []
    seen: set[str] = set()
    for s in raw:
        name = (s.display_name or "").strip()
        if not is_valid_name(name):
            logger.debug("Skipping invalid device name: %r", s.display_name)
            continue
        if is_adapter(name) or is_system_device(name):
            logger.debug("Skipping system device: %s", name)
            continue
        address = s.address or extract_address(s.source_id)
        if address in seen:
            continue
        seen.add(address)
        result.append(
            Sighting(
                address=address,
                display_name=name,
                battery_level=(
                    s.battery_level
                    if s.battery_level is not None
                    else synthetic_battery_level(address)
                ),
                signal_indicator=(
                    clamp_rssi(s.signal_indicator)
                    if s.signal_indicator is not None
                    else synthetic_rssi(address, now=now)
                ),
                source_id=s.source_id,
            )
        )
    return result


# -- Backends -----------------------------------------------------------------


class NullDiscovery:
    """Never sees anything."""

    async def scan(self) -> list[Sighting]:
        return []


class StaticDiscovery:
    """Returns a fixed (replaceable) list — for demos and tests."""

    def __init__(self, sightings: Iterable[Sighting] = ()) -> None:
        self._sightings = list(sightings)

    def set(self, sightings: Iterable[Sighting]) -> None:
        self._sightings = list(sightings)

    async def scan(self) -> list[Sighting]:
        return list(self._sightings)


def parse_scan_line(line: str) -> Sighting | None:
    """Parse ``name|instance-id[|battery[|rssi]]``; ``None`` if unusable."""
    parts = [p.strip() for p in line.strip().split("|")]
    if len(parts) < 2 or not parts[0]:
        return None
    name, instance_id = parts[0], parts[1]
    battery = _maybe_int(parts[2]) if len(parts) > 2 else None
    rssi = _maybe_int(parts[3]) if len(parts) > 3 else None
    if battery is not None and not 0 <= battery <= 100:
        battery = None
    return Sighting(
        address=extract_address(instance_id),
        display_name=name,
        battery_level=battery,
        signal_indicator=rssi,
        source_id=instance_id,
    )


def _maybe_int(text: str) -> int | None:
    try:
        return int(text)
    except ValueError:
        return None


class CommandDiscovery:
    """Runs an external scanner command and parses its stdout.

    The command must print one ``name|instance-id[|battery[|rssi]]`` line
    per visible device.  Non-zero exit, timeout or missing executable all
    yield an empty scan.
    """

    def __init__(self, command: str, *, timeout: float = 5.0) -> None:
        self._argv = shlex.split(command)
        self._timeout = timeout

    async def scan(self) -> list[Sighting]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.warning("Discovery command %s failed to start: %s", self._argv[0], exc)
            return []

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError:
            await _reap(proc)
            logger.warning("Discovery command timed out after %.1fs", self._timeout)
            return []
        except BaseException:
            # Cancelled mid-scan (shutdown) or failed reading: never orphan the child.
            await _reap(proc)
            raise

        if proc.returncode != 0:
            logger.warning("Discovery command exited with %d", proc.returncode)
            return []

        sightings = []
        for line in stdout.decode("utf-8", errors="replace").splitlines():
            s = parse_scan_line(line)
            if s is not None:
                sightings.append(s)
        logger.debug("Discovery command reported %d line(s)", len(sightings))
        return sightings


async def _reap(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
