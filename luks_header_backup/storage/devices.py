"""LUKS device discovery using `blkid -o export`.

blkid prints one block of KEY=VALUE lines per device, blocks separated by
a blank line:

    DEVNAME=/dev/sda2
    UUID=0b8a3c2e-...
    TYPE=crypto_LUKS

Every device whose TYPE names a LUKS container (any version) is returned
with its path and UUID, in the order blkid reported them. A LUKS device
without a UUID, a duplicated UUID, or output that is not KEY=VALUE lines is
a DiscoveryError: a partial device list is never returned.

Example:
    >>> from luks_header_backup.storage.devices import list_luks_devices
    >>> [device.path for device in list_luks_devices()]
    ['/dev/nvme0n1p3', '/dev/sdb1']
"""

from __future__ import annotations

from typing import Protocol

from luks_header_backup.domain.models import LuksDevice
from luks_header_backup.logging import LoggerFactory

from .exceptions import CommandError, DiscoveryError
from .tools import BlkidProbe

log = LoggerFactory.for_discovery()


class DeviceProbe(Protocol):
    def export(self) -> str: ...


def is_luks_type(type_tag: str | None) -> bool:
    return bool(type_tag) and "luks" in type_tag.lower()


def parse_blkid_export(output: str) -> list[dict[str, str]]:
    """Split blkid export output into one dict per device.

    Raises:
        DiscoveryError: If a non-blank line is not KEY=VALUE
    """
    segments: list[dict[str, str]] = []
    current: dict[str, str] = {}
    for line_number, raw_line in enumerate(output.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            if current:
                segments.append(current)
                current = {}
            continue
        key, sep, value = line.partition("=")
        if not sep or not key:
            raise DiscoveryError(f"Malformed blkid output at line {line_number}: {raw_line!r}")
        current[key.strip()] = value.strip()
    if current:
        segments.append(current)
    return segments


def luks_devices_from_export(output: str) -> list[LuksDevice]:
    """Filter parsed blkid output down to LUKS devices.

    Raises:
        DiscoveryError: For malformed output, missing fields or duplicate UUIDs
    """
    found: list[LuksDevice] = []
    seen_uuids: dict[str, str] = {}
    for segment in parse_blkid_export(output):
        if not is_luks_type(segment.get("TYPE")):
            continue
        path = segment.get("DEVNAME")
        uuid = segment.get("UUID")
        if not path:
            raise DiscoveryError(f"LUKS device without DEVNAME in blkid output: {segment}")
        if not uuid:
            raise DiscoveryError(f"LUKS device {path} has no UUID")
        if uuid in seen_uuids:
            raise DiscoveryError(
                f"Duplicate LUKS UUID {uuid} on {seen_uuids[uuid]} and {path}"
            )
        seen_uuids[uuid] = path
        log.debug(f"Found LUKS device {path} with UUID {uuid}")
        found.append(LuksDevice(path=path, uuid=uuid))
    return found


def list_luks_devices(probe: DeviceProbe | None = None) -> list[LuksDevice]:
    """Return every LUKS device on the host; an empty list is a valid answer.

    Raises:
        DiscoveryError: If the probe fails or its output is unusable
    """
    probe = probe or BlkidProbe()
    try:
        output = probe.export()
    except CommandError as error:
        raise DiscoveryError(f"Block device probe failed: {error}") from error
    devices = luks_devices_from_export(output)
    log.info(f"Found {len(devices)} LUKS device(s)")
    return devices
