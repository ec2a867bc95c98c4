"""Parser for the ``lsblk -P`` device inventory.

Each report line is one device with quoted ``KEY="value"`` pairs. The parser
turns lines into :class:`DeviceRecord` rows and applies the display rules:

    - field values are filtered down to a safe character set
    - a "disk" that the kernel knows to be a partition is reclassified
    - a disk whose partitions carry filesystems loses its own filesystem
      and UUID (lsblk sometimes reports a stale signature on the disk)
    - missing mountpoint, and missing UUID/model on disks, become ``N/A``
    - rows are grouped by disk root, disk first, then by name
"""

from __future__ import annotations

import re
from dataclasses import replace
from pathlib import Path
from typing import Callable

from driveassist.domain.models import NOT_APPLICABLE, DeviceKind, DeviceRecord
from driveassist.logging import LoggerFactory
from driveassist.storage import devices
from driveassist.storage.names import base_disk, disk_root

log = LoggerFactory.for_inventory()

SYS_CLASS_BLOCK = Path("/sys/class/block")

PartitionCheck = Callable[[str], bool]

_PAIR = re.compile(r'([A-Z:\-]+)="((?:[^"\\]|\\.)*)"')
_HEX_ESCAPE = re.compile(r"\\x([0-9a-fA-F]{2})")
_EXTRA_FIELD_CHARS = frozenset("/.-_:, ")
_PLACEHOLDERS = ("", "-")


def _decode(value: str) -> str:
    return _HEX_ESCAPE.sub(lambda match: chr(int(match.group(1), 16)), value)


def clean_field(value: str | None) -> str:
    """Drop quoting and control characters, keeping names, sizes and UUIDs intact."""
    if value is None:
        return ""
    decoded = _decode(value)
    kept = "".join(
        char for char in decoded if char.isalnum() or char in _EXTRA_FIELD_CHARS
    )
    return " ".join(kept.split())


def parse_pairs(line: str) -> dict[str, str]:
    return {key: clean_field(value) for key, value in _PAIR.findall(line)}


def sysfs_is_partition(name: str) -> bool:
    """True when the kernel exposes ``name`` as a partition."""
    return (SYS_CLASS_BLOCK / name / "partition").exists()


def _optional(value: str) -> str | None:
    return None if value in _PLACEHOLDERS else value


def _record_from_pairs(pairs: dict[str, str], is_partition: PartitionCheck) -> DeviceRecord | None:
    name = pairs.get("NAME", "")
    if not name:
        return None
    device_type = pairs.get("TYPE", "")
    kind = DeviceKind.DISK if device_type == "disk" else DeviceKind.PARTITION
    if kind is DeviceKind.DISK and is_partition(name):
        log.debug(f"Reclassifying {name} as a partition")
        kind = DeviceKind.PARTITION
    return DeviceRecord(
        name=name,
        kind=kind,
        size=pairs.get("SIZE", ""),
        device_type=device_type,
        filesystem=_optional(pairs.get("FSTYPE", "")),
        mountpoint=_optional(pairs.get("MOUNTPOINT", "")) or NOT_APPLICABLE,
        uuid=_optional(pairs.get("UUID", "")),
        model=_optional(pairs.get("MODEL", "")),
    )


def _mask_disk(record: DeviceRecord, children: list[DeviceRecord]) -> DeviceRecord:
    if children and record.filesystem:
        record = replace(record, filesystem=None, uuid=None)
    return replace(
        record,
        uuid=record.uuid or NOT_APPLICABLE,
        model=record.model or NOT_APPLICABLE,
    )


def sort_key(record: DeviceRecord) -> tuple[str, int, str]:
    return (disk_root(record.name), 0 if record.is_disk else 1, record.name)


def parse_inventory(
    report: str, is_partition: PartitionCheck | None = None
) -> list[DeviceRecord]:
    """Parse an ``lsblk -P`` report into sorted device records."""
    if is_partition is None:
        is_partition = sysfs_is_partition

    records: list[DeviceRecord] = []
    for line in report.splitlines():
        if not line.strip():
            continue
        record = _record_from_pairs(parse_pairs(line), is_partition)
        if record is None:
            log.trace(f"Skipping inventory line without NAME: {line!r}")
            continue
        records.append(record)

    children: dict[str, list[DeviceRecord]] = {}
    for record in records:
        if not record.is_disk:
            children.setdefault(base_disk(record.name), []).append(record)

    finished = [
        _mask_disk(record, children.get(record.name, [])) if record.is_disk else record
        for record in records
    ]
    return sorted(finished, key=sort_key)


def scan_inventory() -> list[DeviceRecord]:
    """Run lsblk and parse the result.

    Raises:
        InventoryUnavailableError: when the report cannot be produced.
    """
    return parse_inventory(devices.read_inventory_report())
