"""Block-device name resolution.

Most Linux disks put the partition number straight after the disk name
(``sdb`` + ``1``). Controller-style disks already end in a digit
(``nvme0n1``, ``mmcblk0``), so their partitions use a ``p`` separator
(``nvme0n1p3``) and a first-digit scan would cut the disk name short.
"""

from __future__ import annotations

import re

CONTROLLER_PREFIXES = ("nvme", "mmcblk", "loop", "md", "nbd")

_SEPARATED_PARTITION = re.compile(r"^(?P<disk>.+?)p(?P<index>\d+)$")


def device_name(path_or_name: str) -> str:
    """Strip a leading ``/dev/`` if present."""
    if path_or_name.startswith("/dev/"):
        return path_or_name[len("/dev/"):]
    return path_or_name


def device_path(name: str) -> str:
    if name.startswith("/dev/"):
        return name
    return f"/dev/{name}"


def _split(name: str) -> tuple[str, str | None]:
    if name.startswith(CONTROLLER_PREFIXES):
        match = _SEPARATED_PARTITION.match(name)
        if match:
            return match.group("disk"), match.group("index")
        return name, None
    for position, char in enumerate(name):
        if char.isdigit():
            return name[:position], name[position:]
    return name, None


def base_disk(name: str) -> str:
    """Return the parent disk of ``name``, or ``name`` itself for a whole disk.

    >>> base_disk("nvme0n1p3")
    'nvme0n1'
    >>> base_disk("sdb1")
    'sdb'
    """
    disk, _ = _split(device_name(name))
    return disk


def partition_index(name: str) -> str | None:
    """Return the partition number of ``name`` as text, or None for a disk."""
    _, index = _split(device_name(name))
    return index


def is_partition_name(name: str) -> bool:
    return partition_index(name) is not None


def disk_root(name: str) -> str:
    """Alphabetic prefix before the first digit, used to group inventory rows."""
    name = device_name(name)
    for position, char in enumerate(name):
        if char.isdigit():
            return name[:position]
    return name


def partition_path(disk: str, index: int | str) -> str:
    """Build the device path of partition ``index`` on ``disk``."""
    path = device_path(disk)
    separator = "p" if path[-1].isdigit() else ""
    return f"{path}{separator}{index}"
