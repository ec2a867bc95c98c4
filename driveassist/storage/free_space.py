"""Parser for ``parted DISK unit MiB print free`` reports.

Everything before the column header (the line naming both ``Number`` and
``File system``) is banner text and is skipped. After it, each line is a
free-space row or a numbered partition row. On msdos tables the header has
a ``Type`` column and the fifth token is primary/logical/extended. Trailing
tokens count as the filesystem only when they name one, so GPT partition
names and flags are never mistaken for it. Rows with fewer than four tokens
are dropped.
"""

from __future__ import annotations

from typing import Callable, Iterable

from driveassist.domain.models import Region, RegionType
from driveassist.logging import LoggerFactory
from driveassist.storage import devices
from driveassist.storage.names import partition_path

log = LoggerFactory.for_inventory()

FilesystemLookup = Callable[[str], "str | None"]

FREE_MARKER = "Free Space"
UNKNOWN_FILESYSTEM = "unknown"
MAX_TOKENS = 7
MIN_TOKENS = 4
PARTITION_TYPES = frozenset({"primary", "logical", "extended"})
KNOWN_FILESYSTEMS = frozenset(
    {
        "ext2", "ext3", "ext4", "fat16", "fat32", "ntfs", "exfat", "xfs", "btrfs",
        "f2fs", "hfs", "hfs+", "hfsx", "jfs", "reiserfs", "nilfs2", "udf", "zfs",
        "apfs", "swsusp", UNKNOWN_FILESYSTEM,
    }
)


def _mib(token: str) -> int:
    """``"1.00MiB"`` -> 1. Truncates toward zero like parted's own columns."""
    value = token.strip()
    for suffix in ("MiB", "MB", "M"):
        if value.endswith(suffix):
            value = value[: -len(suffix)]
            break
    return int(float(value))


def _parse_free_line(line: str) -> Region | None:
    tokens = line.replace(FREE_MARKER, "").split()
    if len(tokens) < 3:
        return None
    try:
        start, end = _mib(tokens[0]), _mib(tokens[1])
    except ValueError:
        return None
    if end < start:
        return None
    return Region(start_mib=start, end_mib=end, region_type=RegionType.FREE)


def _filesystem_token(candidates: list[str]) -> str | None:
    """First token that names a filesystem; GPT names and flags are skipped."""
    for token in candidates:
        if token in KNOWN_FILESYSTEMS or token.startswith("linux-swap"):
            return token
    return None


def _parse_partition_line(
    line: str,
    disk_path: str,
    has_type_column: bool,
    fs_lookup: FilesystemLookup,
) -> Region | None:
    tokens = line.split()[:MAX_TOKENS]
    if len(tokens) < MIN_TOKENS:
        return None
    try:
        index = int(tokens[0])
        start, end = _mib(tokens[1]), _mib(tokens[2])
    except ValueError:
        return None
    if end < start:
        return None

    rest = tokens[4:]
    partition_type = None
    if has_type_column and rest and rest[0] in PARTITION_TYPES:
        partition_type = rest.pop(0)
    filesystem = _filesystem_token(rest)
    if filesystem is None or filesystem == UNKNOWN_FILESYSTEM:
        filesystem = fs_lookup(partition_path(disk_path, index))

    return Region(
        start_mib=start,
        end_mib=end,
        region_type=RegionType.OCCUPIED,
        index=index,
        filesystem=filesystem,
        partition_type=partition_type,
    )


def parse_free_space(
    report: str,
    disk_path: str,
    fs_lookup: FilesystemLookup | None = None,
) -> list[Region]:
    """Parse a free-space report into regions, in report order.

    ``fs_lookup`` resolves the filesystem of a partition path when the report
    leaves it blank or ``unknown``; it defaults to a blkid query.
    """
    if fs_lookup is None:
        fs_lookup = devices.query_filesystem_type

    regions: list[Region] = []
    in_table = False
    has_type_column = False
    for line in report.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if not in_table:
            if "Number" in stripped and "File system" in stripped:
                in_table = True
                has_type_column = " Type " in f" {stripped} "
            continue
        if FREE_MARKER in stripped:
            region = _parse_free_line(stripped)
        else:
            region = _parse_partition_line(stripped, disk_path, has_type_column, fs_lookup)
        if region is None:
            log.trace(f"Skipping unparsable line: {stripped!r}")
            continue
        regions.append(region)
    return regions


def read_regions(disk_path: str) -> list[Region]:
    """Query and parse the regions of ``disk_path``."""
    return parse_free_space(devices.read_free_space_report(disk_path), disk_path)


def free_regions(regions: Iterable[Region]) -> list[Region]:
    return [region for region in regions if region.is_free]


def largest_free_region(regions: Iterable[Region]) -> Region | None:
    candidates = free_regions(regions)
    if not candidates:
        return None
    return max(candidates, key=lambda region: region.size_mib)


def find_region(regions: Iterable[Region], index: int) -> Region | None:
    for region in regions:
        if region.index == index:
            return region
    return None


def free_after(regions: Iterable[Region], index: int) -> int:
    """Free MiB directly following partition ``index``, 0 if none."""
    ordered = list(regions)
    for position, region in enumerate(ordered):
        if region.index == index:
            following = ordered[position + 1:position + 2]
            if following and following[0].is_free:
                return following[0].size_mib
            return 0
    return 0


def max_resize_mib(regions: Iterable[Region], index: int) -> int | None:
    """Largest size partition ``index`` can grow to without moving its start."""
    ordered = list(regions)
    region = find_region(ordered, index)
    if region is None:
        return None
    return region.size_mib + free_after(ordered, index)
