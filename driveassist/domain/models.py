"""Domain model for partition planning.

Type-safe value objects that replace the loose strings and dicts produced by
``lsblk`` and ``parted`` reports. Everything here is immutable; the parsers
build these objects and the synthesizers and workflows consume them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

MIB = 1024 * 1024
GIB = 1024 * MIB

NOT_APPLICABLE = "N/A"

DISK_FONT_COLOR = "#0057ae"
DISK_BACKGROUND = "#e6f1fa"


# ==============================================================================
# Inventory Domain
# ==============================================================================


class DeviceKind(Enum):
    DISK = "disk"
    PARTITION = "partition"


@dataclass(frozen=True)
class DeviceRecord:
    """One row of the device inventory.

    ``device_type`` keeps the raw lsblk TYPE column (disk, part, loop, ...)
    while ``kind`` is the disk/partition classification used for scoping.
    """

    name: str  # e.g., "sda1" or "nvme0n1p2"
    kind: DeviceKind
    size: str  # human size as reported, e.g. "7.5G"
    device_type: str = ""
    filesystem: str | None = None
    mountpoint: str = NOT_APPLICABLE
    uuid: str | None = None
    model: str | None = None

    @property
    def device_path(self) -> str:
        return f"/dev/{self.name}"

    @property
    def is_disk(self) -> bool:
        return self.kind is DeviceKind.DISK

    @property
    def is_mounted(self) -> bool:
        return bool(self.mountpoint) and self.mountpoint != NOT_APPLICABLE

    @property
    def emphasis(self) -> bool:
        """Whole disks are rendered bold."""
        return self.is_disk

    @property
    def font_weight(self) -> int:
        return 700 if self.is_disk else 400

    @property
    def font_color(self) -> str | None:
        return DISK_FONT_COLOR if self.is_disk else None

    @property
    def background_tint(self) -> str | None:
        return DISK_BACKGROUND if self.is_disk else None


# ==============================================================================
# Partition Table Domain
# ==============================================================================


class RegionType(Enum):
    OCCUPIED = "occupied"
    FREE = "free"


@dataclass(frozen=True)
class Region:
    """A contiguous span of a disk in MiB, either a partition or free space."""

    start_mib: int
    end_mib: int
    region_type: RegionType
    index: int | None = None  # partition number, None for free space
    filesystem: str | None = None
    partition_type: str | None = None  # primary/logical/extended on msdos tables

    @property
    def size_mib(self) -> int:
        return self.end_mib - self.start_mib

    @property
    def is_free(self) -> bool:
        return self.region_type is RegionType.FREE


@dataclass(frozen=True)
class SizeState:
    """Snapshot of a :class:`~driveassist.storage.units.UnitConversionModel`."""

    bytes: int
    mib: int
    gib: float
    sectors: int
    start_sector: int
    end_sector: int
    sector_size: int


# ==============================================================================
# Filesystem Domain
# ==============================================================================


class FilesystemFamily(Enum):
    EXT2 = "ext2"
    EXT3 = "ext3"
    EXT4 = "ext4"
    NTFS = "ntfs"
    EXFAT = "exfat"
    FAT32 = "fat32"
    XFS = "xfs"
    BTRFS = "btrfs"
    F2FS = "f2fs"

    @property
    def is_ext(self) -> bool:
        return self in (FilesystemFamily.EXT2, FilesystemFamily.EXT3, FilesystemFamily.EXT4)

    @classmethod
    def from_name(cls, name: str | None) -> FilesystemFamily | None:
        """Map a reported filesystem name (blkid, lsblk, parted) to a family.

        Returns None for names that belong to no supported family.
        """
        if not name:
            return None
        normalized = name.strip().lower()
        aliases = {
            "vfat": cls.FAT32,
            "fat": cls.FAT32,
            "fat16": cls.FAT32,
            "msdos": cls.FAT32,
            "ntfs3": cls.NTFS,
            "ntfs-3g": cls.NTFS,
        }
        if normalized in aliases:
            return aliases[normalized]
        for family in cls:
            if family.value == normalized:
                return family
        return None


def ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def align_to_mib(sector: int, sector_size: int) -> int:
    """Round ``sector`` up to the next MiB boundary, never below the first MiB.

    The first MiB holds the partition table and bootloader gap, so a start
    of sector 34 on a 512-byte disk becomes 2048.
    """
    per_mib = MIB // sector_size
    if sector < per_mib:
        return per_mib
    return ceil_div(sector, per_mib) * per_mib


@dataclass(frozen=True)
class ResizeRequest:
    """Resize of an existing partition to ``target_mib``.

    Sector numbers are absolute positions on the disk in logical sectors.
    ``disk_total_sectors`` clamps the new end to the last sector of the disk.
    """

    disk_path: str
    partition_path: str
    partition_index: int
    start_sector: int
    current_end_sector: int
    target_mib: int
    sector_size: int
    disk_total_sectors: int
    filesystem: str | None = None

    @property
    def target_sectors(self) -> int:
        return ceil_div(self.target_mib * MIB, self.sector_size)

    @property
    def final_end_sector(self) -> int:
        return min(
            self.start_sector + self.target_sectors - 1,
            self.disk_total_sectors - 1,
        )

    @property
    def current_sectors(self) -> int:
        return self.current_end_sector - self.start_sector + 1

    @property
    def is_shrink(self) -> bool:
        return self.final_end_sector < self.current_end_sector


@dataclass(frozen=True)
class CreateFsRequest:
    """Create a partition inside a free region and format it.

    ``sector_size`` is the disk's logical sector size and drives all sector
    arithmetic. ``size_mib`` defaults to the whole region. ``cluster_size`` is
    family specific; None means the family default.
    """

    disk_path: str
    start_mib: int
    end_mib: int
    family: FilesystemFamily
    sector_size: int
    size_mib: int | None = None
    cluster_size: int | None = None
    align: bool = True
    label: str | None = None
    quick: bool = True

    @property
    def actual_start_mib(self) -> int:
        if self.align:
            return max(self.start_mib, 1)
        return self.start_mib

    @property
    def actual_end_mib(self) -> int:
        if self.size_mib is None:
            return self.end_mib
        return min(self.actual_start_mib + self.size_mib, self.end_mib)

    @property
    def start_sector(self) -> int:
        raw = self.actual_start_mib * MIB // self.sector_size
        if not self.align:
            return raw
        return align_to_mib(raw, self.sector_size)

    @property
    def end_sector(self) -> int:
        return self.actual_end_mib * MIB // self.sector_size - 1


# ==============================================================================
# Workflow Domain
# ==============================================================================


class Severity(Enum):
    """How much confirmation an operation needs before it runs."""

    CAUTION = "caution"  # may modify data, recoverable
    DESTRUCTIVE = "destructive"  # destroys the target's contents
    IRREVERSIBLE = "irreversible"  # destroys a whole disk's data or layout

    @property
    def confirmations(self) -> int:
        return 2 if self is Severity.IRREVERSIBLE else 1


@dataclass(frozen=True)
class OperationDescription:
    """What the user is asked to approve."""

    action: str  # e.g. "Create ext4 filesystem"
    target: str  # device path
    consequences: str  # plain-language effect on data


class WorkflowState(Enum):
    IDLE = "idle"
    CONFIRMED = "confirmed"
    UNMOUNTING = "unmounting"
    ACTING = "acting"
    SETTLING = "settling"
    REFRESHING = "refreshing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowState.DONE, WorkflowState.FAILED)


@dataclass(frozen=True)
class WorkflowResult:
    success: bool
    target: str
    reason: str | None = None
    exit_code: int | None = None
