"""Filesystem command synthesis.

Builds, but never runs, the commands that create, format, resize, repair
and relabel filesystems. One handler table, :data:`FAMILY_TOOLS`, holds
what each :class:`FilesystemFamily` supports; a family/operation pair with
no handler yields :class:`Unsupported` instead of a command.

Creation defaults:

    ====== ================= ========== ==============
    family tool              unit flag  default unit
    ====== ================= ========== ==============
    ext4   mkfs.ext4 -F      -b         4096
    ext3   mkfs.ext3 -F      -b         4096
    ext2   mkfs.ext2 -F      -b         1024
    ntfs   mkfs.ntfs -F [-Q] -c         tool default
    exfat  mkfs.exfat        -s         8
    fat32  mkfs.vfat -F 32   -s         1
    ====== ================= ========== ==============

Resizing keeps the filesystem inside its partition at every step: on a
shrink the filesystem is shrunk first and the partition cut to the
filesystem's real end afterwards; on a grow the partition is extended
first and the filesystem grown to fill it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Union

from driveassist.domain.models import (
    MIB,
    CreateFsRequest,
    FilesystemFamily,
    ResizeRequest,
)
from driveassist.logging import LoggerFactory
from driveassist.storage import devices
from driveassist.storage.commands import (
    Command,
    Script,
    ScriptBuilder,
    Unsupported,
    quote,
)
from driveassist.storage.exceptions import InvalidRequestError
from driveassist.storage.names import partition_path

log = LoggerFactory.for_planner()

FamilyLike = Union[FilesystemFamily, str, None]

PARTITION_NOT_FOUND = "Error: Partition device not found"

# e2fsck exits 1 when it corrected errors, which still counts as success.
_E2FSCK_OK = "|| [ $? -le 1 ]"

_POWERS_OF_TWO = tuple(2**n for n in range(16))


def _ext_mkfs(tool: str) -> Callable[[int | None, bool, str | None], list[str]]:
    def build(unit: int | None, quick: bool, label: str | None) -> list[str]:
        args = [tool, "-F", "-b", str(unit)]
        if label:
            args += ["-L", label]
        return args

    return build


def _ntfs_mkfs(unit: int | None, quick: bool, label: str | None) -> list[str]:
    args = ["mkfs.ntfs", "-F"]
    if quick:
        args.append("-Q")
    if unit is not None:
        args += ["-c", str(unit)]
    if label:
        args += ["-L", label]
    return args


def _exfat_mkfs(unit: int | None, quick: bool, label: str | None) -> list[str]:
    args = ["mkfs.exfat", "-s", str(unit)]
    if label:
        args += ["-n", label]
    return args


def _fat32_mkfs(unit: int | None, quick: bool, label: str | None) -> list[str]:
    args = ["mkfs.vfat", "-F", "32", "-s", str(unit)]
    if label:
        args += ["-n", label.upper()]
    return args


def _label_last(*prefix: str) -> Callable[[str, str], list[str]]:
    return lambda device, label: [*prefix, device, label]


def _xfs_label(device: str, label: str) -> list[str]:
    return ["xfs_admin", "-L", label, device]


@dataclass(frozen=True)
class FamilyTools:
    """Everything the synthesizer knows about one filesystem family."""

    mkfs: Callable[[int | None, bool, str | None], list[str]] | None = None
    default_unit: int | None = None
    unit_choices: tuple[int, ...] = ()
    repair: tuple[str, ...] | None = None
    label: Callable[[str, str], list[str]] | None = None
    max_label_length: int = 0
    resize: str | None = None  # "ext" or "ntfs"
    slow_settle: bool = False


_EXT_BLOCKS = (1024, 2048, 4096, 8192, 16384, 32768, 65536)
_EXT_REPAIR = ("e2fsck", "-f", "-y", "-v")

FAMILY_TOOLS: dict[FilesystemFamily, FamilyTools] = {
    FilesystemFamily.EXT4: FamilyTools(
        mkfs=_ext_mkfs("mkfs.ext4"),
        default_unit=4096,
        unit_choices=_EXT_BLOCKS,
        repair=_EXT_REPAIR,
        label=_label_last("e2label"),
        max_label_length=16,
        resize="ext",
    ),
    FilesystemFamily.EXT3: FamilyTools(
        mkfs=_ext_mkfs("mkfs.ext3"),
        default_unit=4096,
        unit_choices=_EXT_BLOCKS,
        repair=_EXT_REPAIR,
        label=_label_last("e2label"),
        max_label_length=16,
        resize="ext",
        slow_settle=True,
    ),
    FilesystemFamily.EXT2: FamilyTools(
        mkfs=_ext_mkfs("mkfs.ext2"),
        default_unit=1024,
        unit_choices=_EXT_BLOCKS,
        repair=_EXT_REPAIR,
        label=_label_last("e2label"),
        max_label_length=16,
        resize="ext",
        slow_settle=True,
    ),
    FilesystemFamily.NTFS: FamilyTools(
        mkfs=_ntfs_mkfs,
        default_unit=None,
        unit_choices=tuple(size for size in _POWERS_OF_TWO if 512 <= size <= 65536),
        repair=("ntfsfix",),
        label=_label_last("ntfslabel"),
        max_label_length=128,
        resize="ntfs",
        slow_settle=True,
    ),
    FilesystemFamily.EXFAT: FamilyTools(
        mkfs=_exfat_mkfs,
        default_unit=8,
        unit_choices=_POWERS_OF_TWO,
        label=_label_last("exfatlabel"),
        max_label_length=15,
    ),
    FilesystemFamily.FAT32: FamilyTools(
        mkfs=_fat32_mkfs,
        default_unit=1,
        unit_choices=(1, 2, 4, 8, 16, 32, 64, 128),
        repair=("dosfsck", "-a", "-v"),
        label=_label_last("fatlabel"),
        max_label_length=11,
    ),
    FilesystemFamily.XFS: FamilyTools(
        repair=("xfs_repair",),
        label=_xfs_label,
        max_label_length=12,
    ),
    FilesystemFamily.BTRFS: FamilyTools(
        repair=("btrfs", "check", "--repair"),
        label=_label_last("btrfs", "filesystem", "label"),
        max_label_length=255,
    ),
    FilesystemFamily.F2FS: FamilyTools(
        repair=("fsck.f2fs", "-f"),
    ),
}


def resolve_family(filesystem: FamilyLike) -> FilesystemFamily | None:
    if isinstance(filesystem, FilesystemFamily):
        return filesystem
    return FilesystemFamily.from_name(filesystem)


def _family_name(filesystem: FamilyLike) -> str | None:
    if isinstance(filesystem, FilesystemFamily):
        return filesystem.value
    return filesystem


def cluster_choices(family: FilesystemFamily) -> tuple[int, ...]:
    """Valid block or cluster sizes for ``family``, empty if it cannot be created."""
    return FAMILY_TOOLS[family].unit_choices


def default_cluster(family: FilesystemFamily) -> int | None:
    return FAMILY_TOOLS[family].default_unit


def needs_long_settle(family: FamilyLike, *, quick: bool = False) -> bool:
    """Whether the kernel needs the long refresh delay after touching ``family``.

    A quick NTFS format is the one NTFS operation that settles fast.
    """
    resolved = resolve_family(family)
    if resolved is None:
        return False
    if resolved is FilesystemFamily.NTFS and quick:
        return False
    return FAMILY_TOOLS[resolved].slow_settle


def validate_label(family: FilesystemFamily, label: str) -> str:
    tools = FAMILY_TOOLS[family]
    if not label or not label.strip():
        raise InvalidRequestError("label", "label must not be empty")
    if any(not char.isprintable() for char in label):
        raise InvalidRequestError("label", "label contains control characters")
    if tools.max_label_length and len(label) > tools.max_label_length:
        raise InvalidRequestError(
            "label",
            f"{family.value} labels are limited to {tools.max_label_length} characters",
        )
    return label


def _mkfs_args(
    family: FilesystemFamily,
    cluster_size: int | None,
    quick: bool,
    label: str | None,
) -> list[str] | None:
    tools = FAMILY_TOOLS[family]
    if tools.mkfs is None:
        return None
    unit = cluster_size if cluster_size is not None else tools.default_unit
    if cluster_size is not None and cluster_size not in tools.unit_choices:
        raise InvalidRequestError(
            "cluster size",
            f"{cluster_size} is not valid for {family.value}; "
            f"choose one of {', '.join(str(choice) for choice in tools.unit_choices)}",
        )
    if label:
        validate_label(family, label)
    return tools.mkfs(unit, quick, label)


def _settle(builder: ScriptBuilder, disk: str) -> None:
    builder.any_of(Command.of("udevadm", "settle"), Command.of("true"))
    builder.any_of(
        Command.of("partprobe", disk),
        Command.of("blockdev", "--rereadpt", disk),
        Command.of("true"),
    )


# ==============================================================================
# Creation
# ==============================================================================


def synthesize_format(
    filesystem: FamilyLike,
    device_path: str,
    *,
    cluster_size: int | None = None,
    quick: bool = True,
    label: str | None = None,
) -> Command | Unsupported:
    """mkfs command for an existing partition."""
    family = resolve_family(filesystem)
    if family is None:
        return Unsupported(_family_name(filesystem), "format")
    args = _mkfs_args(family, cluster_size, quick, label)
    if args is None:
        return Unsupported(family.value, "format")
    return Command.of(*args, device_path)


def synthesize_create(request: CreateFsRequest) -> Script | Unsupported:
    """Script that creates a partition in a free region and formats it.

    The new partition is located by its start sector in ``parted -m``
    output, so an existing partition is never picked up by mistake.
    """
    family = request.family
    args = _mkfs_args(family, request.cluster_size, request.quick, request.label)
    if args is None:
        return Unsupported(family.value, "create")

    start, end = request.start_sector, request.end_sector
    if end <= start:
        raise InvalidRequestError(
            "region",
            f"{request.actual_start_mib}-{request.actual_end_mib} MiB leaves no room "
            f"for a partition on {request.disk_path}",
        )
    disk = request.disk_path
    locate = Command.of("parted", "-s", "-m", disk, "unit", "s", "print").render()
    match_start = quote(f'$2 == "{start}s" {{print $1}}')
    not_found = f"{{ echo {quote(PARTITION_NOT_FOUND)} >&2; exit 1; }}"

    builder = ScriptBuilder()
    builder.run("parted", "-s", disk, "unit", "s", "mkpart", "primary", f"{start}s", f"{end}s")
    _settle(builder, disk)
    builder.run("sleep", "2")
    builder.raw(f"num=$({locate} | awk -F: {match_start})")
    builder.raw(f'[ -n "$num" ] || {not_found}')
    builder.raw(f'new_part={quote(partition_path(disk, ""))}"$num"')
    builder.raw('[ -b "$new_part" ] || ' + not_found)
    builder.run(*args, suffix='"$new_part"')
    builder.raw("udevadm settle || true")
    script = builder.build()
    log.bind(family=family.value, disk=disk).debug(
        f"Create {family.value} on {disk}: sectors {start}-{end}"
    )
    return script


# ==============================================================================
# Resize
# ==============================================================================


def _report(builder: ScriptBuilder, heading: str, request: ResizeRequest) -> None:
    builder.echo(f"=== {heading} ===")
    builder.raw(
        Command.of("parted", "-s", request.disk_path, "unit", "s", "print").render()
        + " || true"
    )


def _resize_ext(builder: ScriptBuilder, request: ResizeRequest) -> None:
    part = request.partition_path
    disk = request.disk_path
    index = request.partition_index
    if request.is_shrink:
        builder.run("e2fsck", "-f", "-y", part, suffix=_E2FSCK_OK)
        builder.run("resize2fs", part, f"{request.target_mib}M")
        dump = Command.of("dumpe2fs", "-h", part).render()
        builder.raw(f"blk_cnt=$({dump} 2>/dev/null | awk -F: '/^Block count:/ {{print $2}}' | tr -d ' ')")
        builder.raw(f"blk_sz=$({dump} 2>/dev/null | awk -F: '/^Block size:/ {{print $2}}' | tr -d ' ')")
        builder.raw(
            f"fs_sectors=$(( (blk_cnt * blk_sz + {request.sector_size} - 1)"
            f" / {request.sector_size} ))"
        )
        builder.raw(f"new_end=$(( {request.start_sector} + fs_sectors - 1 ))")
        # parted asks for confirmation on shrink; the prompt goes to the terminal.
        builder.raw(
            Command.of("parted", disk, "unit", "s", "resizepart", index).render()
            + ' "${new_end}s"'
        )
    else:
        builder.run(
            "parted", "-s", disk, "unit", "s", "resizepart", index,
            f"{request.final_end_sector}s",
        )
        builder.run("e2fsck", "-f", "-y", part, suffix=_E2FSCK_OK)
        builder.run("resize2fs", part)


def _resize_ntfs(builder: ScriptBuilder, request: ResizeRequest) -> None:
    part = request.partition_path
    disk = request.disk_path
    index = request.partition_index
    if request.is_shrink:
        target_bytes = request.target_mib * MIB
        builder.run("ntfsresize", "-f", "-n", "-s", target_bytes, part)
        builder.run("ntfsresize", "-f", "-s", target_bytes, part)
        builder.raw(
            Command.of(
                "parted", disk, "unit", "s", "resizepart", index,
                f"{request.final_end_sector}s",
            ).render()
        )
    else:
        builder.run(
            "parted", "-s", disk, "unit", "s", "resizepart", index,
            f"{request.final_end_sector}s",
        )
        builder.run("ntfsresize", "-f", "-n", part)
        builder.run("ntfsresize", "-f", part)


_RESIZERS = {"ext": _resize_ext, "ntfs": _resize_ntfs}


def synthesize_resize(request: ResizeRequest) -> Script | Unsupported:
    """Self-deleting script that resizes one partition and its filesystem."""
    family = resolve_family(request.filesystem)
    if family is None or FAMILY_TOOLS[family].resize is None:
        return Unsupported(request.filesystem, "resize")
    if request.target_mib <= 0:
        raise InvalidRequestError("target size", "must be at least 1 MiB")

    builder = ScriptBuilder()
    direction = "Shrinking" if request.is_shrink else "Growing"
    builder.echo(
        f"{direction} {request.partition_path} to {request.target_mib} MiB "
        f"(end sector {request.current_end_sector} -> {request.final_end_sector})"
    )
    _report(builder, "BEFORE", request)
    builder.run("umount", request.partition_path, suffix="2>/dev/null || true")
    _RESIZERS[FAMILY_TOOLS[family].resize](builder, request)
    _settle(builder, request.disk_path)
    _report(builder, "AFTER", request)
    return builder.build(self_delete=True)


# ==============================================================================
# Repair
# ==============================================================================


def synthesize_repair(filesystem: FamilyLike, device_path: str) -> Command | Unsupported:
    """Check-and-repair command for ``device_path``."""
    family = resolve_family(filesystem)
    if family is None or FAMILY_TOOLS[family].repair is None:
        return Unsupported(_family_name(filesystem), "repair")
    return Command.of(*FAMILY_TOOLS[family].repair, device_path)


_SUPERBLOCK_SECTION = re.compile(
    r"Superblock backups stored on blocks:\s*(?P<blocks>[\d,\s]+)", re.MULTILINE
)


def parse_backup_superblocks(report: str) -> list[int]:
    """Backup superblock locations from ``mke2fs -n`` output."""
    match = _SUPERBLOCK_SECTION.search(report)
    if not match:
        return []
    return [int(block) for block in re.findall(r"\d+", match.group("blocks"))]


def query_backup_superblocks(device_path: str) -> list[int]:
    """Dry-run mke2fs against ``device_path`` to list backup superblocks."""
    result = devices.run_command(["mke2fs", "-n", "-F", device_path], check=False)
    blocks = parse_backup_superblocks(result.stdout)
    log.debug(f"Backup superblocks for {device_path}: {blocks}")
    return blocks


def synthesize_deep_repair(
    filesystem: FamilyLike, device_path: str, superblocks: list[int]
) -> Script | Unsupported:
    """Recover an ext filesystem from the first usable backup superblock."""
    family = resolve_family(filesystem)
    if family is None or not family.is_ext:
        return Unsupported(_family_name(filesystem), "deep repair")
    if not superblocks:
        raise InvalidRequestError(
            "superblocks", f"no backup superblocks found for {device_path}"
        )
    part = quote(device_path)
    builder = ScriptBuilder(strict=False)
    builder.raw("status=1")
    builder.raw(f"for sb in {' '.join(str(block) for block in superblocks)}; do")
    builder.raw('  echo "Trying backup superblock $sb"')
    builder.raw(f'  e2fsck -b "$sb" -y {part}')
    builder.raw('  if [ $? -le 1 ]; then status=0; break; fi')
    builder.raw("done")
    builder.raw(
        '[ "$status" -eq 0 ] || { echo "No usable backup superblock" >&2; exit 1; }'
    )
    builder.run(*_EXT_REPAIR, device_path, suffix=_E2FSCK_OK)
    return builder.build()


# ==============================================================================
# Labels
# ==============================================================================


def synthesize_label(filesystem: FamilyLike, device_path: str, label: str) -> Command | Unsupported:
    family = resolve_family(filesystem)
    if family is None or FAMILY_TOOLS[family].label is None:
        return Unsupported(_family_name(filesystem), "label")
    validate_label(family, label)
    if family is FilesystemFamily.FAT32:
        label = label.upper()
    return Command.of(*FAMILY_TOOLS[family].label(device_path, label))
