"""Workflow planning: turn a user request into a :class:`PlannedOperation`.

Each ``plan_*`` function applies the scope and precondition checks for one
operation, synthesizes its command, and picks the confirmation severity and
refresh delay. Nothing is executed here; the result is handed to an
:class:`~driveassist.services.sequencer.OperationSequencer`.

Refresh delays are a heuristic wait for the kernel and udev to settle after
the command exits. Nothing confirms the wait was long enough, so the
refreshed inventory can still lag behind a slow device.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Union

from driveassist.config import settings
from driveassist.domain.models import (
    MIB,
    CreateFsRequest,
    FilesystemFamily,
    OperationDescription,
    ResizeRequest,
    Severity,
)
from driveassist.logging import LoggerFactory
from driveassist.storage import blockio, boot, devices, format as fs_format, partition
from driveassist.storage.commands import (
    SHELL,
    Command,
    Script,
    require_supported,
    write_script,
)
from driveassist.storage.exceptions import DeviceResolutionError
from driveassist.storage.names import (
    base_disk,
    device_path,
    is_partition_name,
    partition_index,
)
from driveassist.storage.validation import (
    require_partition,
    require_whole_disk,
    validate_available_space,
    validate_device_path,
)

log = LoggerFactory.for_planner()

Payload = Union[Command, Script]


@dataclass(frozen=True)
class PlannedOperation:
    """A confirmed-ready operation: what runs, on what, and how to follow up."""

    description: OperationDescription
    severity: Severity
    payload: Payload
    target: str
    reread_disk: str | None
    refresh_delay: float
    unmount: bool = True
    script_file: bool = False

    def preview(self) -> str:
        return self.payload.render()

    def command_for_execution(self, scratch_dir: str | Path | None = None) -> Command:
        """The command handed to the executor.

        Scripts flagged ``script_file`` are written to the scratch directory
        here, after confirmation, and delete themselves when they finish.
        """
        if isinstance(self.payload, Command):
            return self.payload
        if self.script_file:
            directory = scratch_dir or settings.get_setting("scratch_dir", "/tmp")
            path = write_script(self.payload, directory, prefix="driveassist_resize_")
            log.debug(f"Wrote script {path}")
            return Command((SHELL, str(path)))
        return self.payload.as_command()


def refresh_delay_for(family: FilesystemFamily | str | None, *, quick: bool = False) -> float:
    if fs_format.needs_long_settle(family, quick=quick):
        return settings.get_float("refresh_delay_slow_seconds", settings.DEFAULT_REFRESH_DELAY_SLOW)
    return settings.get_float("refresh_delay_quick_seconds", settings.DEFAULT_REFRESH_DELAY_QUICK)


def _disk_of(path: str) -> str:
    return device_path(base_disk(path))


def _index_of(path: str) -> int:
    index = partition_index(path)
    if index is None:
        raise DeviceResolutionError(path, "no partition number in device name")
    return int(index)


def _wipe_severity(target: str) -> Severity:
    return Severity.DESTRUCTIVE if is_partition_name(target) else Severity.IRREVERSIBLE


# ==============================================================================
# Filesystems
# ==============================================================================


def plan_create_filesystem(request: CreateFsRequest) -> PlannedOperation:
    disk = validate_device_path(request.disk_path)
    require_whole_disk(disk, "Filesystem creation in free space")
    script = require_supported(fs_format.synthesize_create(request))
    size = request.actual_end_mib - request.actual_start_mib
    return PlannedOperation(
        description=OperationDescription(
            action=f"Create {request.family.value} partition",
            target=disk,
            consequences=(
                f"A new {size} MiB partition will be created in free space starting "
                f"at {request.actual_start_mib} MiB and formatted as {request.family.value}."
            ),
        ),
        severity=Severity.DESTRUCTIVE,
        payload=script,
        target=disk,
        reread_disk=disk,
        refresh_delay=refresh_delay_for(request.family, quick=request.quick),
        unmount=False,
    )


def plan_format(
    partition_path: str,
    family: FilesystemFamily,
    *,
    cluster_size: int | None = None,
    quick: bool = True,
    label: str | None = None,
) -> PlannedOperation:
    path = validate_device_path(partition_path)
    require_partition(path, "Format")
    command = require_supported(
        fs_format.synthesize_format(family, path, cluster_size=cluster_size, quick=quick, label=label)
    )
    return PlannedOperation(
        description=OperationDescription(
            action=f"Format as {family.value}",
            target=path,
            consequences=f"All data on {path} will be erased.",
        ),
        severity=Severity.DESTRUCTIVE,
        payload=command,
        target=path,
        reread_disk=_disk_of(path),
        refresh_delay=refresh_delay_for(family, quick=quick),
    )


def plan_resize(request: ResizeRequest) -> PlannedOperation:
    path = validate_device_path(request.partition_path)
    require_partition(path, "Resize")
    script = require_supported(fs_format.synthesize_resize(request))
    verb = "Shrink" if request.is_shrink else "Grow"
    return PlannedOperation(
        description=OperationDescription(
            action=f"{verb} partition to {request.target_mib} MiB",
            target=path,
            consequences=(
                f"The {request.filesystem} filesystem on {path} will be resized. "
                "Back up important data first; an interrupted resize can lose data."
            ),
        ),
        severity=Severity.DESTRUCTIVE,
        payload=script,
        target=path,
        reread_disk=request.disk_path,
        refresh_delay=refresh_delay_for(request.filesystem),
        script_file=True,
    )


def plan_repair(partition_path: str, filesystem: str | None) -> PlannedOperation:
    path = validate_device_path(partition_path)
    require_partition(path, "Filesystem repair")
    command = require_supported(fs_format.synthesize_repair(filesystem, path))
    return PlannedOperation(
        description=OperationDescription(
            action=f"Check and repair {filesystem}",
            target=path,
            consequences="The filesystem will be checked and any errors fixed automatically.",
        ),
        severity=Severity.CAUTION,
        payload=command,
        target=path,
        reread_disk=_disk_of(path),
        refresh_delay=refresh_delay_for(filesystem),
    )


def plan_deep_repair(
    partition_path: str,
    filesystem: str | None,
    superblocks: Callable[[str], list[int]] = fs_format.query_backup_superblocks,
) -> PlannedOperation:
    path = validate_device_path(partition_path)
    require_partition(path, "Deep filesystem recovery")
    family = fs_format.resolve_family(filesystem)
    blocks = superblocks(path) if family is not None and family.is_ext else []
    script = require_supported(fs_format.synthesize_deep_repair(filesystem, path, blocks))
    return PlannedOperation(
        description=OperationDescription(
            action="Recover filesystem from backup superblock",
            target=path,
            consequences=(
                "e2fsck will rebuild the filesystem from a backup superblock. "
                "Recently written files may be lost."
            ),
        ),
        severity=Severity.DESTRUCTIVE,
        payload=script,
        target=path,
        reread_disk=_disk_of(path),
        refresh_delay=refresh_delay_for(filesystem),
    )


def plan_label(partition_path: str, filesystem: str | None, label: str) -> PlannedOperation:
    path = validate_device_path(partition_path)
    require_partition(path, "Label change")
    command = require_supported(fs_format.synthesize_label(filesystem, path, label))
    return PlannedOperation(
        description=OperationDescription(
            action=f"Set label to {label!r}",
            target=path,
            consequences="The filesystem label will be changed.",
        ),
        severity=Severity.CAUTION,
        payload=command,
        target=path,
        reread_disk=None,
        refresh_delay=refresh_delay_for(filesystem),
    )


# ==============================================================================
# Partition tables
# ==============================================================================


def plan_partition_table(disk_path: str, table_type: str, mounted: list[str]) -> PlannedOperation:
    disk = validate_device_path(disk_path)
    require_whole_disk(disk, "Partition table creation")
    script = partition.synthesize_partition_table(disk, table_type, mounted)
    return PlannedOperation(
        description=OperationDescription(
            action=f"Create {table_type} partition table",
            target=disk,
            consequences=f"Every partition on {disk} will be deleted.",
        ),
        severity=Severity.IRREVERSIBLE,
        payload=script,
        target=disk,
        reread_disk=disk,
        refresh_delay=refresh_delay_for(None),
    )


def plan_delete_partition_table(disk_path: str, partitions: list[str]) -> PlannedOperation:
    """Wipe the table and signatures of a whole disk; ``partitions`` are wiped first."""
    disk = validate_device_path(disk_path)
    require_whole_disk(disk, "Partition table deletion")
    return PlannedOperation(
        description=OperationDescription(
            action="Delete partition table",
            target=disk,
            consequences=f"All partitions and data on {disk} will be lost. This cannot be undone.",
        ),
        severity=Severity.IRREVERSIBLE,
        payload=partition.synthesize_delete_partition_table(
            disk, [validate_device_path(path) for path in partitions]
        ),
        target=disk,
        reread_disk=disk,
        refresh_delay=refresh_delay_for(None),
    )


def plan_delete_partition(partition_path: str) -> PlannedOperation:
    path = validate_device_path(partition_path)
    require_partition(path, "Partition deletion")
    disk = _disk_of(path)
    return PlannedOperation(
        description=OperationDescription(
            action="Delete partition",
            target=path,
            consequences=f"{path} and all data on it will be removed from {disk}.",
        ),
        severity=Severity.DESTRUCTIVE,
        payload=partition.synthesize_delete_partition(disk, _index_of(path)),
        target=path,
        reread_disk=disk,
        refresh_delay=refresh_delay_for(None),
    )


def plan_boot_flag(partition_path: str, enabled: bool) -> PlannedOperation:
    path = validate_device_path(partition_path)
    require_partition(path, "Boot flag change")
    disk = _disk_of(path)
    return PlannedOperation(
        description=OperationDescription(
            action=f"Turn boot flag {'on' if enabled else 'off'}",
            target=path,
            consequences="The partition table entry will be updated; data is not touched.",
        ),
        severity=Severity.CAUTION,
        payload=partition.synthesize_boot_flag(disk, _index_of(path), enabled),
        target=path,
        reread_disk=disk,
        refresh_delay=refresh_delay_for(None),
        unmount=False,
    )


def plan_mount(path: str, mount_point: str | None = None) -> PlannedOperation:
    path = validate_device_path(path)
    mount_point = mount_point or partition.default_mount_point(path)
    return PlannedOperation(
        description=OperationDescription(
            action=f"Mount on {mount_point}",
            target=path,
            consequences="The filesystem becomes writable at the mount point; data is not changed.",
        ),
        severity=Severity.CAUTION,
        payload=partition.synthesize_mount(path, mount_point),
        target=path,
        reread_disk=None,
        refresh_delay=refresh_delay_for(None),
        unmount=False,
    )


# ==============================================================================
# Raw device operations
# ==============================================================================


def plan_shred(target: str, passes: int = 3) -> PlannedOperation:
    path = validate_device_path(target)
    return PlannedOperation(
        description=OperationDescription(
            action=f"Shred ({passes} passes plus zero fill)",
            target=path,
            consequences=f"Every byte of {path} will be overwritten. Data cannot be recovered.",
        ),
        severity=_wipe_severity(path),
        payload=blockio.synthesize_shred(path, passes),
        target=path,
        reread_disk=_disk_of(path),
        refresh_delay=refresh_delay_for(None),
    )


def plan_erase(target: str, *, multi_pass: bool = False) -> PlannedOperation:
    path = validate_device_path(target)
    passes = len(blockio.ERASE_PASSES) if multi_pass else 1
    return PlannedOperation(
        description=OperationDescription(
            action=f"Erase ({passes} pass{'es' if passes > 1 else ''})",
            target=path,
            consequences=f"{path} will be overwritten. Data cannot be recovered.",
        ),
        severity=_wipe_severity(path),
        payload=blockio.synthesize_erase(path, multi_pass=multi_pass),
        target=path,
        reread_disk=_disk_of(path),
        refresh_delay=refresh_delay_for(None),
    )


def plan_image_copy(source: str, image_path: str) -> PlannedOperation:
    path = validate_device_path(source)
    return PlannedOperation(
        description=OperationDescription(
            action="Copy to image file",
            target=path,
            consequences=f"{path} will be read into {image_path}; an existing file is replaced.",
        ),
        severity=Severity.CAUTION,
        payload=blockio.synthesize_image_copy(path, image_path),
        target=path,
        reread_disk=None,
        refresh_delay=refresh_delay_for(None),
    )


def plan_image_restore(image_path: str, target: str) -> PlannedOperation:
    path = validate_device_path(target)
    return PlannedOperation(
        description=OperationDescription(
            action=f"Restore image {image_path}",
            target=path,
            consequences=f"Everything on {path} will be replaced by the image contents.",
        ),
        severity=_wipe_severity(path),
        payload=blockio.synthesize_image_restore(image_path, path),
        target=path,
        reread_disk=_disk_of(path),
        refresh_delay=refresh_delay_for(None),
    )


def plan_bootloader(partition_path: str, mode: str) -> PlannedOperation:
    """GRUB install in ``"uefi"`` or ``"bios"`` mode."""
    path = validate_device_path(partition_path)
    require_partition(path, "Bootloader installation")
    mount_dir = settings.get_setting("grub_mount_dir", "/mnt/driveassist_grub")
    if mode == "uefi":
        script = boot.synthesize_grub_uefi(path, mount_dir)
    elif mode == "bios":
        script = boot.synthesize_grub_bios(path, mount_dir)
    else:
        raise ValueError(f"Unknown bootloader mode: {mode}")
    return PlannedOperation(
        description=OperationDescription(
            action=f"Install GRUB ({mode.upper()})",
            target=path,
            consequences=(
                f"GRUB will be written to {path}"
                + (f" and the boot sector of {_disk_of(path)}." if mode == "bios" else ".")
            ),
        ),
        severity=Severity.DESTRUCTIVE,
        payload=script,
        target=path,
        reread_disk=None,
        refresh_delay=refresh_delay_for(None),
    )


# ==============================================================================
# Benchmarks
# ==============================================================================


def plan_read_benchmark(target: str, size_mib: int) -> PlannedOperation:
    path = validate_device_path(target)
    return PlannedOperation(
        description=OperationDescription(
            action=f"Read benchmark ({size_mib} MiB)",
            target=path,
            consequences="Data is only read; nothing is modified.",
        ),
        severity=Severity.CAUTION,
        payload=blockio.synthesize_read_benchmark(path, size_mib),
        target=path,
        reread_disk=None,
        refresh_delay=0.0,
        unmount=False,
    )


def plan_file_write_benchmark(
    directory: str,
    size_mib: int,
    free_space: Callable[[str | Path], int] | None = None,
) -> PlannedOperation:
    """File-based write test; refused outright when the directory lacks room."""
    validate_available_space(directory, size_mib * MIB, free_space)
    test_file = blockio.benchmark_file_path(directory)
    return PlannedOperation(
        description=OperationDescription(
            action=f"Write benchmark ({size_mib} MiB)",
            target=directory,
            consequences=f"A temporary {size_mib} MiB file {test_file} is written and removed.",
        ),
        severity=Severity.CAUTION,
        payload=blockio.synthesize_file_write_benchmark(directory, size_mib),
        target=directory,
        reread_disk=None,
        refresh_delay=0.0,
        unmount=False,
    )


def plan_raw_write_benchmark(target: str, size_mib: int) -> PlannedOperation:
    path = validate_device_path(target)
    return PlannedOperation(
        description=OperationDescription(
            action=f"Raw write benchmark ({size_mib} MiB)",
            target=path,
            consequences=f"The first {size_mib} MiB of {path} will be overwritten with zeros.",
        ),
        severity=_wipe_severity(path),
        payload=blockio.synthesize_raw_write_benchmark(path, size_mib),
        target=path,
        reread_disk=_disk_of(path),
        refresh_delay=refresh_delay_for(None),
    )


def resize_request_for(partition_path: str, target_mib: int) -> ResizeRequest:
    """Build a :class:`ResizeRequest` from the partition's current geometry."""
    path = validate_device_path(partition_path)
    require_partition(path, "Resize")
    disk = _disk_of(path)
    index = _index_of(path)
    sector_size = devices.query_sector_size(disk)
    bounds = devices.query_partition_sectors(disk, index)
    if bounds is None:
        raise DeviceResolutionError(path, f"partition {index} not found on {disk}")
    return ResizeRequest(
        disk_path=disk,
        partition_path=path,
        partition_index=index,
        start_sector=bounds[0],
        current_end_sector=bounds[1],
        target_mib=target_mib,
        sector_size=sector_size,
        disk_total_sectors=devices.query_total_sectors(disk, sector_size),
        filesystem=devices.query_filesystem_type(path),
    )
