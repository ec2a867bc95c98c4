"""Short, synchronous queries against the local block-device tools.

Every function here runs one bounded external command through
:func:`run_command` with a timeout from settings. Long-running destructive
commands are never executed here; those are handed to an executor by the
workflow sequencer.

Queries:
    - read_inventory_report(): ``lsblk -P`` key/value listing
    - read_free_space_report(): ``parted DISK unit MiB print free``
    - query_sector_size(): logical sector size via ``blockdev --getss``
    - query_total_sectors(): disk size in logical sectors
    - query_filesystem_type(): ``blkid`` TYPE of a partition
    - query_partition_sectors(): start/end sector of one partition
    - list_mounted_devices(): device paths currently in /proc/mounts

Mount handling:
    - unmount_path(): one ``umount`` attempt (normal, lazy or forced)
    - mounted_paths_for(): mounted devices that belong to a disk or partition
    - reread_partition_table(): ``partprobe``, falling back to
      ``blockdev --rereadpt`` when partprobe is missing or fails
"""

from __future__ import annotations

import contextlib
import os
import shutil
import subprocess
from pathlib import Path
from typing import Sequence

from driveassist.config import settings
from driveassist.logging import LoggerFactory
from driveassist.storage.exceptions import (
    CommandExecutionError,
    InventoryUnavailableError,
)
from driveassist.storage.names import base_disk, device_name

log = LoggerFactory.for_query()

INVENTORY_COLUMNS = "NAME,SIZE,TYPE,FSTYPE,MOUNTPOINT,UUID,MODEL"
PROC_MOUNTS = Path("/proc/mounts")

# parted and friends localize their headers; the parsers expect English.
_C_LOCALE = {"LC_ALL": "C", "LANG": "C"}

# Same status coreutils `timeout` reports.
TIMEOUT_EXIT_CODE = 124


def _query_timeout() -> float:
    return settings.get_float(
        "query_timeout_seconds", settings.DEFAULT_QUERY_TIMEOUT_SECONDS
    )


def run_command(
    command: Sequence[str],
    check: bool = True,
    log_output: bool = True,
    log_command: bool = True,
    timeout: float | None = None,
):
    """Run a short query and return the CompletedProcess.

    Raises:
        CommandExecutionError: when ``check`` is set and the command exits
            non-zero, the command cannot be started, or it outlives its
            timeout.
    """
    command = list(command)
    timeout = timeout if timeout is not None else _query_timeout()
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    env = {**os.environ, **_C_LOCALE}
    try:
        result = subprocess.run(
            command,
            check=False,
            text=True,
            capture_output=True,
            timeout=timeout,
            env=env,
        )
    except FileNotFoundError as error:
        log.debug(f"Command not found: {command[0]}")
        raise CommandExecutionError(command, 127, str(error)) from error
    except subprocess.TimeoutExpired as error:
        log.warning(f"Command timed out after {timeout}s: {' '.join(command)}")
        raise CommandExecutionError(
            command, TIMEOUT_EXIT_CODE, reason=f"Timed out after {timeout}s"
        ) from error
    if result.stdout and (log_output or result.returncode != 0):
        log.trace(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        log.debug(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    if check and result.returncode != 0:
        raise CommandExecutionError(command, result.returncode, result.stderr or "")
    return result


# ==============================================================================
# Reports
# ==============================================================================


def read_inventory_report() -> str:
    """Return the raw ``lsblk -P`` listing.

    Raises:
        InventoryUnavailableError: when lsblk cannot produce a report.
    """
    try:
        result = run_command(["lsblk", "-P", "-o", INVENTORY_COLUMNS], log_output=False)
    except CommandExecutionError as error:
        log.error(f"lsblk failed: {error}")
        raise InventoryUnavailableError(str(error)) from error
    return result.stdout


def read_free_space_report(disk_path: str) -> str:
    result = run_command(
        ["parted", "-s", disk_path, "unit", "MiB", "print", "free"], log_output=False
    )
    return result.stdout


# ==============================================================================
# Single-value queries
# ==============================================================================


def query_sector_size(disk_path: str) -> int:
    """Logical sector size of ``disk_path``, or the configured default."""
    default = settings.get_int("default_sector_size", settings.DEFAULT_SECTOR_SIZE)
    try:
        result = run_command(["blockdev", "--getss", disk_path])
    except CommandExecutionError as error:
        log.warning(f"Sector size query failed for {disk_path}, using {default}: {error}")
        return default
    try:
        size = int(result.stdout.strip())
    except ValueError:
        log.warning(f"Unexpected sector size output for {disk_path}: {result.stdout!r}")
        return default
    return size if size > 0 else default


def query_total_sectors(disk_path: str, sector_size: int | None = None) -> int:
    """Size of ``disk_path`` in logical sectors."""
    if sector_size is None:
        sector_size = query_sector_size(disk_path)
    command = ["blockdev", "--getsize64", disk_path]
    result = run_command(command)
    try:
        size_bytes = int(result.stdout.strip())
    except ValueError as error:
        raise CommandExecutionError(
            command, result.returncode, reason=f"Unexpected output {result.stdout.strip()!r}"
        ) from error
    return size_bytes // sector_size


def query_filesystem_type(partition_path: str) -> str | None:
    """Filesystem type reported by blkid, or None when blkid finds nothing."""
    try:
        result = run_command(
            ["blkid", "-o", "value", "-s", "TYPE", partition_path], check=False
        )
    except CommandExecutionError as error:
        log.debug(f"blkid unavailable for {partition_path}: {error}")
        return None
    value = result.stdout.strip()
    if result.returncode != 0 or not value:
        return None
    return value


def parse_partition_sectors(report: str, index: int) -> tuple[int, int] | None:
    """Find partition ``index`` in ``parted -m ... unit s print`` output."""
    prefix = f"{index}:"
    for line in report.splitlines():
        if not line.startswith(prefix):
            continue
        fields = line.split(":")
        if len(fields) < 3:
            return None
        try:
            return int(fields[1].rstrip("s")), int(fields[2].rstrip("s"))
        except ValueError:
            return None
    return None


def query_partition_sectors(disk_path: str, index: int) -> tuple[int, int] | None:
    """Start and end sector of partition ``index`` on ``disk_path``."""
    result = run_command(["parted", "-s", "-m", disk_path, "unit", "s", "print"])
    return parse_partition_sectors(result.stdout, index)


def available_space(path: str | Path) -> int:
    """Free bytes in the filesystem holding ``path``."""
    return shutil.disk_usage(str(path)).free


# ==============================================================================
# Mount state
# ==============================================================================


def list_mounted_devices(mounts_file: Path = PROC_MOUNTS) -> dict[str, list[str]]:
    """Map of mounted device path to its mountpoints."""
    mounted: dict[str, list[str]] = {}
    try:
        content = mounts_file.read_text(encoding="utf-8")
    except OSError as error:
        log.warning(f"Cannot read {mounts_file}: {error}")
        return mounted
    for line in content.splitlines():
        fields = line.split()
        if len(fields) < 2 or not fields[0].startswith("/dev/"):
            continue
        mountpoint = fields[1].replace("\\040", " ")
        mounted.setdefault(fields[0], []).append(mountpoint)
    return mounted


def mounted_paths_for(target: str, mounted: dict[str, list[str]] | None = None) -> list[str]:
    """Mounted device paths that are ``target`` or one of its partitions."""
    if mounted is None:
        mounted = list_mounted_devices()
    target_name = device_name(target)
    matches = []
    for path in mounted:
        name = device_name(path)
        if name == target_name or base_disk(name) == target_name:
            matches.append(path)
    return sorted(matches)


UNMOUNT_FLAGS = {"normal": (), "lazy": ("-l",), "force": ("-f",)}


def unmount_path(path: str, mode: str = "normal") -> bool:
    """Try to unmount ``path`` once. Returns True when umount succeeded."""
    flags = UNMOUNT_FLAGS[mode]
    try:
        result = run_command(["umount", *flags, path], check=False)
    except CommandExecutionError as error:
        log.warning(f"umount {path} could not run: {error}")
        return False
    if result.returncode != 0:
        log.debug(f"umount {path} exited {result.returncode}")
        return False
    return True


def reread_partition_table(disk_path: str) -> str | None:
    """Ask the kernel to re-read the partition table of ``disk_path``.

    Returns the name of the mechanism that worked, or None if both failed.
    """
    for command in (["partprobe", disk_path], ["blockdev", "--rereadpt", disk_path]):
        if not shutil.which(command[0]):
            log.debug(f"Skipping {command[0]}: command not found")
            continue
        try:
            run_command(command)
        except CommandExecutionError as error:
            log.debug(f"{command[0]} failed for {disk_path}: {error}")
            continue
        if shutil.which("udevadm"):
            with contextlib.suppress(CommandExecutionError):
                run_command(["udevadm", "settle", "--timeout=5"], log_command=False)
        return command[0]
    log.warning(f"Partition table re-read failed for {disk_path}")
    return None
