"""Partition-table commands: labels, table removal, deletion, flags, mount and unmount."""

from __future__ import annotations

from typing import Iterable

from driveassist.storage.commands import Command, Script, ScriptBuilder, quote
from driveassist.storage.devices import UNMOUNT_FLAGS
from driveassist.storage.exceptions import InvalidRequestError
from driveassist.storage.names import device_name

TABLE_TYPES = {"msdos": "o", "gpt": "g"}

TABLE_STILL_PRESENT = "Error: partition table not fully deleted from"
MOUNT_FAILED = "Error: mount failed after 2 attempts"
MOUNT_TIMEOUT_SECONDS = 15
MOUNT_ROOT = "/mnt"


def synthesize_partition_table(disk_path: str, table_type: str, mounted: Iterable[str] = ()) -> Script:
    """Write a new empty partition table, unmounting the disk's partitions first.

    ``parted mklabel`` is tried first; fdisk with scripted input is the
    fallback when parted is missing or refuses.
    """
    if table_type not in TABLE_TYPES:
        raise InvalidRequestError(
            "partition table", f"{table_type!r} is not one of {', '.join(TABLE_TYPES)}"
        )
    builder = ScriptBuilder()
    for path in mounted:
        builder.run("umount", path, suffix="|| true")
    fdisk_input = quote(f"{TABLE_TYPES[table_type]}\\nw\\n")
    builder.raw(
        Command.of("parted", "-s", disk_path, "mklabel", table_type).render()
        + f" || printf {fdisk_input} | "
        + Command.of("fdisk", disk_path).render()
    )
    return builder.build()


def synthesize_delete_partition_table(disk_path: str, partitions: Iterable[str] = ()) -> Script:
    """Remove the partition table and every filesystem signature on a disk.

    Each partition is unmounted and wiped first, then the disk itself; the
    first 10 MiB are zeroed so no stale label survives. The script fails
    when parted still lists a partition table afterwards.
    """
    builder = ScriptBuilder()
    for path in partitions:
        builder.run("umount", path, suffix="2>/dev/null || true")
        builder.run("wipefs", "-a", path, suffix="|| true")
    builder.run("wipefs", "-a", disk_path, suffix="|| true")
    builder.run("dd", "if=/dev/zero", f"of={disk_path}", "bs=1M", "count=10", "conv=notrunc")
    builder.any_of(Command.of("udevadm", "settle"), Command.of("true"))
    builder.any_of(
        Command.of("partprobe", disk_path),
        Command.of("blockdev", "--rereadpt", disk_path),
        Command.of("true"),
    )
    builder.run("sleep", "2")
    listing = Command.of("parted", "-s", disk_path, "print").render()
    still_present = quote(f"{TABLE_STILL_PRESENT} {disk_path}")
    builder.raw(f"if {listing} 2>&1 | grep -q '^Number'; then")
    builder.raw(f"  echo {still_present} >&2")
    builder.raw("  exit 1")
    builder.raw("fi")
    return builder.build()


def synthesize_delete_partition(disk_path: str, index: int) -> Command:
    return Command.of("parted", "-s", disk_path, "rm", index)


def synthesize_boot_flag(disk_path: str, index: int, enabled: bool) -> Command:
    return Command.of("parted", "-s", disk_path, "set", index, "boot", "on" if enabled else "off")


def default_mount_point(path: str) -> str:
    return f"{MOUNT_ROOT}/{device_name(path)}"


def synthesize_mount(path: str, mount_point: str | None = None) -> Script:
    """Mount ``path`` on ``mount_point`` (default /mnt/NAME), retrying once."""
    mount_point = mount_point or default_mount_point(path)
    mount = f"timeout {MOUNT_TIMEOUT_SECONDS} " + Command.of("mount", path, mount_point).render()
    builder = ScriptBuilder()
    builder.raw(f"[ -b {quote(path)} ] || {{ echo {quote(f'Error: device {path} not found')} >&2; exit 1; }}")
    builder.run("mkdir", "-p", mount_point)
    builder.raw(f"{mount} || {{ sleep 2; {mount}; }} || {{ echo {quote(MOUNT_FAILED)} >&2; exit 1; }}")
    return builder.build()


def synthesize_unmount(path: str, mode: str = "normal") -> Command:
    if mode not in UNMOUNT_FLAGS:
        raise InvalidRequestError("unmount mode", f"{mode!r} is not normal, lazy or force")
    return Command.of("umount", *UNMOUNT_FLAGS[mode], path)


def unmount_remediation(paths: Iterable[str]) -> str:
    """Plain-language instructions for unmounting by hand."""
    lines = ["Close any programs using the device, then try one of:"]
    for path in paths:
        for mode in ("normal", "lazy", "force"):
            lines.append(f"  sudo {synthesize_unmount(path, mode).render()}")
    return "\n".join(lines)
