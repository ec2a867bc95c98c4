"""GRUB bootloader installation scripts.

The target partition is mounted on a scratch directory, grub-install runs
against it, and the mount is released with two bounded attempts. If the
directory is still mounted afterwards the script fails and prints the
manual unmount commands.
"""

from __future__ import annotations

from driveassist.storage.commands import Command, Script, ScriptBuilder, quote
from driveassist.storage.names import base_disk, device_path
from driveassist.storage.partition import unmount_remediation

UNMOUNT_TIMEOUT_SECONDS = 15
UNMOUNT_ATTEMPTS = 2


def _install(partition: str, mount_dir: str, grub_install: Command) -> Script:
    mnt = quote(mount_dir)
    builder = ScriptBuilder(strict=False)
    builder.run("mkdir", "-p", mount_dir)
    builder.raw(Command.of("mount", partition, mount_dir).render() + " || exit 1")
    builder.raw(grub_install.render())
    builder.raw("status=$?")
    builder.run("sync")
    builder.raw(f"for attempt in {' '.join(str(n) for n in range(1, UNMOUNT_ATTEMPTS + 1))}; do")
    builder.raw(f"  timeout {UNMOUNT_TIMEOUT_SECONDS} umount {mnt} && break")
    builder.raw("  sleep 2")
    builder.raw("done")
    builder.raw(f"if mountpoint -q {mnt}; then")
    for line in unmount_remediation([mount_dir]).splitlines():
        builder.raw(f"  echo {quote(line)} >&2")
    builder.raw("  exit 1")
    builder.raw("fi")
    builder.raw('exit "$status"')
    return builder.build()


def synthesize_grub_uefi(partition: str, mount_dir: str) -> Script:
    """Install a removable-media EFI GRUB onto a FAT EFI system partition."""
    grub = Command.of(
        "grub-install",
        "--target=x86_64-efi",
        f"--efi-directory={mount_dir}",
        f"--boot-directory={mount_dir}/boot",
        "--removable",
        "--no-nvram",
    )
    return _install(partition, mount_dir, grub)


def synthesize_grub_bios(partition: str, mount_dir: str) -> Script:
    """Install BIOS GRUB into the MBR of the partition's disk."""
    disk = device_path(base_disk(partition))
    grub = Command.of(
        "grub-install",
        "--target=i386-pc",
        f"--boot-directory={mount_dir}/boot",
        disk,
    )
    return _install(partition, mount_dir, grub)
