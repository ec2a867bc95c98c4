"""
Pytest configuration and shared fixtures for driveassist tests.

This module provides sample utility reports and fake collaborators (executor,
scheduler, confirmer) used across the test modules. No fixture touches a
real block device.
"""

from typing import Callable, List, Tuple

import pytest

from driveassist.config import settings
from driveassist.domain.models import OperationDescription, Severity
from driveassist.services.planner import PlannedOperation
from driveassist.storage.commands import Command
from driveassist.storage.device_lock import DeviceLockRegistry


# ==============================================================================
# Settings Isolation
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Run every test against default settings stored in a temp file."""
    monkeypatch.setattr(settings, "SETTINGS_PATH", tmp_path / "settings.json")
    monkeypatch.setattr(settings.settings_store, "values", dict(settings.DEFAULT_SETTINGS))
    yield


# ==============================================================================
# Report Fixtures
# ==============================================================================


@pytest.fixture
def lsblk_report() -> str:
    """Fixture providing ``lsblk -P`` output for two disks and an NVMe drive."""
    return "\n".join(
        [
            'NAME="sdb" SIZE="29.8G" TYPE="disk" FSTYPE="vfat" MOUNTPOINT="" UUID="1A2B-3C4D" MODEL="Ultra Fit"',
            'NAME="sdb1" SIZE="29.8G" TYPE="part" FSTYPE="ext4" MOUNTPOINT="/media/usb" UUID="0f3c9a1e-1111-4c2d-9a77-5b6a2b8c1d00" MODEL=""',
            'NAME="nvme0n1p2" SIZE="200G" TYPE="part" FSTYPE="ext4" MOUNTPOINT="/" UUID="abcd-ef" MODEL=""',
            'NAME="sda" SIZE="465.8G" TYPE="disk" FSTYPE="" MOUNTPOINT="" UUID="" MODEL="Samsung\\x20SSD"',
            'NAME="nvme0n1" SIZE="238.5G" TYPE="disk" FSTYPE="" MOUNTPOINT="" UUID="" MODEL="WD\\x20Blue"',
            'NAME="sda1" SIZE="512M" TYPE="part" FSTYPE="vfat" MOUNTPOINT="/boot/efi" UUID="7E1F-22A0" MODEL=""',
            'NAME="nvme0n1p1" SIZE="512M" TYPE="part" FSTYPE="vfat" MOUNTPOINT="-" UUID="AB12-CD34" MODEL=""',
            'NAME="sda2" SIZE="465.3G" TYPE="part" FSTYPE="" MOUNTPOINT="" UUID="" MODEL=""',
        ]
    )


@pytest.fixture
def parted_gpt_report() -> str:
    """Fixture providing ``parted unit MiB print free`` output for a GPT disk."""
    return """Model: SanDisk Ultra Fit (scsi)
Disk /dev/sdb: 30528MiB
Sector size (logical/physical): 512B/512B
Partition Table: gpt
Disk Flags:

Number  Start    End       Size      File system  Name     Flags
        0.02MiB  1.00MiB   0.98MiB   Free Space
 1      1.00MiB  500MiB    499MiB    ext4         primary
 2      500MiB   1000MiB   500MiB                 data
        1000MiB  30528MiB  29528MiB  Free Space

"""


@pytest.fixture
def parted_msdos_report() -> str:
    """Fixture providing ``parted unit MiB print free`` output for an msdos disk."""
    return """Model: ATA Samsung SSD (scsi)
Disk /dev/sda: 476940MiB
Sector size (logical/physical): 512B/512B
Partition Table: msdos
Disk Flags:

Number  Start     End        Size       Type     File system  Flags
        0.03MiB   1.00MiB    0.97MiB             Free Space
 1      1.00MiB   513MiB     512MiB     primary  fat32        boot
 2      513MiB    476939MiB  476426MiB  primary  unknown
"""


# ==============================================================================
# Collaborator Fakes
# ==============================================================================


class FakeScheduler:
    """Scheduler that queues callbacks until the test runs them."""

    def __init__(self):
        self.pending: List[Tuple[float, Callable[[], None]]] = []

    def call_later(self, delay, callback):
        self.pending.append((delay, callback))

    def run_next(self) -> float:
        delay, callback = self.pending.pop(0)
        callback()
        return delay

    def run_all(self) -> List[float]:
        delays = []
        while self.pending:
            delays.append(self.run_next())
        return delays


class FakeExecutor:
    """Executor that records commands and lets the test decide the exit code."""

    def __init__(self, exit_code=None):
        self.commands: List[Command] = []
        self.callbacks = []
        self.exit_code = exit_code

    def run(self, command, on_exit):
        self.commands.append(command)
        self.callbacks.append(on_exit)
        if self.exit_code is not None:
            on_exit(self.exit_code)

    def finish(self, exit_code=0):
        self.callbacks.pop(0)(exit_code)


class ScriptedConfirmer:
    """Confirmer that answers from a list and remembers every prompt."""

    def __init__(self, *answers: bool):
        self.answers = list(answers)
        self.prompts: List[Tuple[str, str]] = []

    def __call__(self, title, message):
        self.prompts.append((title, message))
        return self.answers.pop(0) if self.answers else False


@pytest.fixture
def fake_scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def registry() -> DeviceLockRegistry:
    return DeviceLockRegistry()


@pytest.fixture
def confirmer_factory():
    return ScriptedConfirmer


@pytest.fixture
def format_plan() -> PlannedOperation:
    """A plan to format /dev/sdb1 as ext4."""
    return PlannedOperation(
        description=OperationDescription(
            action="Format as ext4",
            target="/dev/sdb1",
            consequences="All data on /dev/sdb1 will be erased.",
        ),
        severity=Severity.DESTRUCTIVE,
        payload=Command.of("mkfs.ext4", "-F", "-b", "4096", "/dev/sdb1"),
        target="/dev/sdb1",
        reread_disk="/dev/sdb",
        refresh_delay=3.5,
    )
