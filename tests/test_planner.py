"""Tests for services/planner.py."""

import os
from unittest.mock import patch

import pytest

from driveassist.domain.models import (
    CreateFsRequest,
    FilesystemFamily,
    ResizeRequest,
    Severity,
)
from driveassist.services import planner
from driveassist.storage.commands import SHELL, Command, Script
from driveassist.storage.exceptions import (
    DeviceResolutionError,
    InsufficientSpaceError,
    OperationScopeError,
    UnsupportedFilesystemError,
)


def _resize_request(filesystem="ext4", target_mib=512):
    return ResizeRequest(
        disk_path="/dev/sdb",
        partition_path="/dev/sdb1",
        partition_index=1,
        start_sector=2048,
        current_end_sector=2048 + 2097152 - 1,
        target_mib=target_mib,
        sector_size=512,
        disk_total_sectors=62521344,
        filesystem=filesystem,
    )


class TestRefreshDelay:
    def test_quick_and_slow(self):
        assert planner.refresh_delay_for("ext4") == 3.5
        assert planner.refresh_delay_for("ext3") == 13.5
        assert planner.refresh_delay_for(FilesystemFamily.NTFS) == 13.5
        assert planner.refresh_delay_for(FilesystemFamily.NTFS, quick=True) == 3.5
        assert planner.refresh_delay_for(None) == 3.5

    def test_configurable(self):
        with patch("driveassist.services.planner.settings.get_float", return_value=20.0):
            assert planner.refresh_delay_for("ext2") == 20.0


class TestFilesystemPlans:
    def test_create_targets_disk(self):
        request = CreateFsRequest(
            disk_path="/dev/sdb", start_mib=1000, end_mib=30528,
            family=FilesystemFamily.EXFAT, sector_size=512, size_mib=1024,
        )
        plan = planner.plan_create_filesystem(request)
        assert plan.target == "/dev/sdb"
        assert plan.reread_disk == "/dev/sdb"
        assert plan.severity is Severity.DESTRUCTIVE
        assert plan.unmount is False
        assert isinstance(plan.payload, Script)
        assert "1024 MiB" in plan.description.consequences

    def test_create_refused_on_partition(self):
        request = CreateFsRequest(
            disk_path="/dev/sdb1", start_mib=0, end_mib=100,
            family=FilesystemFamily.EXT4, sector_size=512,
        )
        with pytest.raises(OperationScopeError):
            planner.plan_create_filesystem(request)

    def test_create_unsupported_family(self):
        request = CreateFsRequest(
            disk_path="/dev/sdb", start_mib=0, end_mib=100,
            family=FilesystemFamily.XFS, sector_size=512,
        )
        with pytest.raises(UnsupportedFilesystemError):
            planner.plan_create_filesystem(request)

    def test_format(self):
        plan = planner.plan_format("/dev/nvme0n1p2", FilesystemFamily.FAT32, label="usb")
        assert plan.payload == Command.of("mkfs.vfat", "-F", "32", "-s", "1", "-n", "USB", "/dev/nvme0n1p2")
        assert plan.reread_disk == "/dev/nvme0n1"
        assert plan.unmount is True

    def test_format_refused_on_disk(self):
        with pytest.raises(OperationScopeError):
            planner.plan_format("/dev/sdb", FilesystemFamily.EXT4)

    def test_format_rejects_bad_path(self):
        with pytest.raises(DeviceResolutionError):
            planner.plan_format("/dev/sdb1; rm -rf /", FilesystemFamily.EXT4)

    def test_resize_written_to_script_file(self, tmp_path):
        plan = planner.plan_resize(_resize_request())
        assert plan.script_file is True
        assert plan.description.action == "Shrink partition to 512 MiB"

        command = plan.command_for_execution(tmp_path)
        assert command.argv[0] == SHELL
        script_path = command.argv[1]
        assert os.path.basename(script_path).startswith("driveassist_resize_")
        assert os.access(script_path, os.X_OK)
        with open(script_path, encoding="utf-8") as handle:
            assert handle.read() == plan.preview()

    def test_resize_unsupported(self):
        with pytest.raises(UnsupportedFilesystemError):
            planner.plan_resize(_resize_request(filesystem="xfs"))

    def test_repair_is_caution(self):
        plan = planner.plan_repair("/dev/sdb1", "vfat")
        assert plan.severity is Severity.CAUTION
        assert plan.payload.render() == "dosfsck -a -v /dev/sdb1"

    def test_deep_repair_queries_superblocks(self):
        plan = planner.plan_deep_repair("/dev/sdb1", "ext4", superblocks=lambda path: [32768])
        assert "for sb in 32768; do" in plan.preview()

    def test_label_no_reread(self):
        plan = planner.plan_label("/dev/sdb1", "ext4", "backup")
        assert plan.payload.render() == "e2label /dev/sdb1 backup"
        assert plan.reread_disk is None


class TestPartitionPlans:
    def test_partition_table_is_irreversible(self):
        plan = planner.plan_partition_table("/dev/sdb", "gpt", ["/dev/sdb1"])
        assert plan.severity is Severity.IRREVERSIBLE
        assert plan.severity.confirmations == 2

    def test_partition_table_refused_on_partition(self):
        with pytest.raises(OperationScopeError):
            planner.plan_partition_table("/dev/sdb1", "gpt", [])

    def test_delete_partition_table(self):
        plan = planner.plan_delete_partition_table("/dev/sdb", ["/dev/sdb1"])
        assert plan.severity is Severity.IRREVERSIBLE
        assert plan.severity.confirmations == 2
        assert plan.reread_disk == "/dev/sdb"
        assert "wipefs -a /dev/sdb1" in plan.preview()

    def test_delete_partition_table_refused_on_partition(self):
        with pytest.raises(OperationScopeError):
            planner.plan_delete_partition_table("/dev/sdb1", [])

    def test_delete_partition_table_rejects_bad_partition_path(self):
        with pytest.raises(DeviceResolutionError):
            planner.plan_delete_partition_table("/dev/sdb", ["/dev/sdb1; reboot"])

    def test_mount_does_not_unmount(self):
        plan = planner.plan_mount("/dev/sdb1")
        assert plan.unmount is False
        assert plan.severity is Severity.CAUTION
        assert plan.description.action == "Mount on /mnt/sdb1"
        assert plan.reread_disk is None

    def test_delete_partition(self):
        plan = planner.plan_delete_partition("/dev/mmcblk0p2")
        assert plan.payload.render() == "parted -s /dev/mmcblk0 rm 2"
        assert plan.reread_disk == "/dev/mmcblk0"

    def test_boot_flag_does_not_unmount(self):
        plan = planner.plan_boot_flag("/dev/sdb1", True)
        assert plan.unmount is False
        assert plan.payload.argv[-2:] == ("boot", "on")


class TestRawPlans:
    def test_wipe_severity_by_scope(self):
        assert planner.plan_erase("/dev/sdb").severity is Severity.IRREVERSIBLE
        assert planner.plan_erase("/dev/sdb1").severity is Severity.DESTRUCTIVE
        assert planner.plan_shred("/dev/sdb", passes=1).severity is Severity.IRREVERSIBLE

    def test_image_copy_is_caution(self):
        plan = planner.plan_image_copy("/dev/sdb", "/srv/images/sdb.img")
        assert plan.severity is Severity.CAUTION
        assert plan.reread_disk is None

    def test_bootloader_modes(self):
        assert "x86_64-efi" in planner.plan_bootloader("/dev/sdb1", "uefi").preview()
        assert "i386-pc" in planner.plan_bootloader("/dev/sdb1", "bios").preview()
        with pytest.raises(ValueError):
            planner.plan_bootloader("/dev/sdb1", "coreboot")

    def test_read_benchmark_leaves_device_mounted(self):
        plan = planner.plan_read_benchmark("/dev/sdb", 128)
        assert plan.unmount is False
        assert plan.refresh_delay == 0.0

    def test_file_benchmark_space_check(self):
        with pytest.raises(InsufficientSpaceError):
            planner.plan_file_write_benchmark("/media/usb", 100, free_space=lambda path: 1024)

    def test_file_benchmark_fits(self):
        plan = planner.plan_file_write_benchmark(
            "/media/usb", 100, free_space=lambda path: 1024 ** 3
        )
        assert plan.target == "/media/usb"
        assert plan.command_for_execution().argv[:2] == (SHELL, "-c")


class TestResizeRequestFor:
    @patch("driveassist.services.planner.devices.query_filesystem_type", return_value="ext4")
    @patch("driveassist.services.planner.devices.query_total_sectors", return_value=62521344)
    @patch("driveassist.services.planner.devices.query_partition_sectors", return_value=(2048, 1050623))
    @patch("driveassist.services.planner.devices.query_sector_size", return_value=512)
    def test_builds_from_geometry(self, mock_ss, mock_bounds, mock_total, mock_fs):
        request = planner.resize_request_for("/dev/sdb1", 1024)
        assert request.disk_path == "/dev/sdb"
        assert request.partition_index == 1
        assert request.current_end_sector == 1050623
        assert request.filesystem == "ext4"
        assert not request.is_shrink
        mock_bounds.assert_called_once_with("/dev/sdb", 1)

    @patch("driveassist.services.planner.devices.query_partition_sectors", return_value=None)
    @patch("driveassist.services.planner.devices.query_sector_size", return_value=512)
    def test_missing_partition(self, mock_ss, mock_bounds):
        with pytest.raises(DeviceResolutionError):
            planner.resize_request_for("/dev/sdb3", 1024)
