"""Tests for the command-line entry point."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from driveassist import main
from driveassist.domain.models import (
    DeviceKind,
    DeviceRecord,
    Region,
    RegionType,
    ResizeRequest,
)
from driveassist.storage.exceptions import InventoryUnavailableError


@pytest.fixture(autouse=True)
def no_log_files():
    with patch("driveassist.main.setup_logging") as mock_setup:
        yield mock_setup


class TestListCommand:
    @patch("driveassist.main.scan_inventory")
    def test_lists_records(self, mock_scan, capsys):
        mock_scan.return_value = [
            DeviceRecord(name="sdb", kind=DeviceKind.DISK, size="29.8G", device_type="disk", model="Ultra Fit"),
            DeviceRecord(
                name="sdb1", kind=DeviceKind.PARTITION, size="29.8G", device_type="part",
                filesystem="ext4", mountpoint="/media/usb",
            ),
        ]
        assert main.main(["list"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith("NAME")
        assert lines[1].startswith("sdb ")
        assert lines[2].startswith("  sdb1")
        assert "/media/usb" in lines[2]

    @patch("driveassist.main.scan_inventory", side_effect=InventoryUnavailableError("lsblk not found"))
    def test_inventory_failure(self, mock_scan, capsys):
        assert main.main(["list"]) == 1
        assert "Error: Device inventory unavailable: lsblk not found" in capsys.readouterr().err

    def test_debug_flag_reaches_logging(self, no_log_files):
        with patch("driveassist.main.scan_inventory", return_value=[]):
            main.main(["--debug", "list"])
        no_log_files.assert_called_once_with(debug=True, trace=False)


class TestAreasCommand:
    @patch("driveassist.main.read_regions")
    def test_regions(self, mock_regions, capsys):
        mock_regions.return_value = [
            Region(1, 500, RegionType.OCCUPIED, index=1, filesystem="ext4"),
            Region(1000, 30528, RegionType.FREE),
        ]
        assert main.main(["areas", "sdb"]) == 0
        mock_regions.assert_called_once_with("/dev/sdb")
        out = capsys.readouterr().out
        assert "ext4" in out
        assert "free" in out

    def test_partition_refused(self, capsys):
        assert main.main(["areas", "/dev/sdb1"]) == 1
        assert "requires a whole disk" in capsys.readouterr().err


class TestPlanCommands:
    @patch("driveassist.main.devices.query_sector_size", return_value=512)
    def test_create(self, mock_ss, capsys):
        assert main.main(["plan", "create", "sdb", "--start", "0", "--end", "1024", "--fs", "ext4"]) == 0
        out = capsys.readouterr().out
        assert out.startswith("# Create ext4 partition on /dev/sdb [destructive]")
        assert "mkpart primary 2048s 2097151s" in out

    def test_format(self, capsys):
        assert main.main(["plan", "format", "sdb1", "--fs", "exfat", "--label", "Photos"]) == 0
        assert "mkfs.exfat -s 8 -n Photos /dev/sdb1" in capsys.readouterr().out

    def test_format_bad_cluster(self, capsys):
        assert main.main(["plan", "format", "sdb1", "--fs", "fat32", "--cluster", "3"]) == 1
        assert "Invalid cluster size" in capsys.readouterr().err

    @patch("driveassist.main.devices.query_filesystem_type", return_value="ntfs")
    def test_repair_detects_filesystem(self, mock_fs, capsys):
        assert main.main(["plan", "repair", "sdb2"]) == 0
        assert "ntfsfix /dev/sdb2" in capsys.readouterr().out
        mock_fs.assert_called_once_with("/dev/sdb2")

    @patch("driveassist.main.devices.query_filesystem_type", return_value=None)
    def test_repair_unknown_filesystem(self, mock_fs, capsys):
        assert main.main(["plan", "repair", "sdb2"]) == 1
        assert "not supported" in capsys.readouterr().err

    def test_label(self, capsys):
        assert main.main(["plan", "label", "sdb1", "backup", "--fs", "ext4"]) == 0
        assert "e2label /dev/sdb1 backup" in capsys.readouterr().out

    @patch("driveassist.main.planner.resize_request_for")
    def test_resize(self, mock_request, capsys):
        mock_request.return_value = ResizeRequest(
            disk_path="/dev/sdb", partition_path="/dev/sdb1", partition_index=1,
            start_sector=2048, current_end_sector=1050623, target_mib=1024,
            sector_size=512, disk_total_sectors=62521344, filesystem="ext4",
        )
        assert main.main(["plan", "resize", "sdb1", "--size", "1024"]) == 0
        out = capsys.readouterr().out
        assert "# Grow partition to 1024 MiB" in out
        assert "resize2fs /dev/sdb1" in out
        mock_request.assert_called_once_with("/dev/sdb1", 1024)


class TestQueryFailures:
    @patch(
        "driveassist.storage.devices.subprocess.run",
        side_effect=subprocess.TimeoutExpired(["parted"], 10),
    )
    def test_hung_query_reported_without_traceback(self, mock_run, capsys):
        assert main.main(["plan", "resize", "sdb1", "--size", "1024"]) == 1
        assert "Error: Timed out after 10.0s: parted" in capsys.readouterr().err

    @patch("driveassist.storage.devices.run_command")
    def test_unreadable_disk_size(self, mock_run, capsys):
        mock_run.side_effect = [
            Mock(returncode=0, stdout="512\n"),
            Mock(returncode=0, stdout="1:2048s:1050623s:1048576s:ext4::;\n"),
            Mock(returncode=0, stdout="\n"),
        ]
        assert main.main(["plan", "resize", "sdb1", "--size", "1024"]) == 1
        assert "Unexpected output ''" in capsys.readouterr().err
