"""Tests for storage validation functions."""

from unittest.mock import Mock

import pytest

from driveassist.domain.models import (
    DeviceKind,
    DeviceRecord,
    OperationDescription,
    Severity,
)
from driveassist.storage.exceptions import (
    DeviceResolutionError,
    InsufficientSpaceError,
    InvalidRequestError,
    OperationScopeError,
)
from driveassist.storage.validation import (
    OperationSafetyGate,
    auto_confirm,
    require_partition,
    require_whole_disk,
    validate_available_space,
    validate_device_path,
)

DESCRIPTION = OperationDescription(
    action="Create gpt partition table",
    target="/dev/sdb",
    consequences="Every partition on /dev/sdb will be deleted.",
)


class TestSafetyGate:
    def test_single_prompt(self, confirmer_factory):
        confirmer = confirmer_factory(True)
        assert OperationSafetyGate(confirmer).confirm(DESCRIPTION, Severity.DESTRUCTIVE) is True
        assert len(confirmer.prompts) == 1
        title, message = confirmer.prompts[0]
        assert title == "WARNING"
        assert "Every partition on /dev/sdb will be deleted." in message

    def test_caution_title(self, confirmer_factory):
        confirmer = confirmer_factory(True)
        OperationSafetyGate(confirmer).confirm(DESCRIPTION, Severity.CAUTION)
        assert confirmer.prompts[0][0] == "Confirm Operation"

    def test_irreversible_asks_twice(self, confirmer_factory):
        confirmer = confirmer_factory(True, True)
        assert OperationSafetyGate(confirmer).confirm(DESCRIPTION, Severity.IRREVERSIBLE) is True
        assert [title for title, _ in confirmer.prompts] == ["WARNING", "Final Confirmation"]
        assert "cannot be undone" in confirmer.prompts[1][1]

    def test_first_decline_skips_final(self, confirmer_factory):
        confirmer = confirmer_factory(False, True)
        assert OperationSafetyGate(confirmer).confirm(DESCRIPTION, Severity.IRREVERSIBLE) is False
        assert len(confirmer.prompts) == 1

    def test_final_decline(self, confirmer_factory):
        confirmer = confirmer_factory(True, False)
        assert OperationSafetyGate(confirmer).confirm(DESCRIPTION, Severity.IRREVERSIBLE) is False

    def test_label_with_braces_is_logged_verbatim(self):
        description = OperationDescription("Set label to '{data}'", "/dev/sdb1", "Relabel.")
        assert OperationSafetyGate(auto_confirm(True)).confirm(description, Severity.CAUTION)

    def test_auto_confirm(self):
        assert auto_confirm(False)("title", "message") is False


class TestDevicePath:
    @pytest.mark.parametrize("path", ["/dev/sda", "/dev/nvme0n1p2", "/dev/mmcblk0", "/dev/md-0"])
    def test_valid(self, path):
        assert validate_device_path(path) == path

    @pytest.mark.parametrize("path", ["sda", "/tmp/sda", "/dev/sda;reboot", "/dev/../etc/passwd", "/dev/"])
    def test_invalid(self, path):
        with pytest.raises(DeviceResolutionError):
            validate_device_path(path)


class TestScope:
    def test_whole_disk_accepts_disk(self):
        require_whole_disk("/dev/sdb", "Partition table creation")
        require_whole_disk("nvme0n1", "Partition table creation")

    def test_whole_disk_refuses_partition(self):
        with pytest.raises(OperationScopeError) as exc_info:
            require_whole_disk("/dev/sdb1", "Partition table creation")
        assert exc_info.value.required == "whole disk"
        assert exc_info.value.device_name == "sdb1"

    def test_partition_refuses_disk(self):
        with pytest.raises(OperationScopeError):
            require_partition("/dev/mmcblk0", "Format")

    def test_record_classification_wins(self):
        """Test an inventory record decides scope, not its name."""
        record = DeviceRecord(name="loop0", kind=DeviceKind.PARTITION, size="1G")
        require_partition(record, "Format")
        with pytest.raises(OperationScopeError):
            require_whole_disk(record, "Erase")


class TestAvailableSpace:
    def test_enough_space(self):
        assert validate_available_space("/media/usb", 100, Mock(return_value=200)) == 200

    def test_not_enough_space(self):
        with pytest.raises(InsufficientSpaceError) as exc_info:
            validate_available_space("/media/usb", 300, Mock(return_value=200))
        assert exc_info.value.available_bytes == 200

    def test_unreadable_directory(self):
        with pytest.raises(InvalidRequestError):
            validate_available_space("/missing", 100, Mock(side_effect=FileNotFoundError("/missing")))

    def test_non_positive_size(self):
        with pytest.raises(InvalidRequestError):
            validate_available_space("/media/usb", 0, Mock(return_value=200))
