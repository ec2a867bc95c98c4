"""Tests for the per-device workflow registry."""

import threading

import pytest

from driveassist.storage import device_lock
from driveassist.storage.device_lock import DeviceLockRegistry, paths_overlap
from driveassist.storage.exceptions import WorkflowConflictError


class TestPathsOverlap:
    @pytest.mark.parametrize(
        "first,second,expected",
        [
            ("/dev/sdb", "/dev/sdb", True),
            ("/dev/sdb", "/dev/sdb1", True),
            ("/dev/sdb2", "/dev/sdb", True),
            ("/dev/sdb1", "/dev/sdb2", False),
            ("/dev/sdb", "/dev/sdc", False),
            ("/dev/nvme0n1", "/dev/nvme0n1p3", True),
            ("/dev/nvme0n1", "/dev/nvme0n10p1", False),
            ("/dev/mmcblk0p1", "/dev/mmcblk0p2", False),
        ],
    )
    def test_overlap(self, first, second, expected):
        assert paths_overlap(first, second) is expected


class TestRegistry:
    def test_acquire_and_release(self, registry):
        registry.acquire("/dev/sdb1")
        assert registry.is_active("/dev/sdb1")
        assert registry.is_active("/dev/sdb")
        registry.release("/dev/sdb1")
        assert registry.active_devices() == []

    def test_disk_blocks_partition(self, registry):
        registry.acquire("/dev/sdb")
        with pytest.raises(WorkflowConflictError) as exc_info:
            registry.acquire("/dev/sdb1")
        assert exc_info.value.active_path == "/dev/sdb"

    def test_sibling_partitions_independent(self, registry):
        registry.acquire("/dev/sdb1")
        registry.acquire("/dev/sdb2")
        assert registry.active_devices() == ["/dev/sdb1", "/dev/sdb2"]

    def test_release_unknown_path_is_harmless(self, registry):
        registry.release("/dev/sdz")
        assert registry.active_devices() == []

    def test_concurrent_acquire_admits_one(self):
        registry = DeviceLockRegistry()
        barrier = threading.Barrier(8)
        outcomes = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                registry.acquire("/dev/sdc")
                result = True
            except WorkflowConflictError:
                result = False
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert outcomes.count(True) == 1


class TestDeviceOperation:
    def test_context_manager_releases_on_error(self):
        with pytest.raises(RuntimeError):
            with device_lock.device_operation("/dev/sdq"):
                assert device_lock.is_operation_active()
                assert "/dev/sdq" in device_lock.active_devices()
                raise RuntimeError("boom")
        assert "/dev/sdq" not in device_lock.active_devices()
