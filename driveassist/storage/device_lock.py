"""Per-device workflow registry.

Only one destructive workflow may run against a device at a time, and a
disk and its partitions count as the same device: a workflow on ``sdb``
blocks workflows on ``sdb1`` and the reverse. Two different partitions of
one disk do not block each other.

Usage:
    from driveassist.storage.device_lock import device_operation

    with device_operation("/dev/sdb"):
        ...
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Generator

from driveassist.logging import LoggerFactory
from driveassist.storage.exceptions import WorkflowConflictError
from driveassist.storage.names import base_disk, device_name, is_partition_name

log = LoggerFactory.for_workflow("device-lock")


def paths_overlap(first: str, second: str) -> bool:
    """True if the two device paths name the same device or a disk and its partition."""
    a, b = device_name(first), device_name(second)
    if a == b:
        return True
    if is_partition_name(a) and not is_partition_name(b):
        return base_disk(a) == b
    if is_partition_name(b) and not is_partition_name(a):
        return base_disk(b) == a
    return False


class DeviceLockRegistry:
    """Thread-safe set of device paths with an active workflow."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def acquire(self, path: str) -> None:
        """Register ``path`` or raise WorkflowConflictError if it overlaps."""
        with self._lock:
            for active in self._active:
                if paths_overlap(path, active):
                    log.warning(f"Rejected workflow on {path}: {active} is busy")
                    raise WorkflowConflictError(path, active)
            self._active.add(path)
            log.debug(f"Device operation started on {path}")

    def release(self, path: str) -> None:
        with self._lock:
            self._active.discard(path)
            log.debug(f"Device operation completed on {path}")

    def is_active(self, path: str) -> bool:
        with self._lock:
            return any(paths_overlap(path, active) for active in self._active)

    def active_devices(self) -> list[str]:
        with self._lock:
            return sorted(self._active)


_registry = DeviceLockRegistry()


def default_registry() -> DeviceLockRegistry:
    return _registry


@contextmanager
def device_operation(path: str) -> Generator[None, None, None]:
    """Hold ``path`` in the default registry for the duration of the block."""
    _registry.acquire(path)
    try:
        yield
    finally:
        _registry.release(path)


def is_operation_active() -> bool:
    """Check if any workflow is currently registered."""
    return bool(_registry.active_devices())


def active_devices() -> list[str]:
    return _registry.active_devices()
