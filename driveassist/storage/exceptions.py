"""Custom exceptions for partition planning and workflows.

Exception Hierarchy:
    StorageError (base)
        ├── DeviceError
        │   ├── DeviceNotFoundError
        │   ├── DeviceResolutionError
        │   └── InventoryUnavailableError
        ├── PreconditionError
        │   ├── OperationScopeError
        │   ├── InsufficientSpaceError
        │   ├── UnsupportedFilesystemError
        │   └── InvalidRequestError
        ├── MountError
        │   └── UnmountFailedError
        └── WorkflowError
            ├── WorkflowConflictError
            └── CommandExecutionError

Usage:
    from driveassist.storage.exceptions import OperationScopeError

    if not is_whole_disk(name):
        raise OperationScopeError(name, "partition table creation", "disk")
"""

from __future__ import annotations

from typing import Sequence


class StorageError(Exception):
    """Base exception for all storage operations."""


class DeviceError(StorageError):
    """Base exception for device-related errors."""


class DeviceNotFoundError(DeviceError):
    """Device was not found or does not exist."""

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(f"Device not found: {device_name}")


class DeviceResolutionError(DeviceError):
    """The parent disk, partition index or device path could not be derived."""

    def __init__(self, device_name: str, reason: str):
        self.device_name = device_name
        self.reason = reason
        super().__init__(f"Cannot resolve {device_name}: {reason}")


class InventoryUnavailableError(DeviceError):
    """The device listing could not be produced at all."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Device inventory unavailable: {reason}")


class PreconditionError(StorageError):
    """Base exception for refusals raised before any command is built."""


class OperationScopeError(PreconditionError):
    """A disk-only operation was aimed at a partition, or the reverse."""

    def __init__(self, device_name: str, operation: str, required: str):
        self.device_name = device_name
        self.operation = operation
        self.required = required
        super().__init__(
            f"{operation} requires a {required}, but {device_name} is not a {required}"
        )


class InsufficientSpaceError(PreconditionError):
    """Target filesystem has less free space than the operation needs."""

    def __init__(self, path: str, required_bytes: int, available_bytes: int):
        self.path = path
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        super().__init__(
            f"Insufficient space on {path}: "
            f"need {required_bytes} bytes, have {available_bytes} bytes"
        )


class UnsupportedFilesystemError(PreconditionError):
    """No tool is known for this filesystem and operation."""

    def __init__(self, filesystem: str | None, operation: str):
        self.filesystem = filesystem
        self.operation = operation
        super().__init__(
            f"{operation} is not supported for filesystem {filesystem or 'unknown'}"
        )


class InvalidRequestError(PreconditionError):
    """A request value is out of range or malformed."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class MountError(StorageError):
    """Base exception for mount-related errors."""


class UnmountFailedError(MountError):
    """Device stayed mounted after the unmount retry."""

    def __init__(self, device_name: str, mountpoints: Sequence[str] = ()):
        self.device_name = device_name
        self.mountpoints = list(mountpoints)
        message = f"Failed to unmount {device_name}"
        if self.mountpoints:
            message += f". Still mounted: {', '.join(self.mountpoints)}"
        super().__init__(message)


class WorkflowError(StorageError):
    """Base exception for workflow sequencing errors."""


class WorkflowConflictError(WorkflowError):
    """Another workflow is already active on an overlapping device."""

    def __init__(self, device_path: str, active_path: str):
        self.device_path = device_path
        self.active_path = active_path
        super().__init__(
            f"Cannot start a workflow on {device_path}: "
            f"{active_path} already has an operation in progress"
        )


class CommandExecutionError(WorkflowError):
    """A short external query failed, timed out or printed nothing usable."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: int,
        stderr: str = "",
        reason: str | None = None,
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        reason = reason or f"Command failed with exit code {returncode}"
        message = f"{reason}: {' '.join(self.command)}"
        if stderr:
            message += f" ({stderr.strip()})"
        super().__init__(message)
