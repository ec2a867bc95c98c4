"""Safety checks that run before any destructive command is dispatched.

- :class:`OperationSafetyGate` asks the user to approve an operation, once
  for most operations and twice for irreversible whole-disk ones
- scope checks refuse disk-only operations on partitions and the reverse
- a space check refuses file benchmarks that would not fit

Scope and space checks raise specific exceptions from the exceptions module
rather than returning boolean values. The gate returns a boolean because a
user saying no is not an error.

Example:
    from driveassist.storage.validation import require_whole_disk

    try:
        require_whole_disk("sdb1", "partition table creation")
    except OperationScopeError as error:
        show_message(str(error))
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, Protocol

from driveassist.domain.models import DeviceRecord, OperationDescription, Severity
from driveassist.logging import EventLogger, LoggerFactory
from driveassist.storage import devices
from driveassist.storage.exceptions import (
    DeviceResolutionError,
    InsufficientSpaceError,
    InvalidRequestError,
    OperationScopeError,
)
from driveassist.storage.names import device_name, is_partition_name

log = LoggerFactory.for_planner()

_DEVICE_NAME = re.compile(r"^[A-Za-z0-9_.\-]+$")


class Confirmer(Protocol):
    """Display-surface hook that shows a yes/no dialog."""

    def __call__(self, title: str, message: str) -> bool: ...


class OperationSafetyGate:
    """Ask for explicit approval before a destructive operation."""

    def __init__(self, confirmer: Confirmer):
        self._confirmer = confirmer

    @staticmethod
    def first_prompt(description: OperationDescription, severity: Severity) -> tuple[str, str]:
        title = "Confirm Operation" if severity is Severity.CAUTION else "WARNING"
        message = (
            f"{description.action} on {description.target}\n\n"
            f"{description.consequences}\n\n"
            "Are you sure you want to continue?"
        )
        return title, message

    @staticmethod
    def final_prompt(description: OperationDescription) -> tuple[str, str]:
        message = (
            f"FINAL CONFIRMATION: {description.action} on {description.target}.\n\n"
            "All data on this device will be permanently lost. "
            "This cannot be undone."
        )
        return "Final Confirmation", message

    def confirm(self, description: OperationDescription, severity: Severity) -> bool:
        """Return True only if the user approved every required prompt."""
        if not self._confirmer(*self.first_prompt(description, severity)):
            log.info(f"{description.action} on {description.target} declined")
            return False
        if severity.confirmations > 1 and not self._confirmer(*self.final_prompt(description)):
            log.info(f"{description.action} on {description.target} declined at final prompt")
            return False
        log.bind(severity=severity.value).info(
            f"{description.action} on {description.target} confirmed"
        )
        return True


def auto_confirm(answer: bool) -> Callable[[str, str], bool]:
    """A confirmer that always gives ``answer``; used by non-interactive callers."""
    return lambda title, message: answer


# ==============================================================================
# Scope checks
# ==============================================================================


def _is_partition(target: str | DeviceRecord) -> bool:
    if isinstance(target, DeviceRecord):
        return not target.is_disk
    return is_partition_name(target)


def _name(target: str | DeviceRecord) -> str:
    if isinstance(target, DeviceRecord):
        return target.name
    return device_name(target)


def validate_device_path(path: str) -> str:
    """Require a ``/dev/<name>`` path with a plain device name."""
    if not path.startswith("/dev/"):
        raise DeviceResolutionError(path, "device paths must start with /dev/")
    if not _DEVICE_NAME.match(device_name(path)):
        raise DeviceResolutionError(path, "device name contains unexpected characters")
    return path


def require_whole_disk(target: str | DeviceRecord, operation: str) -> None:
    """Raise OperationScopeError when ``target`` is a partition."""
    if _is_partition(target):
        EventLogger.log_refusal(log, operation, f"{_name(target)} is a partition")
        raise OperationScopeError(_name(target), operation, "whole disk")


def require_partition(target: str | DeviceRecord, operation: str) -> None:
    """Raise OperationScopeError when ``target`` is a whole disk."""
    if not _is_partition(target):
        EventLogger.log_refusal(log, operation, f"{_name(target)} is a whole disk")
        raise OperationScopeError(_name(target), operation, "partition")


# ==============================================================================
# Space checks
# ==============================================================================


def validate_available_space(
    path: str | Path,
    required_bytes: int,
    free_space: Callable[[str | Path], int] | None = None,
) -> int:
    """Raise InsufficientSpaceError unless ``path`` has ``required_bytes`` free.

    Returns the available byte count.
    """
    if required_bytes <= 0:
        raise InvalidRequestError("size", "must be positive")
    if free_space is None:
        free_space = devices.available_space
    try:
        available = free_space(path)
    except OSError as error:
        raise InvalidRequestError("directory", f"cannot inspect {path}: {error}") from error
    if available < required_bytes:
        EventLogger.log_refusal(log, "write benchmark", f"only {available} bytes free on {path}")
        raise InsufficientSpaceError(str(path), required_bytes, available)
    return available
