"""Domain value objects shared by parsers, synthesizers and workflows."""

from driveassist.domain.models import (
    CreateFsRequest,
    DeviceKind,
    DeviceRecord,
    FilesystemFamily,
    OperationDescription,
    Region,
    RegionType,
    ResizeRequest,
    Severity,
    SizeState,
    WorkflowResult,
    WorkflowState,
)

__all__ = [
    "CreateFsRequest",
    "DeviceKind",
    "DeviceRecord",
    "FilesystemFamily",
    "OperationDescription",
    "Region",
    "RegionType",
    "ResizeRequest",
    "Severity",
    "SizeState",
    "WorkflowResult",
    "WorkflowState",
]
