"""Partition and filesystem operation planner for Linux block devices."""

from driveassist.__version__ import __version__

__all__ = ["__version__"]
