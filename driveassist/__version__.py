"""Version information for driveassist."""

__version__ = "0.4.0"
