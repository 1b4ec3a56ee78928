"""Local emulator suite orchestration."""

__version__ = "1.2.0"
