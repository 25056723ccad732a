"""Fleet-wide storage and database benchmark orchestration."""

__version__ = "0.1.0"
