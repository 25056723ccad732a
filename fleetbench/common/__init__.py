"""Shared helpers used across fleetbench modules."""

from .enums import ConnectionMode, WorkloadKind

__all__ = ["ConnectionMode", "WorkloadKind"]
