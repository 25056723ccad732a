"""Remote access to fleet hosts."""

from .connection import (
    CommandResult,
    ConnectionStrategy,
    RemoteExecutor,
    SSHExecutor,
    VirtctlExecutor,
)
from .inventory import VMInventory

__all__ = [
    "CommandResult",
    "ConnectionStrategy",
    "RemoteExecutor",
    "SSHExecutor",
    "VirtctlExecutor",
    "VMInventory",
]
