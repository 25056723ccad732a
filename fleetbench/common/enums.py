"""Common enums used across fleetbench."""

from enum import Enum


class ConnectionMode(str, Enum):
    """How remote commands reach a host.

    - AUTO: ask the VM inventory per host; VMs go through virtctl, others through ssh
    - VM_PROXY: every host is a VM reached through ``virtctl ssh`` (--virtctl-only)
    - DIRECT_SSH: every host is reached through plain ``ssh`` (--ssh-only)
    """

    AUTO = "auto"
    VM_PROXY = "virtctl"
    DIRECT_SSH = "ssh"

    @property
    def is_forced(self) -> bool:
        """Return True when the mode is fixed for every host."""
        return self is not ConnectionMode.AUTO

    @classmethod
    def from_flags(cls, ssh_only: bool, virtctl_only: bool) -> "ConnectionMode":
        """Translate the CLI flags into a mode."""
        if ssh_only and virtctl_only:
            raise ValueError("--ssh-only and --virtctl-only are mutually exclusive")
        if ssh_only:
            return cls.DIRECT_SSH
        if virtctl_only:
            return cls.VM_PROXY
        return cls.AUTO

    def __str__(self) -> str:
        return self.value


class WorkloadKind(str, Enum):
    """Workloads fleetbench can drive."""

    FIO = "fio"
    MARIADB = "mariadb"
    POSTGRESQL = "postgresql"

    @classmethod
    def valid_values(cls) -> set[str]:
        """Return all valid workload names."""
        return {k.value for k in cls}

    def __str__(self) -> str:
        return self.value
