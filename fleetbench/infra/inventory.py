"""Live view of the KubeVirt VMs in a namespace, queried through ``oc``."""

from __future__ import annotations

import shlex
from collections.abc import Callable
from typing import Any

from ..debug import debug_print
from ..util import safe_command

CommandRunner = Callable[..., dict[str, Any]]


class VMInventory:
    """Answers "is this host a VM?" and "which VMs carry these labels?".

    Lookups shell out to ``oc``; a missing binary or a failed lookup reads as
    "not found" so the caller can fall back to plain SSH.
    """

    def __init__(
        self,
        namespace: str = "default",
        runner: CommandRunner = safe_command,
        oc_binary: str = "oc",
    ):
        self.namespace = namespace
        self._run = runner
        self._oc = oc_binary

    def vm_exists(self, name: str) -> bool:
        """Return True if a VirtualMachine called ``name`` exists."""
        return self._get("vm", name)

    def vmi_exists(self, name: str) -> bool:
        """Return True if a VirtualMachineInstance called ``name`` exists."""
        return self._get("vmi", name)

    def is_vm(self, name: str) -> bool:
        """Return True if ``name`` is known either as a VM or a running VMI."""
        return self.vm_exists(name) or self.vmi_exists(name)

    def find_by_labels(self, selector: str) -> list[str]:
        """Return the names of VMs matching a ``key=value[,key=value]`` selector."""
        cmd = [
            self._oc,
            "get",
            "vms",
            "-n",
            self.namespace,
            "-l",
            selector,
            "-o",
            "jsonpath={range .items[*]}{.metadata.name}{\" \"}{end}",
        ]
        result = self._run(cmd)
        if not result["success"]:
            debug_print(f"Label query failed: {result['stderr'].strip()}")
            return []
        return result["stdout"].split()

    def _get(self, kind: str, name: str) -> bool:
        cmd = [self._oc, "get", kind, name, "-n", self.namespace]
        result = self._run(cmd)
        debug_print(f"{shlex.join(cmd)} -> {result['returncode']}")
        return bool(result["success"])
