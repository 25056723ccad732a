"""Pre-flight validation for fleet runs.

Checks that the local client tools needed for the connection mode are
installed and that hosts planned as VMs exist, before anything touches a host.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .common.enums import ConnectionMode
from .errors import DependencyError, HostValidationError
from .util import safe_command

if TYPE_CHECKING:
    from rich.console import Console

    from .fleet.hosts import ResolvedHost

INSTALL_HINTS = {
    "virtctl": (
        "Install from https://kubevirt.io/user-guide/operations/virtctl_client_tool/ "
        "or with kubectl: 'kubectl krew install virt'"
    ),
    "oc": "Install OpenShift CLI from https://openshift.com/download",
    "ssh": "Install with 'sudo dnf install openssh-clients' or 'sudo apt install openssh-client'",
}


class CheckSeverity(Enum):
    """Severity level for check results."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class CheckResult:
    """Result of a single validation check."""

    name: str  # e.g., "virtctl installed"
    passed: bool
    severity: CheckSeverity
    message: str
    suggestion: str | None = None  # Actionable fix suggestion

    @property
    def symbol(self) -> str:
        """Return check symbol for display."""
        if self.passed:
            return "[green]✓[/green]"
        elif self.severity == CheckSeverity.ERROR:
            return "[red]✗[/red]"
        elif self.severity == CheckSeverity.WARNING:
            return "[yellow]⚠[/yellow]"
        else:
            return "[blue]ℹ[/blue]"


@dataclass
class ValidationReport:
    """Aggregated results of all validation checks."""

    checks: list[CheckResult] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Return True if any check failed with ERROR severity."""
        return any(not c.passed and c.severity == CheckSeverity.ERROR for c in self.checks)

    @property
    def errors(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.passed and c.severity == CheckSeverity.ERROR]

    def add(self, result: CheckResult) -> None:
        """Add a check result to the report."""
        self.checks.append(result)

    def merge(self, other: ValidationReport) -> None:
        """Merge another report's checks into this one."""
        self.checks.extend(other.checks)

    def print(self, console: Console) -> None:
        for check in self.checks:
            console.print(f"  {check.symbol} {check.name}: {check.message}")
            if not check.passed and check.suggestion:
                console.print(f"      [dim]→ Fix:[/dim] {check.suggestion}")


def required_tools(mode: ConnectionMode, dry_run: bool = False) -> list[str]:
    """Local client tools a run needs in ``mode``. Dry-runs need none."""
    if dry_run:
        return []
    if mode is ConnectionMode.VM_PROXY:
        return ["virtctl", "oc"]
    if mode is ConnectionMode.DIRECT_SSH:
        return ["ssh"]
    return ["virtctl", "oc", "ssh"]


def check_tools(
    tools: Sequence[str], which: Callable[[str], str | None] = shutil.which
) -> ValidationReport:
    """Check that every tool is on PATH."""
    report = ValidationReport()
    for tool in tools:
        path = which(tool)
        report.add(
            CheckResult(
                name=f"{tool} installed",
                passed=path is not None,
                severity=CheckSeverity.ERROR,
                message=path or "not found on PATH",
                suggestion=INSTALL_HINTS.get(tool),
            )
        )
    return report


def check_virtctl_scp(runner: Callable[..., dict[str, Any]] = safe_command) -> CheckResult:
    """Warn when virtctl has no ``scp`` subcommand (results then need the cat fallback)."""
    result = runner(["virtctl", "help"])
    supported = result["success"] and "scp" in result["stdout"]
    return CheckResult(
        name="virtctl scp",
        passed=supported,
        severity=CheckSeverity.WARNING,
        message="supported" if supported else "virtctl does not support 'scp'",
        suggestion="Upgrade virtctl; results will be copied through 'cat' instead",
    )


def ensure_dependencies(
    mode: ConnectionMode,
    dry_run: bool = False,
    which: Callable[[str], str | None] = shutil.which,
) -> ValidationReport:
    """Check local tools for ``mode``.

    Raises:
        DependencyError: If a required tool is missing.
    """
    report = check_tools(required_tools(mode, dry_run), which=which)
    if report.has_errors:
        missing = [c.name.removesuffix(" installed") for c in report.errors]
        raise DependencyError(missing, {tool: INSTALL_HINTS.get(tool, "") for tool in missing})
    return report


def ensure_vms_exist(
    fleet: Sequence[ResolvedHost],
    vm_exists: Callable[[str], bool],
    *,
    mode: ConnectionMode,
    dry_run: bool = False,
) -> None:
    """Check every host planned for the VM proxy exists as a VirtualMachine.

    Skipped in dry-run and in forced SSH mode.

    Raises:
        HostValidationError: Naming the first host that does not exist.
    """
    if dry_run or mode is ConnectionMode.DIRECT_SSH:
        return
    namespace = fleet[0].namespace if fleet else "default"
    for host in fleet:
        if host.is_managed_vm and not vm_exists(host.identifier):
            raise HostValidationError(
                f"Virtual machine '{host.identifier}' not found in namespace '{namespace}'"
            )
