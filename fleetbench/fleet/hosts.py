"""Host selection: turn the ``vm`` config section into an ordered fleet.

Four selection methods are supported, tried in this order:

1. ``host_pattern`` - a range pattern such as ``vm-{1..50}``
2. ``host_labels``  - a ``key=value[,key=value]`` selector answered by ``oc``
3. ``host_file``    - one host or range pattern per line
4. ``hosts``        - a plain list

The first method that is configured and yields at least one host wins. A
configured method that yields nothing is reported and the next one is tried.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from rich.console import Console

from ..common.enums import ConnectionMode
from ..errors import ConfigError, MissingDeviceError, NoHostsError
from .devices import resolve_device
from .patterns import dedupe, expand_all, expand_pattern

console = Console()

DRY_RUN_LABEL_PLACEHOLDER = ("example-vm1", "example-vm2")

_LABEL_RE = re.compile(r"^[A-Za-z0-9._/-]+(=|==|!=)[A-Za-z0-9._-]*$")


class LabelInventory(Protocol):
    def find_by_labels(self, selector: str) -> list[str]: ...


@dataclass
class HostSpec:
    """The host selection methods configured for a run."""

    hosts: list[str] = field(default_factory=list)
    host_pattern: str | None = None
    host_labels: str | None = None
    host_file: Path | None = None

    @property
    def configured_methods(self) -> list[str]:
        methods = []
        if self.host_pattern:
            methods.append("range_pattern")
        if self.host_labels:
            methods.append("label_query")
        if self.host_file:
            methods.append("external_file")
        if self.hosts:
            methods.append("explicit_list")
        return methods


@dataclass(frozen=True)
class ResolvedHost:
    """A fleet member with everything needed to reach and use it."""

    identifier: str
    is_managed_vm: bool
    device: str | None
    namespace: str = "default"
    ordinal: int = 1

    @property
    def device_path(self) -> str | None:
        return f"/dev/{self.device}" if self.device else None

    @property
    def connection_label(self) -> str:
        return "virtctl" if self.is_managed_vm else "ssh"


def validate_label_selector(selector: str) -> None:
    """Reject selectors that are not ``key=value`` terms joined by commas."""
    terms = [term.strip() for term in selector.split(",")]
    if not terms or any(not _LABEL_RE.match(term) for term in terms):
        raise ConfigError(
            f"vm.host_labels '{selector}' is not a valid selector; "
            "expected key=value[,key=value]"
        )


def read_host_file(path: Path) -> list[str]:
    """Read hosts from a file, one name or range pattern per line.

    Blank lines and ``#`` comments are skipped; patterns are expanded in
    place and repeated names dropped.

    Raises:
        ConfigError: If the file does not exist.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Host file not found: {path}")

    entries = []
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        entries.extend(line.split())
    return expand_all(entries)


def resolve_hosts(
    spec: HostSpec,
    inventory: LabelInventory | None = None,
    *,
    namespace: str = "default",
    dry_run: bool = False,
    connection_mode: ConnectionMode = ConnectionMode.AUTO,
) -> list[str]:
    """Resolve ``spec`` into an ordered, duplicate-free list of host names.

    Raises:
        PatternError: If the range pattern is malformed.
        ConfigError: For label selection in SSH-only mode or a missing host file.
        NoHostsError: If no configured method yields a host.
    """
    if spec.host_pattern:
        hosts = dedupe(expand_pattern(spec.host_pattern))
        console.print(
            f"[blue]Using host pattern:[/blue] {spec.host_pattern} "
            f"[dim]({len(hosts)} hosts)[/dim]"
        )
        if hosts:
            return hosts
        console.print(f"[yellow]Host pattern {spec.host_pattern} produced no hosts[/yellow]")

    if spec.host_labels:
        hosts = _hosts_from_labels(
            spec.host_labels, inventory, namespace, dry_run, connection_mode
        )
        if hosts:
            return hosts

    if spec.host_file:
        console.print(f"[blue]Using host file:[/blue] {spec.host_file}")
        hosts = read_host_file(spec.host_file)
        if hosts:
            console.print(f"[dim]Loaded {len(hosts)} hosts from {spec.host_file}[/dim]")
            return hosts
        console.print(
            f"[yellow]No valid hosts found in {spec.host_file} "
            "(all lines are comments or empty)[/yellow]"
        )

    if spec.hosts:
        hosts = dedupe([name for name in spec.hosts if name])
        if hosts:
            console.print(f"[blue]Using host list:[/blue] {' '.join(hosts)}")
            return hosts

    raise NoHostsError(
        "No hosts specified in configuration. "
        "Use one of: vm.hosts, vm.host_pattern, vm.host_labels or vm.host_file"
    )


def _hosts_from_labels(
    selector: str,
    inventory: LabelInventory | None,
    namespace: str,
    dry_run: bool,
    connection_mode: ConnectionMode,
) -> list[str]:
    if connection_mode is ConnectionMode.DIRECT_SSH:
        raise ConfigError(
            "Label-based host selection is not supported in SSH-only mode. "
            "Use vm.hosts, vm.host_pattern or vm.host_file instead."
        )
    validate_label_selector(selector)
    console.print(f"[blue]Using label selector:[/blue] {selector}")

    if dry_run:
        console.print(
            f"[dim]Dry-run: would query VMs in namespace {namespace} with labels "
            f"{selector}; using placeholder hosts[/dim]"
        )
        return list(DRY_RUN_LABEL_PLACEHOLDER)

    if inventory is None:
        console.print("[yellow]No VM inventory available for label selection[/yellow]")
        return []

    hosts = dedupe(inventory.find_by_labels(selector))
    if hosts:
        console.print(f"[dim]Found {len(hosts)} VMs matching labels {selector}[/dim]")
    else:
        console.print(f"[yellow]No VMs found matching labels: {selector}[/yellow]")
    return hosts


def build_fleet(
    names: list[str],
    *,
    device_map: Mapping[str, str],
    mode_for: Callable[[str], ConnectionMode],
    namespace: str = "default",
    require_device: bool = True,
) -> tuple[ResolvedHost, ...]:
    """Attach device and connection mode to every resolved host name.

    Raises:
        MissingDeviceError: If ``require_device`` is set and a host has no device.
    """
    fleet = []
    for ordinal, name in enumerate(names, start=1):
        try:
            device: str | None = resolve_device(name, device_map)
        except MissingDeviceError:
            if require_device:
                raise
            device = None
        fleet.append(
            ResolvedHost(
                identifier=name,
                is_managed_vm=mode_for(name) is ConnectionMode.VM_PROXY,
                device=device,
                namespace=namespace,
                ordinal=ordinal,
            )
        )
    return tuple(fleet)
