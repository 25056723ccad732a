"""Command line interface for fleet benchmarks."""

import shutil
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .common.enums import ConnectionMode, WorkloadKind
from .config import BenchConfig, load_config
from .debug import set_debug
from .errors import ConfigError, FleetbenchError
from .fleet.devices import resolve_device
from .fleet.hosts import build_fleet, resolve_hosts
from .infra.connection import ConnectionStrategy
from .infra.inventory import VMInventory
from .run.pipeline import EXIT_FAILED, EXIT_INTERRUPTED, PipelineDriver, RunOptions, build_run
from .validation import (
    CheckResult,
    CheckSeverity,
    ValidationReport,
    check_tools,
    check_virtctl_scp,
    required_tools,
)
from .workloads import create_workload

# Exit status the argument parser uses for unknown options and commands
USAGE_ERROR_EXIT = 2

app = typer.Typer(
    name="fleetbench",
    help="Run storage and database benchmarks across a fleet of VMs and hosts",
    no_args_is_help=True,
)

console = Console()

VERBOSE_OPTION = typer.Option(
    False, "--verbose", "-v", help="Echo per-host output of every phase"
)
DEBUG_OPTION = typer.Option(
    False, "--debug", help="Show configuration parsing details and trace remote commands"
)
DRY_RUN_OPTION = typer.Option(
    False, "--dry-run", help="Validate and print what would run without touching any host"
)
SSH_ONLY_OPTION = typer.Option(
    False, "--ssh-only", help="Reach every host with plain ssh (no VM lookups)"
)
VIRTCTL_ONLY_OPTION = typer.Option(
    False, "--virtctl-only", help="Treat every host as a VM and reach it with virtctl ssh"
)
YES_OPTION = typer.Option(
    False, "--yes-i-mean-it", help="Skip the confirmation before devices are formatted"
)
PREPARE_OPTION = typer.Option(
    False, "--prepare-machine", help="Only install the workload's dependencies on every host"
)


def _connection_mode(ssh_only: bool, virtctl_only: bool) -> ConnectionMode:
    try:
        return ConnectionMode.from_flags(ssh_only, virtctl_only)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _load(config: str) -> BenchConfig:
    try:
        return load_config(config)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


def _inventory(bench: BenchConfig, mode: ConnectionMode, dry_run: bool = False) -> VMInventory | None:
    if dry_run or mode is ConnectionMode.DIRECT_SSH:
        return None
    return VMInventory(bench.vm.namespace)


def _run_workload(
    kind: WorkloadKind,
    config: str,
    *,
    verbose: bool,
    debug: bool,
    dry_run: bool,
    ssh_only: bool,
    virtctl_only: bool,
    yes_i_mean_it: bool,
    prepare_machine: bool,
) -> None:
    set_debug(debug)
    mode = _connection_mode(ssh_only, virtctl_only)
    bench = _load(config)
    options = RunOptions(
        dry_run=dry_run,
        connection_mode=mode,
        assume_yes=yes_i_mean_it,
        prepare_only=prepare_machine,
        verbose=verbose,
        debug=debug,
    )
    inventory = _inventory(bench, mode, dry_run)

    try:
        run_config, workload, strategy = build_run(
            bench, kind, options, inventory=inventory, config_path=Path(config)
        )
        with strategy:
            code = PipelineDriver(run_config, workload, strategy, inventory=inventory).run()
    except FleetbenchError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    except KeyboardInterrupt as e:
        console.print("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(EXIT_INTERRUPTED) from e

    if code:
        raise typer.Exit(code)


@app.command()
def fio(
    config: str = typer.Option(
        "fio-config.yaml", "--config", "-c", help="Path to config YAML file"
    ),
    verbose: bool = VERBOSE_OPTION,
    debug: bool = DEBUG_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    ssh_only: bool = SSH_ONLY_OPTION,
    virtctl_only: bool = VIRTCTL_ONLY_OPTION,
    yes_i_mean_it: bool = YES_OPTION,
    prepare_machine: bool = PREPARE_OPTION,
) -> None:
    """Run the FIO block size / IO pattern matrix on every host.

    Formats and mounts the configured device on each host, lays out a
    dataset, runs every combination and collects the JSON results.
    """
    _run_workload(
        WorkloadKind.FIO,
        config,
        verbose=verbose,
        debug=debug,
        dry_run=dry_run,
        ssh_only=ssh_only,
        virtctl_only=virtctl_only,
        yes_i_mean_it=yes_i_mean_it,
        prepare_machine=prepare_machine,
    )


@app.command()
def mariadb(
    config: str = typer.Option("config.yaml", "--config", "-c", help="Path to config YAML file"),
    verbose: bool = VERBOSE_OPTION,
    debug: bool = DEBUG_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    ssh_only: bool = SSH_ONLY_OPTION,
    virtctl_only: bool = VIRTCTL_ONLY_OPTION,
    yes_i_mean_it: bool = YES_OPTION,
    prepare_machine: bool = PREPARE_OPTION,
) -> None:
    """Run HammerDB TPC-C against MariaDB on every host."""
    _run_workload(
        WorkloadKind.MARIADB,
        config,
        verbose=verbose,
        debug=debug,
        dry_run=dry_run,
        ssh_only=ssh_only,
        virtctl_only=virtctl_only,
        yes_i_mean_it=yes_i_mean_it,
        prepare_machine=prepare_machine,
    )


@app.command()
def postgresql(
    config: str = typer.Option("config.yaml", "--config", "-c", help="Path to config YAML file"),
    verbose: bool = VERBOSE_OPTION,
    debug: bool = DEBUG_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    ssh_only: bool = SSH_ONLY_OPTION,
    virtctl_only: bool = VIRTCTL_ONLY_OPTION,
    yes_i_mean_it: bool = YES_OPTION,
    prepare_machine: bool = PREPARE_OPTION,
) -> None:
    """Run HammerDB TPC-C against PostgreSQL on every host."""
    _run_workload(
        WorkloadKind.POSTGRESQL,
        config,
        verbose=verbose,
        debug=debug,
        dry_run=dry_run,
        ssh_only=ssh_only,
        virtctl_only=virtctl_only,
        yes_i_mean_it=yes_i_mean_it,
        prepare_machine=prepare_machine,
    )


def _parse_workload(workload: str) -> WorkloadKind:
    try:
        return WorkloadKind(workload.lower())
    except ValueError as e:
        valid = ", ".join(sorted(WorkloadKind.valid_values()))
        console.print(f"[red]Invalid workload:[/red] {workload}. Use one of: {valid}")
        raise typer.Exit(1) from e


@app.command()
def check(
    config: str = typer.Option(
        "fio-config.yaml", "--config", "-c", help="Path to config YAML file"
    ),
    workload: str = typer.Option("fio", "--workload", "-w", help="Workload to check for"),
    ssh_only: bool = SSH_ONLY_OPTION,
    virtctl_only: bool = VIRTCTL_ONLY_OPTION,
) -> None:
    """Validate a configuration and the local client tools.

    Nothing is executed on any host. Host labels are looked up read-only
    through the VM inventory.
    """
    kind = _parse_workload(workload)
    mode = _connection_mode(ssh_only, virtctl_only)
    config_path = Path(config)

    try:
        bench = load_config(config)
    except ConfigError as e:
        status_text = Text()
        status_text.append("Configuration: ", style="bold")
        status_text.append(str(config_path), style="cyan")
        status_text.append("\nStatus: ", style="bold")
        status_text.append("✗ Invalid", style="red bold")
        console.print(Panel(status_text, border_style="red"))
        console.print("\n[red bold]Errors found:[/red bold]")
        for i, line in enumerate(str(e).splitlines(), 1):
            console.print(f"  {i}. {escape(line)}")
        raise typer.Exit(1) from e

    report = ValidationReport()
    report.add(CheckResult("configuration", True, CheckSeverity.ERROR, "parsed and valid"))

    names: list[str] = []
    try:
        names = resolve_hosts(
            bench.host_spec(),
            _inventory(bench, mode),
            namespace=bench.vm.namespace,
            connection_mode=mode,
        )
        report.add(CheckResult("hosts", True, CheckSeverity.ERROR, f"{len(names)} hosts resolved"))
    except FleetbenchError as e:
        report.add(
            CheckResult(
                "hosts",
                False,
                CheckSeverity.ERROR,
                str(e),
                suggestion="Set vm.host_pattern, vm.host_labels, vm.host_file or vm.hosts",
            )
        )

    wl = create_workload(kind, bench, fleet_size=max(len(names), 1))
    try:
        wl.validate()
        report.add(CheckResult(f"{kind} settings", True, CheckSeverity.ERROR, "valid"))
    except ConfigError as e:
        report.add(CheckResult(f"{kind} settings", False, CheckSeverity.ERROR, str(e)))

    if wl.formats_devices and names:
        missing = []
        for name in names:
            try:
                resolve_device(name, bench.storage.devices)
            except FleetbenchError:
                missing.append(name)
        report.add(
            CheckResult(
                "storage devices",
                not missing,
                CheckSeverity.ERROR,
                "every host has a device" if not missing else f"no device for: {', '.join(missing)}",
                suggestion="Add an exact name or range pattern to storage.devices",
            )
        )

    tools = required_tools(mode)
    report.merge(check_tools(tools))
    if "virtctl" in tools and shutil.which("virtctl"):
        report.add(check_virtctl_scp())

    status_text = Text()
    status_text.append("Configuration: ", style="bold")
    status_text.append(str(config_path), style="cyan")
    status_text.append("\nStatus: ", style="bold")
    if report.has_errors:
        status_text.append("✗ Invalid", style="red bold")
    else:
        status_text.append("✓ Valid", style="green bold")
    console.print(Panel(status_text, border_style="red" if report.has_errors else "green"))
    report.print(console)

    if report.has_errors:
        raise typer.Exit(1)


@app.command()
def hosts(
    config: str = typer.Option(
        "fio-config.yaml", "--config", "-c", help="Path to config YAML file"
    ),
    ssh_only: bool = SSH_ONLY_OPTION,
    virtctl_only: bool = VIRTCTL_ONLY_OPTION,
) -> None:
    """Print the resolved fleet with connection method and device."""
    mode = _connection_mode(ssh_only, virtctl_only)
    bench = _load(config)
    inventory = _inventory(bench, mode)

    try:
        names = resolve_hosts(
            bench.host_spec(),
            inventory,
            namespace=bench.vm.namespace,
            connection_mode=mode,
        )
        with ConnectionStrategy(mode, inventory, namespace=bench.vm.namespace) as strategy:
            fleet = build_fleet(
                names,
                device_map=bench.storage.devices,
                mode_for=strategy.mode_for,
                namespace=bench.vm.namespace,
                require_device=False,
            )
    except FleetbenchError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    table = Table(title=f"Fleet ({len(fleet)} hosts)", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Host", style="cyan")
    table.add_column("Connection")
    table.add_column("Device")
    for host in fleet:
        table.add_row(str(host.ordinal), host.identifier, host.connection_label, host.device_path or "-")
    console.print(table)


@app.command()
def cleanup(
    workload: str = typer.Option(..., "--workload", "-w", help="Workload to tear down"),
    config: str = typer.Option("config.yaml", "--config", "-c", help="Path to config YAML file"),
    verbose: bool = VERBOSE_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    ssh_only: bool = SSH_ONLY_OPTION,
    virtctl_only: bool = VIRTCTL_ONLY_OPTION,
) -> None:
    """Run only the teardown phase of a workload on every host.

    Use this after an aborted run to unmount storage and stop services.
    """
    kind = _parse_workload(workload)
    mode = _connection_mode(ssh_only, virtctl_only)
    bench = _load(config)
    options = RunOptions(dry_run=dry_run, connection_mode=mode, verbose=verbose)
    inventory = _inventory(bench, mode, dry_run)

    try:
        run_config, wl, strategy = build_run(
            bench,
            kind,
            options,
            inventory=inventory,
            config_path=Path(config),
            teardown_only=True,
        )
        with strategy:
            code = PipelineDriver(run_config, wl, strategy, inventory=inventory).run_cleanup()
    except FleetbenchError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    if code:
        raise typer.Exit(code)
    console.print("[green]✓ Cleanup completed[/green]")


def main() -> None:
    """Console entry point; usage errors exit with status 1."""
    try:
        app()
    except SystemExit as e:
        if e.code == USAGE_ERROR_EXIT:
            sys.exit(EXIT_FAILED)
        raise


if __name__ == "__main__":
    main()
