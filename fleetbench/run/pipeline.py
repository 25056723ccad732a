"""End-to-end benchmark pipeline across a fleet.

The driver walks a fixed sequence of states::

    VALIDATE -> (DRY_RUN_REPORT | CONFIRM) -> INSTALL_DEPS -> PREPARE_STORAGE
      -> SEED_DATA -> RUN_WORKLOAD_MATRIX -> COLLECT_RESULTS -> TEARDOWN -> DONE

Validation happens before any host is touched. After that a failing host
never stops the run: every phase runs on every host, teardown always runs,
and the exit code reports whether anything failed.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from ..common.enums import ConnectionMode, WorkloadKind
from ..config import BenchConfig
from ..debug import debug_print
from ..errors import MissingDeviceError, UserDeclinedError
from ..fleet.hosts import ResolvedHost, build_fleet, resolve_hosts
from ..fleet.patterns import expand_pattern, is_range_pattern
from ..infra.connection import ConnectionStrategy
from ..infra.inventory import VMInventory
from ..report.summary import SUMMARY_FILENAME, fleet_totals, write_summary
from ..util import Timer
from ..validation import ensure_dependencies, ensure_vms_exist
from ..workloads import Workload, create_workload
from .collector import CollectionReport, ResultCollector, results_dir_name
from .fleet import FleetExecutor, PhaseReport, Step

console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130

CONFIRM_PROMPT = "Are you sure you want to continue? (yes/no)"


class PipelineState(str, Enum):
    VALIDATE = "validate"
    DRY_RUN_REPORT = "dry_run_report"
    CONFIRM = "confirm"
    INSTALL_DEPS = "install_deps"
    PREPARE_STORAGE = "prepare_storage"
    SEED_DATA = "seed_data"
    RUN_WORKLOAD_MATRIX = "run_workload_matrix"
    COLLECT_RESULTS = "collect_results"
    TEARDOWN = "teardown"
    DONE = "done"


PHASE_TITLES = {
    PipelineState.INSTALL_DEPS: "Install dependencies",
    PipelineState.PREPARE_STORAGE: "Prepare storage",
    PipelineState.SEED_DATA: "Seed data",
    PipelineState.RUN_WORKLOAD_MATRIX: "Workload matrix",
    PipelineState.TEARDOWN: "Teardown",
}


@dataclass(frozen=True)
class RunOptions:
    """Command line switches that shape a run."""

    dry_run: bool = False
    connection_mode: ConnectionMode = ConnectionMode.AUTO
    assume_yes: bool = False
    prepare_only: bool = False
    verbose: bool = False
    debug: bool = False


@dataclass(frozen=True)
class RunConfig:
    """Everything a run needs, validated and resolved once."""

    bench: BenchConfig
    hosts: tuple[ResolvedHost, ...]
    options: RunOptions
    workload: WorkloadKind
    config_path: Path | None = None


@dataclass
class RunSummary:
    phase_reports: list[PhaseReport] = field(default_factory=list)
    collection: CollectionReport | None = None
    teardown_reports: list[PhaseReport] = field(default_factory=list)

    @property
    def failed_phases(self) -> list[str]:
        return [r.phase_name for r in self.phase_reports if not r.succeeded]


def build_run(
    bench: BenchConfig,
    kind: WorkloadKind | str,
    options: RunOptions,
    *,
    inventory: VMInventory | None = None,
    config_path: Path | None = None,
    run_date: date | None = None,
    teardown_only: bool = False,
) -> tuple[RunConfig, Workload, ConnectionStrategy]:
    """Resolve hosts and devices and pick connection modes.

    Raises:
        ConfigError: For invalid host or workload settings.
        NoHostsError: If host resolution yields nothing.
        MissingDeviceError: If a host has no device and the workload formats
            one. Teardown-only runs do not need devices.
    """
    kind = WorkloadKind(kind)
    namespace = bench.vm.namespace
    names = resolve_hosts(
        bench.host_spec(),
        inventory,
        namespace=namespace,
        dry_run=options.dry_run,
        connection_mode=options.connection_mode,
    )

    workload = create_workload(kind, bench, fleet_size=len(names), run_date=run_date)
    workload.validate()

    strategy = ConnectionStrategy(
        options.connection_mode,
        inventory,
        namespace=namespace,
        dry_run=options.dry_run,
    )
    hosts = build_fleet(
        names,
        device_map=bench.storage.devices,
        mode_for=strategy.mode_for,
        namespace=namespace,
        require_device=workload.formats_devices and not teardown_only,
    )
    run_config = RunConfig(
        bench=bench,
        hosts=hosts,
        options=options,
        workload=kind,
        config_path=config_path,
    )
    return run_config, workload, strategy


def _default_confirm(prompt: str) -> str:
    return Prompt.ask(prompt, console=console, default="no", show_default=False)


class PipelineDriver:
    """Run one workload across the fleet, phase by phase."""

    def __init__(
        self,
        run_config: RunConfig,
        workload: Workload,
        strategy: ConnectionStrategy,
        *,
        inventory: VMInventory | None = None,
        confirm: Callable[[str], str] | None = None,
        which: Callable[[str], str | None] = shutil.which,
        results_root: Path | str = ".",
        now: Callable[[], datetime] = datetime.now,
    ):
        self.run_config = run_config
        self.workload = workload
        self.strategy = strategy
        self.inventory = inventory
        self.confirm = confirm or _default_confirm
        self.which = which
        self.results_root = Path(results_root)
        self.now = now

        bench = run_config.bench
        options = run_config.options
        self.fleet = FleetExecutor(
            strategy,
            dry_run=options.dry_run,
            max_workers=bench.execution.max_workers,
            command_timeout=bench.execution.command_timeout,
            verbose=options.verbose,
        )
        self.collector = ResultCollector(
            self.fleet,
            strategy,
            max_workers=bench.execution.max_workers,
            timeout=bench.execution.command_timeout,
        )
        self.state = PipelineState.VALIDATE
        self.summary = RunSummary()
        self.results_dir: Path | None = None

    @property
    def hosts(self) -> tuple[ResolvedHost, ...]:
        return self.run_config.hosts

    @property
    def options(self) -> RunOptions:
        return self.run_config.options

    def run(self) -> int:
        """Run the whole pipeline and return the process exit code."""
        self.display_config()
        if self.options.debug:
            self.debug_report()

        self._enter(PipelineState.VALIDATE)
        self.validate()

        if self.options.dry_run:
            return self._dry_run_report()

        if self.options.prepare_only:
            return self._prepare_only()

        self._enter(PipelineState.CONFIRM)
        try:
            self._confirm()
        except UserDeclinedError:
            console.print("[yellow]Operation cancelled by user[/yellow]")
            return EXIT_OK

        self.results_dir = self.results_root / results_dir_name(
            self.workload.results_prefix,
            len(self.hosts),
            self.run_config.bench.description,
            self.now(),
        )
        self.fleet.log_dir = self.results_dir / "logs"

        interrupted = False
        with Timer("run") as timer:
            try:
                self._run_phases()
            except KeyboardInterrupt:
                interrupted = True
                console.print("\n[yellow]Interrupted, running teardown before exit...[/yellow]")
            finally:
                self._teardown()

        if interrupted:
            return EXIT_INTERRUPTED

        self._enter(PipelineState.DONE)
        return self._finish(timer.elapsed)

    def run_cleanup(self) -> int:
        """Validate, then run only the teardown phase."""
        self.display_config()
        self._enter(PipelineState.VALIDATE)
        self.validate(require_devices=False)
        reports = self._teardown()
        if self.options.dry_run:
            return EXIT_OK
        return EXIT_OK if all(r.succeeded for r in reports) else EXIT_FAILED

    def validate(self, require_devices: bool = True) -> None:
        """Fail before any remote side effect.

        Raises:
            MissingDeviceError: A host has no device and the workload formats one.
            DependencyError: A local client tool is missing.
            HostValidationError: A host planned as VM does not exist.
        """
        if require_devices and self.workload.formats_devices:
            for host in self.hosts:
                if not host.device:
                    raise MissingDeviceError(host.identifier)

        mode = self.options.connection_mode
        ensure_dependencies(mode, dry_run=self.options.dry_run, which=self.which)

        if self.options.dry_run:
            console.print("[dim]Skipping VM validation in dry-run mode[/dim]")
        elif mode is ConnectionMode.DIRECT_SSH:
            console.print("[dim]Skipping VM validation in SSH-only mode[/dim]")
        elif self.inventory is not None:
            ensure_vms_exist(
                self.hosts, self.inventory.vm_exists, mode=mode, dry_run=self.options.dry_run
            )

    # Phases -----------------------------------------------------------

    def _run_phases(self) -> None:
        workload = self.workload
        self._run_state(PipelineState.INSTALL_DEPS, workload.install_steps())
        self._run_state(PipelineState.PREPARE_STORAGE, workload.storage_steps())
        self._run_state(PipelineState.SEED_DATA, workload.seed_steps())
        self._run_matrix()
        self._collect()

    def _run_state(self, state: PipelineState, steps: Sequence[Step]) -> list[PhaseReport]:
        self._enter(state)
        if not steps:
            return []
        reports = self.fleet.run_steps(PHASE_TITLES[state], steps, self.hosts)
        if state is PipelineState.TEARDOWN:
            self.summary.teardown_reports.extend(reports)
        else:
            self.summary.phase_reports.extend(reports)
        return reports

    def _run_matrix(self) -> None:
        cells = self.workload.matrix()
        console.print(f"[blue]Workload matrix:[/blue] {len(cells)} tests on {len(self.hosts)} hosts")
        reports = self._run_state(PipelineState.RUN_WORKLOAD_MATRIX, cells)
        if self.workload.prints_cell_output and not self.options.dry_run:
            for report in reports:
                self._print_cell_output(report)

    def _collect(self) -> None:
        self._enter(PipelineState.COLLECT_RESULTS)
        spec = self.workload.result_spec()
        if spec is None:
            return
        results_dir = self.results_dir or self.results_root / results_dir_name(
            self.workload.results_prefix, len(self.hosts), self.run_config.bench.description, self.now()
        )
        collection = self.collector.collect(self.hosts, spec, results_dir)
        self.summary.collection = collection
        if collection.archive is not None:
            self.summary.phase_reports.append(collection.archive)
        if not self.options.dry_run and self.workload.kind is WorkloadKind.FIO:
            self._summarize(results_dir)

    def _teardown(self) -> list[PhaseReport]:
        try:
            reports = self._run_state(PipelineState.TEARDOWN, self.workload.teardown_steps())
        except KeyboardInterrupt:
            console.print("[red]Teardown interrupted; hosts may still have storage mounted[/red]")
            return []
        for report in reports:
            if not report.succeeded:
                console.print(
                    f"[yellow]⚠ Teardown step '{escape(report.phase_name)}' failed on "
                    f"{', '.join(report.failed_hosts)}[/yellow]"
                )
        return reports

    def _prepare_only(self) -> int:
        console.print("[blue]Preparing machines only (installing dependencies)[/blue]")
        reports = self._run_state(PipelineState.INSTALL_DEPS, self.workload.install_steps())
        self._enter(PipelineState.DONE)
        if all(r.succeeded for r in reports):
            console.print("[green]✓ Machines prepared[/green]")
            return EXIT_OK
        console.print("[red]✗ Machine preparation failed on some hosts[/red]")
        return EXIT_FAILED

    def _dry_run_report(self) -> int:
        self._enter(PipelineState.DRY_RUN_REPORT)
        console.print(
            Panel(
                "Configuration validated. Nothing will be executed; "
                "the commands below show what each host would run.",
                title="DRY RUN",
                border_style="yellow",
            )
        )
        console.print(self._plan_table())

        if self.options.prepare_only:
            console.print("[blue]Would prepare machines only (installing dependencies)[/blue]")
            self._run_state(PipelineState.INSTALL_DEPS, self.workload.install_steps())
        else:
            if self.workload.formats_devices:
                console.print(
                    "[yellow]WARNING: storage preparation would format the devices listed above![/yellow]"
                )
            self._run_phases()
            self._teardown()
        self._enter(PipelineState.DONE)
        console.print("[green]✓ Dry run complete.[/green] Run without --dry-run to execute.")
        return EXIT_OK

    def _confirm(self) -> None:
        if not self.workload.formats_devices or self.options.assume_yes:
            return

        console.print()
        console.print("[bold yellow]WARNING: This will format storage devices on all hosts![/bold yellow]")
        console.print("[yellow]Devices to be formatted:[/yellow]")
        for host in self.hosts:
            console.print(f"  {host.identifier}: {host.device_path}")
        console.print()

        answer = self.confirm(CONFIRM_PROMPT)
        if (answer or "").strip() != "yes":
            raise UserDeclinedError("Operation cancelled by user")

    def _finish(self, elapsed: float) -> int:
        failed = self.summary.failed_phases
        collection = self.summary.collection
        collection_failed = collection is not None and not collection.succeeded

        if not failed and not collection_failed:
            console.print(
                f"[green]✓ {self.workload.display_name()} run completed on "
                f"{len(self.hosts)} hosts in {elapsed:.1f}s[/green]"
            )
            if self.results_dir and collection is not None:
                console.print(f"[blue]Results:[/blue] {self.results_dir}")
            return EXIT_OK

        console.print(f"[red]✗ Run finished with failures after {elapsed:.1f}s[/red]")
        for name in failed:
            console.print(f"  [red]-[/red] {escape(name)}")
        if collection_failed:
            console.print(
                f"  [red]-[/red] result collection failed on {', '.join(collection.failed_hosts)}"
            )
        return EXIT_FAILED

    def _enter(self, state: PipelineState) -> None:
        debug_print(f"pipeline: {self.state.value} -> {state.value}")
        self.state = state

    # Output -----------------------------------------------------------

    def display_config(self) -> None:
        """Print the configuration the run will use."""
        bench = self.run_config.bench
        options = self.options

        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Setting", style="bold")
        table.add_column("Value")
        if self.run_config.config_path:
            table.add_row("Configuration", str(self.run_config.config_path))
        table.add_row("Workload", self.workload.display_name())
        if bench.description:
            table.add_row("Description", bench.description)
        table.add_row("Connection mode", _describe_mode(options.connection_mode))
        if options.connection_mode is not ConnectionMode.DIRECT_SSH:
            table.add_row("Namespace", bench.vm.namespace)
        table.add_row("Hosts", f"{len(self.hosts)}: {_abbreviate([h.identifier for h in self.hosts])}")
        for key, value in self.workload.settings():
            table.add_row(key, value)
        workers = bench.execution.max_workers or len(self.hosts)
        table.add_row("Parallel workers", str(workers))
        table.add_row(
            "Command timeout",
            f"{bench.execution.command_timeout:g}s" if bench.execution.command_timeout else "none",
        )
        console.print(Panel(table, title="Configuration", border_style="blue"))

        if options.connection_mode is ConnectionMode.AUTO or options.verbose:
            console.print(self._plan_table())

    def debug_report(self) -> None:
        """Show how the configuration was parsed."""
        bench = self.run_config.bench
        spec = bench.host_spec()
        console.print("[bold]=== Configuration parsing ===[/bold]")
        console.print(f"host_pattern: {spec.host_pattern!r}")
        console.print(f"host_labels:  {spec.host_labels!r}")
        console.print(f"host_file:    {str(spec.host_file) if spec.host_file else None!r}")
        console.print(f"hosts:        {spec.hosts!r}")
        console.print(f"configured methods (in precedence order): {spec.configured_methods}")
        console.print("storage.devices:")
        for key, device in bench.storage.devices.items():
            if is_range_pattern(key):
                expanded = expand_pattern(key)
                console.print(f"  {escape(key)} -> {device} (pattern, {len(expanded)} hosts)")
            else:
                console.print(f"  {escape(key)} -> {device}")
        for host in self.hosts:
            console.print(
                f"  resolved {host.identifier}: device={host.device_path} via={host.connection_label}"
            )
        cells = self.workload.matrix()
        console.print(f"workload matrix: {len(cells)} cells")
        for cell in cells:
            console.print(f"  - {escape(cell.name)}")
        console.print("[bold]=== End of configuration parsing ===[/bold]")

    def _plan_table(self) -> Table:
        table = Table(title="Execution plan", show_header=True, header_style="bold")
        table.add_column("#", justify="right")
        table.add_column("Host", style="cyan")
        table.add_column("Connection")
        table.add_column("Device")
        for host in self.hosts:
            table.add_row(
                str(host.ordinal),
                host.identifier,
                host.connection_label,
                host.device_path or "-",
            )
        return table

    def _print_cell_output(self, report: PhaseReport) -> None:
        for result in report.results:
            lines = [line for line in result.stdout.strip().splitlines() if line.strip()]
            if lines:
                console.print(f"  {report.phase_name} | {result.host}: {lines[-1]}", highlight=False)

    def _summarize(self, results_dir: Path) -> None:
        summary = write_summary(results_dir)
        if summary.empty:
            console.print("[yellow]No FIO results to summarise[/yellow]")
            return
        csv_path = results_dir / SUMMARY_FILENAME

        totals = fleet_totals(summary).fillna("-")
        table = Table(title="Fleet totals", show_header=True, header_style="bold")
        for column in totals.columns:
            table.add_column(column, justify="left" if column in ("test", "direction") else "right")
        for row in totals.itertuples(index=False):
            table.add_row(*(str(value) for value in row))
        console.print(table)
        console.print(f"[dim]Per-host summary written to {csv_path}[/dim]")


def _describe_mode(mode: ConnectionMode) -> str:
    if mode is ConnectionMode.VM_PROXY:
        return "virtctl only (all hosts are VMs)"
    if mode is ConnectionMode.DIRECT_SSH:
        return "SSH only (direct access to all hosts)"
    return "auto (virtctl for VMs, SSH for other hosts)"


def _abbreviate(names: list[str], limit: int = 8) -> str:
    if len(names) <= limit:
        return " ".join(names)
    return " ".join(names[: limit // 2]) + " ... " + " ".join(names[-(limit // 2) :])
