"""Fleet-wide phase execution with per-host failure isolation."""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from ..debug import debug_print
from ..errors import RemoteExecutionError
from ..fleet.hosts import ResolvedHost
from ..infra.connection import CommandResult, ConnectionStrategy
from .parallel_executor import ParallelExecutor

console = Console()

CommandSpec = str | Callable[[ResolvedHost], str]


@dataclass
class PhaseResult:
    """Outcome of one phase on one host."""

    host: str
    phase_name: str
    success: bool
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    elapsed_s: float = 0.0
    error: str | None = None


@dataclass
class PhaseReport:
    """All per-host results of one phase, in host order."""

    phase_name: str
    results: list[PhaseResult] = field(default_factory=list)
    failed_count: int = 0
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.failed_count == 0

    @property
    def succeeded_count(self) -> int:
        return len(self.results) - self.failed_count

    @property
    def failed_hosts(self) -> list[str]:
        return [r.host for r in self.results if not r.success]

    def result_for(self, host: str) -> PhaseResult | None:
        return next((r for r in self.results if r.host == host), None)

    def errors(self) -> list[RemoteExecutionError]:
        """One error per failed host, in host order."""
        return [
            RemoteExecutionError(r.host, self.phase_name, r.error or f"exit code {r.returncode}")
            for r in self.results
            if not r.success
        ]


@dataclass
class Step:
    """One named command in a multi-step phase."""

    name: str
    command: CommandSpec


class FleetExecutor:
    """Run the same command on every host of the fleet and join.

    Each host runs in its own worker; a failure on one host never stops the
    others. Nothing is dispatched in dry-run mode: the command each host
    would receive is printed and every host reports success.
    """

    def __init__(
        self,
        strategy: ConnectionStrategy,
        *,
        dry_run: bool = False,
        max_workers: int | None = None,
        command_timeout: float | None = None,
        log_dir: Path | None = None,
        verbose: bool = False,
    ):
        self.strategy = strategy
        self.dry_run = dry_run
        self.max_workers = max_workers
        self.command_timeout = command_timeout
        self.log_dir = log_dir
        self.verbose = verbose

    def run_phase(
        self,
        phase_name: str,
        hosts: Sequence[ResolvedHost],
        command: CommandSpec,
        *,
        timeout: float | None = None,
    ) -> PhaseReport:
        """Run ``command`` on all ``hosts`` concurrently.

        Args:
            phase_name: Label used in output, logs and results
            hosts: Hosts to run on, all of them, in fleet order
            command: A shell command, or a callable rendering one per host
            timeout: Per-host timeout in seconds, defaults to the executor's

        Returns:
            PhaseReport with one result per host in host order
        """
        timeout = timeout if timeout is not None else self.command_timeout
        report = PhaseReport(phase_name=phase_name, dry_run=self.dry_run)
        if not hosts:
            return report

        if self.dry_run:
            for host in hosts:
                rendered = self._render(command, host)
                console.print(
                    f"[yellow]DRY-RUN:[/yellow] Would execute on {host.identifier}: {escape(rendered)}",
                    highlight=False,
                    soft_wrap=True,
                )
                report.results.append(
                    PhaseResult(host=host.identifier, phase_name=phase_name, success=True)
                )
            return report

        lock = threading.Lock()
        failures: list[PhaseResult] = []

        def make_task(host: ResolvedHost) -> Callable[[], PhaseResult]:
            def task() -> PhaseResult:
                result = self._run_on_host(phase_name, host, command, timeout)
                if not result.success:
                    with lock:
                        failures.append(result)
                return result

            return task

        tasks = {host.identifier: make_task(host) for host in hosts}
        executor = ParallelExecutor(
            max_workers=self.max_workers or len(hosts), echo=self.verbose
        )
        outcomes = executor.execute_parallel(tasks, phase_name, log_dir=self.log_dir)

        for host in hosts:
            outcome = outcomes.get(host.identifier)
            if outcome is None:
                outcome = PhaseResult(
                    host=host.identifier,
                    phase_name=phase_name,
                    success=False,
                    returncode=-1,
                    error="task did not return a result",
                )
                failures.append(outcome)
            report.results.append(outcome)

        report.failed_count = len(failures)
        for error in report.errors():
            console.print(f"[red]✗[/red] {escape(str(error))}", highlight=False)
        if report.succeeded:
            console.print(f"[green]✓ {escape(phase_name)}: {len(hosts)}/{len(hosts)} hosts succeeded[/green]")
        else:
            console.print(
                f"[red]✗ {escape(phase_name)}: {report.failed_count}/{len(hosts)} hosts failed[/red]"
            )
        return report

    def run_steps(
        self,
        title: str,
        steps: Sequence[Step],
        hosts: Sequence[ResolvedHost],
        *,
        timeout: float | None = None,
    ) -> list[PhaseReport]:
        """Run ``steps`` one after another, each across the whole fleet.

        Step N finishes on every host before step N+1 starts. A failing step
        does not stop the sequence.
        """
        reports = []
        for number, step in enumerate(steps, start=1):
            label = f"{title} [{number}/{len(steps)}]: {step.name}"
            reports.append(self.run_phase(label, hosts, step.command, timeout=timeout))
        return reports

    def _run_on_host(
        self,
        phase_name: str,
        host: ResolvedHost,
        command: CommandSpec,
        timeout: float | None,
    ) -> PhaseResult:
        try:
            rendered = self._render(command, host)
        except Exception as e:
            return PhaseResult(
                host=host.identifier,
                phase_name=phase_name,
                success=False,
                returncode=-1,
                error=f"could not build command: {e}",
            )

        debug_print(f"{phase_name}: {rendered}")
        outcome = self.strategy.run(host.identifier, rendered, timeout=timeout)
        assert isinstance(outcome, CommandResult)

        if outcome.stdout:
            print(outcome.stdout.rstrip("\n"))
        if outcome.stderr and not outcome.success:
            print(outcome.stderr.rstrip("\n"), file=sys.stderr)

        return PhaseResult(
            host=host.identifier,
            phase_name=phase_name,
            success=outcome.success,
            returncode=outcome.returncode,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            elapsed_s=outcome.elapsed_s,
            error=None if outcome.success else _last_line(outcome.stderr) or None,
        )

    @staticmethod
    def _render(command: CommandSpec, host: ResolvedHost) -> str:
        return command(host) if callable(command) else command


def _last_line(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return lines[-1] if lines else ""
