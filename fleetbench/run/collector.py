"""Result collection from fleet hosts back to the operator's machine."""

from __future__ import annotations

import shlex
import tarfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..errors import TransferError
from ..fleet.hosts import ResolvedHost
from ..infra.connection import ConnectionStrategy
from ..util import ensure_directory, get_timestamp, sanitize_label
from ..workloads.base import ResultSpec
from .fleet import FleetExecutor, PhaseReport
from .parallel_executor import ParallelExecutor

console = Console()


@dataclass
class HostCollection:
    """Where one host's results ended up, or why they did not."""

    host: str
    local_dir: Path
    success: bool
    method: str | None = None  # "copy" or "stream"
    files: list[str] = field(default_factory=list)
    error: str | None = None
    recovery_command: str | None = None


@dataclass
class CollectionReport:
    """Outcome of collecting results from the whole fleet."""

    results_dir: Path
    archive: PhaseReport | None = None
    hosts: list[HostCollection] = field(default_factory=list)
    dry_run: bool = False

    @property
    def failed_hosts(self) -> list[str]:
        return [h.host for h in self.hosts if not h.success]

    @property
    def succeeded(self) -> bool:
        return not self.failed_hosts

    @property
    def file_count(self) -> int:
        return sum(len(h.files) for h in self.hosts)


def results_dir_name(
    prefix: str,
    host_count: int,
    description: str | None = None,
    now: datetime | None = None,
) -> str:
    """Return ``<prefix>-results-<timestamp>[-<description>]-machines_<N>``."""
    label = sanitize_label(description)
    parts = [f"{prefix}-results", get_timestamp(now)]
    if label:
        parts.append(label)
    parts.append(f"machines_{host_count}")
    return "-".join(parts)


def archive_command(spec: ResultSpec) -> str:
    """Shell command that packs the result files on a host."""
    patterns = " ".join(spec.patterns)
    return f"cd {shlex.quote(spec.remote_dir)} && tar czf {shlex.quote(spec.archive_name)} {patterns}"


def extract_archive(archive: Path, destination: Path) -> list[str]:
    """Unpack a results archive, refusing members that would escape ``destination``.

    Returns:
        Names of the extracted files
    """
    root = destination.resolve()
    with tarfile.open(archive, "r:gz") as tar:
        members = tar.getmembers()
        for member in members:
            target = (destination / member.name).resolve()
            if member.issym() or member.islnk() or (target != root and root not in target.parents):
                raise tarfile.TarError(f"unsafe archive member: {member.name}")
        tar.extractall(destination, members=members)
    return sorted(m.name for m in members if m.isfile())


class ResultCollector:
    """Archive results on every host, copy them back and unpack them.

    The copy first uses the transport's file copy (``scp`` / ``virtctl scp``)
    and falls back to streaming the archive through ``cat``. If both fail the
    host is reported with a command to fetch the archive by hand; the
    archive stays on the host.
    """

    def __init__(
        self,
        fleet: FleetExecutor,
        strategy: ConnectionStrategy,
        *,
        max_workers: int | None = None,
        timeout: float | None = None,
    ):
        self.fleet = fleet
        self.strategy = strategy
        self.max_workers = max_workers
        self.timeout = timeout

    @property
    def dry_run(self) -> bool:
        return self.fleet.dry_run

    def collect(
        self,
        hosts: Sequence[ResolvedHost],
        spec: ResultSpec,
        local_results_dir: Path,
    ) -> CollectionReport:
        report = CollectionReport(results_dir=Path(local_results_dir), dry_run=self.dry_run)
        report.archive = self.fleet.run_phase(
            "Creating results archive", hosts, archive_command(spec)
        )

        if self.dry_run:
            for host in hosts:
                host_dir = report.results_dir / host.identifier
                console.print(
                    f"[yellow]DRY-RUN:[/yellow] Would copy results from {host.identifier} "
                    f"to {host_dir}/",
                    highlight=False,
                )
                report.hosts.append(HostCollection(host.identifier, host_dir, success=True))
            return report

        ensure_directory(report.results_dir)
        tasks = {
            host.identifier: (lambda h=host: self._collect_host(h, spec, report.results_dir))
            for host in hosts
        }
        executor = ParallelExecutor(max_workers=self.max_workers or len(hosts), echo=False)
        outcomes = executor.execute_parallel(tasks, "Collecting results")

        for host in hosts:
            outcome = outcomes.get(host.identifier)
            if outcome is None:
                outcome = HostCollection(
                    host.identifier,
                    report.results_dir / host.identifier,
                    success=False,
                    error="collection task failed",
                )
            report.hosts.append(outcome)

        self._print_report(report, spec)
        return report

    def _collect_host(self, host: ResolvedHost, spec: ResultSpec, results_dir: Path) -> HostCollection:
        name = host.identifier
        host_dir = ensure_directory(results_dir / name)
        local_archive = host_dir / spec.archive_name

        method = "copy"
        result = self.strategy.transfer(name, spec.archive_path, local_archive, self.timeout)
        if not result.success:
            print(f"Copy failed ({result.stderr.strip()}), trying alternative method...")
            method = "stream"
            result = self.strategy.stream_file(name, spec.archive_path, local_archive, self.timeout)

        if not result.success:
            error = TransferError(
                name,
                spec.archive_path,
                self.strategy.manual_copy_command(name, spec.archive_path, local_archive),
            )
            print(str(error))
            return HostCollection(
                name,
                host_dir,
                success=False,
                error=str(error),
                recovery_command=error.recovery_command,
            )

        try:
            files = extract_archive(local_archive, host_dir)
        except (tarfile.TarError, OSError, EOFError) as e:
            print(f"Failed to extract results for {name}, keeping {local_archive}: {e}")
            return HostCollection(
                name,
                host_dir,
                success=False,
                method=method,
                error=f"extraction failed: {e}",
            )

        local_archive.unlink(missing_ok=True)
        return HostCollection(name, host_dir, success=True, method=method, files=files)

    def _print_report(self, report: CollectionReport, spec: ResultSpec) -> None:
        table = Table(title="Collected Results", show_header=True, header_style="bold")
        table.add_column("Host", style="cyan")
        table.add_column("Status")
        table.add_column("Method")
        table.add_column("Files", justify="right")
        for entry in report.hosts:
            status = "[green]✓ ok[/green]" if entry.success else "[red]✗ failed[/red]"
            table.add_row(entry.host, status, entry.method or "-", str(len(entry.files)))
        console.print(table)

        for entry in report.hosts:
            if entry.success:
                continue
            console.print(f"[red]✗ {entry.host}:[/red] {escape(entry.error or 'unknown error')}")
            if entry.recovery_command:
                console.print(
                    f"  Results are still available on {entry.host} at {spec.archive_path}"
                )
                console.print(f"  Manual copy command: {escape(entry.recovery_command)}", highlight=False)

        console.print(
            f"[blue]Results directory:[/blue] {report.results_dir} "
            f"[dim]({report.file_count} files from {len(report.hosts) - len(report.failed_hosts)}"
            f"/{len(report.hosts)} hosts)[/dim]"
        )
