"""Base classes for fleet workloads.

A workload is a set of shell command templates, one per pipeline phase. The
pipeline renders them per host and runs them fleet-wide; the benchmark tools
themselves stay opaque.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..common.enums import WorkloadKind
from ..config import BenchConfig
from ..fleet.hosts import ResolvedHost
from ..run.fleet import Step

TEMPLATE_ROOT = Path(__file__).parent / "templates"


@dataclass(frozen=True)
class ResultSpec:
    """Which remote files make up a host's results."""

    remote_dir: str
    patterns: tuple[str, ...]
    archive_name: str

    @property
    def archive_path(self) -> str:
        return f"{self.remote_dir}/{self.archive_name}"


class Workload(ABC):
    """Abstract base class for fleet workloads."""

    kind: WorkloadKind
    # Prefix of the local results directory name
    results_prefix: str = "results"
    # Echo the last output line of each matrix cell per host
    prints_cell_output: bool = False

    def __init__(self, config: BenchConfig, fleet_size: int = 1, run_date: date | None = None):
        self.config = config
        self.fleet_size = fleet_size
        self.run_date = run_date or date.today()
        self.template_env: Environment | None = None

    def get_template_env(self) -> Environment:
        """Get the workload's jinja2 template environment."""
        if not self.template_env:
            self.template_env = Environment(
                loader=FileSystemLoader([TEMPLATE_ROOT / self.kind.value, TEMPLATE_ROOT / "common"]),
                undefined=StrictUndefined,
                trim_blocks=True,
                lstrip_blocks=True,
                keep_trailing_newline=False,
            )
        return self.template_env

    def template_context(self, host: ResolvedHost) -> dict[str, Any]:
        """Values available to every template of this workload."""
        cfg = self.config
        return {
            "host": host,
            "storage": cfg.storage,
            "output": cfg.output,
            "fio": cfg.fio,
            "hammerdb": cfg.hammerdb,
            "database": cfg.database,
            "test": cfg.test,
            "fleet_size": self.fleet_size,
            "run_date": self.run_date.strftime("%Y.%m.%d"),
        }

    def render(self, template_name: str, host: ResolvedHost, **extra: Any) -> str:
        """Render one command for ``host``."""
        template = self.get_template_env().get_template(f"{template_name}.sh.j2")
        context = self.template_context(host)
        context.update(extra)
        return template.render(**context).strip()

    def command(self, template_name: str, **extra: Any) -> Callable[[ResolvedHost], str]:
        """Return a per-host command builder for the fleet executor."""

        def build(host: ResolvedHost) -> str:
            return self.render(template_name, host, **extra)

        return build

    def step(self, name: str, template_name: str, **extra: Any) -> Step:
        return Step(name=name, command=self.command(template_name, **extra))

    def display_name(self) -> str:
        return self.kind.value

    def validate(self) -> None:
        """Check workload-specific settings before anything runs."""

    @property
    @abstractmethod
    def formats_devices(self) -> bool:
        """True when preparing storage destroys data on the configured devices."""

    @abstractmethod
    def install_steps(self) -> list[Step]:
        """Install tools and scripts on every host."""

    @abstractmethod
    def storage_steps(self) -> list[Step]:
        """Prepare the block device or data directory on every host."""

    @abstractmethod
    def seed_steps(self) -> list[Step]:
        """Write the initial data set the workload matrix runs against."""

    @abstractmethod
    def matrix(self) -> list[Step]:
        """Cells of the workload matrix, each a fleet-wide barrier."""

    @abstractmethod
    def teardown_steps(self) -> list[Step]:
        """Undo storage preparation and stop leftover processes."""

    def result_spec(self) -> ResultSpec | None:
        """Remote result files to collect, or None if nothing is collected."""
        return None

    def settings(self) -> list[tuple[str, str]]:
        """Workload parameters shown before a run."""
        return []

