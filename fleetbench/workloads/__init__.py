"""Fleet workloads."""

from datetime import date

from ..common.enums import WorkloadKind
from ..config import BenchConfig
from .base import ResultSpec, Workload
from .fio import FioWorkload
from .hammerdb import HammerDBWorkload, MariaDBWorkload, PostgreSQLWorkload

# Workload factory mapping
WORKLOAD_IMPLEMENTATIONS: dict[str, type[Workload]] = {
    "fio": FioWorkload,
    "mariadb": MariaDBWorkload,
    "postgresql": PostgreSQLWorkload,
}


def create_workload(
    kind: str | WorkloadKind,
    config: BenchConfig,
    fleet_size: int = 1,
    run_date: date | None = None,
) -> Workload:
    """
    Factory function to create a workload.

    Args:
        kind: Workload name (fio, mariadb, postgresql)
        config: Validated benchmark configuration
        fleet_size: Number of hosts in the run
        run_date: Date used in per-run file names, defaults to today

    Returns:
        Workload instance

    Raises:
        ValueError: If workload name is not supported
    """
    name = kind.value if isinstance(kind, WorkloadKind) else kind
    if name not in WORKLOAD_IMPLEMENTATIONS:
        available = ", ".join(WORKLOAD_IMPLEMENTATIONS.keys())
        raise ValueError(f"Unsupported workload: {name}. Available: {available}")

    return WORKLOAD_IMPLEMENTATIONS[name](config, fleet_size=fleet_size, run_date=run_date)


__all__ = [
    "Workload",
    "ResultSpec",
    "FioWorkload",
    "HammerDBWorkload",
    "MariaDBWorkload",
    "PostgreSQLWorkload",
    "create_workload",
    "WORKLOAD_IMPLEMENTATIONS",
]
