"""Fleet execution modules."""

from .fleet import FleetExecutor, PhaseReport, PhaseResult, Step
from .parallel_executor import ParallelExecutor

__all__ = [
    "FleetExecutor",
    "ParallelExecutor",
    "PhaseReport",
    "PhaseResult",
    "Step",
]
