"""Debug utilities for fleet runs."""

import os
import shlex
from typing import Any

# Global debug state
_debug_enabled = False


def set_debug(enabled: bool) -> None:
    """Set global debug state."""
    global _debug_enabled
    _debug_enabled = enabled

    # Also set environment variable for child processes
    if enabled:
        os.environ["FLEETBENCH_DEBUG"] = "1"
    else:
        os.environ.pop("FLEETBENCH_DEBUG", None)


def is_debug_enabled() -> bool:
    """Check if debug mode is enabled."""
    global _debug_enabled

    if not _debug_enabled and os.getenv("FLEETBENCH_DEBUG", "").lower() in (
        "1",
        "true",
        "yes",
    ):
        _debug_enabled = True

    return _debug_enabled


def _get_task_prefix() -> str:
    """
    Get the host prefix for output tagging during parallel execution.

    Returns:
        "[host] " prefix if running in a parallel task, empty string otherwise.
    """
    # Import here to avoid circular import at module load time
    from .run.parallel_executor import get_current_task_name

    task_name = get_current_task_name()
    if task_name:
        return f"[{task_name}] "
    return ""


def _trace_prefix(host: str) -> str:
    """``[host] [DEBUG] <phase>:`` for remote command traces."""
    from .run.parallel_executor import get_current_phase_name

    phase = get_current_phase_name()
    return f"[{host}] [DEBUG] {phase}:" if phase else f"[{host}] [DEBUG]"


def _tail(text: str, lines: int) -> list[str]:
    return [line for line in text.strip().splitlines() if line.strip()][-lines:]


def debug_print(message: str, **kwargs: Any) -> None:
    """Print debug message if debug mode is enabled."""
    if is_debug_enabled():
        prefix = _get_task_prefix()
        print(f"{prefix}[DEBUG] {message}", **kwargs)


def debug_log_command(
    host: str, argv: list[str], *, action: str = "exec", timeout: float | None = None
) -> None:
    """Trace the local argv used to reach ``host``.

    ``action`` names the transport operation (exec, copy, stream).
    """
    if is_debug_enabled():
        limit = f" ({timeout}s)" if timeout else ""
        print(f"{_trace_prefix(host)} {action}{limit}: {shlex.join(argv)}")


def debug_log_result(
    host: str, result: dict[str, Any], *, action: str = "exec", tail_lines: int = 3
) -> None:
    """Trace the outcome of a remote operation from its ``safe_command`` dict.

    Only the last ``tail_lines`` lines of stdout/stderr are shown.
    """
    if is_debug_enabled():
        prefix = _trace_prefix(host)
        status = "ok" if result.get("success") else "failed"
        print(
            f"{prefix} {action} {status}, exit {result.get('returncode')} "
            f"after {result.get('elapsed_s', 0.0):.1f}s"
        )
        for stream in ("stdout", "stderr"):
            for line in _tail(result.get(stream) or "", tail_lines):
                print(f"{prefix} {stream}: {line}")
