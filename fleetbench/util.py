"""Utility functions for fleet runs."""

import re
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import Any


class Timer:
    """Context manager for timing operations."""

    def __init__(self, description: str = "Operation"):
        self.description = description
        self.start_time: float = 0.0
        self.end_time: float = 0.0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.end_time = time.perf_counter()

    @property
    def elapsed(self) -> float:
        """Return elapsed time in seconds."""
        if self.end_time == 0.0 and self.start_time > 0.0:
            return time.perf_counter() - self.start_time
        return self.end_time - self.start_time


def _command_text(cmd: str | list[str]) -> str:
    return cmd if isinstance(cmd, str) else " ".join(cmd)


def safe_command(cmd: str | list[str], timeout: float | None = None) -> dict[str, Any]:
    """
    Execute a command safely and return structured result.

    Returns:
        Dict with keys: success, stdout, stderr, returncode, elapsed_s, command
    """
    start_time = time.perf_counter()

    try:
        if isinstance(cmd, str):
            result = subprocess.run(
                cmd,
                shell=True,
                capture_output=True,
                text=True,
                timeout=timeout,  # nosec B602
            )
        else:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=timeout
            )

        elapsed = time.perf_counter() - start_time

        return {
            "success": result.returncode == 0,
            "stdout": result.stdout,
            "stderr": result.stderr,
            "returncode": result.returncode,
            "elapsed_s": elapsed,
            "command": _command_text(cmd),
        }

    except subprocess.TimeoutExpired:
        elapsed = time.perf_counter() - start_time
        return {
            "success": False,
            "stdout": "",
            "stderr": f"Command timed out after {timeout}s",
            "returncode": -1,
            "elapsed_s": elapsed,
            "command": _command_text(cmd),
        }
    except Exception as e:
        elapsed = time.perf_counter() - start_time
        return {
            "success": False,
            "stdout": "",
            "stderr": str(e),
            "returncode": -1,
            "elapsed_s": elapsed,
            "command": _command_text(cmd),
        }


def stream_command_to_file(
    cmd: list[str], destination: Path, timeout: float | None = None
) -> dict[str, Any]:
    """Run ``cmd`` and write its raw stdout into ``destination``.

    Used for binary transfers through an exec channel (``ssh host cat file``).
    A partially written file is removed when the command fails.
    """
    start_time = time.perf_counter()
    destination = Path(destination)
    ensure_directory(destination.parent)

    try:
        with open(destination, "wb") as handle:
            result = subprocess.run(
                cmd, stdout=handle, stderr=subprocess.PIPE, timeout=timeout
            )
        success = result.returncode == 0
        stderr = result.stderr.decode(errors="replace") if result.stderr else ""
        returncode = result.returncode
    except subprocess.TimeoutExpired:
        success, stderr, returncode = False, f"Command timed out after {timeout}s", -1
    except Exception as e:
        success, stderr, returncode = False, str(e), -1

    if not success:
        destination.unlink(missing_ok=True)

    return {
        "success": success,
        "stdout": "",
        "stderr": stderr,
        "returncode": returncode,
        "elapsed_s": time.perf_counter() - start_time,
        "command": _command_text(cmd),
    }


def ensure_directory(path: str | Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path


def sanitize_label(value: str | None) -> str:
    """Lower-case ``value`` and squeeze everything but [a-z0-9] into single underscores."""
    if not value:
        return ""
    label = re.sub(r"[^a-z0-9]", "_", value.lower())
    return re.sub(r"_+", "_", label).strip("_")


def get_timestamp(now: datetime | None = None) -> str:
    """Return the timestamp used in results directory names."""
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
