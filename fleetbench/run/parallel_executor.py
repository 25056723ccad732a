"""Thread-pool fan-out across hosts with per-host output capture."""

from __future__ import annotations

import contextlib
import queue
import re
import sys
import threading
import time
import traceback
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any

# Executor currently dispatching, used by debug.py to tag output lines
_current_executor: ParallelExecutor | None = None


def get_current_task_name() -> str | None:
    """
    Return the host the calling thread is working on.

    Returns:
        The task (host) name inside a ParallelExecutor task, None elsewhere.
    """
    if _current_executor is None:
        return None
    return _current_executor.get_current_task_name()


def get_current_phase_name() -> str | None:
    """Return the phase being dispatched, None outside a parallel phase."""
    if _current_executor is None:
        return None
    return _current_executor.phase_name


class _TaskStream:
    """File-like sink installed as ``sys.stdout``/``sys.stderr`` for a phase.

    Lines are attributed to the task running on the writing thread. Threads
    that are not running a task write straight through to the original stream.
    """

    def __init__(self, executor: ParallelExecutor, stream_label: str, passthrough: Any):
        self._executor = executor
        self._is_stderr = stream_label == "stderr"
        self._passthrough = passthrough
        self._pending: dict[str, str] = {}
        self._lock = threading.Lock()

    def write(self, data: str) -> int:
        if not data:
            return 0
        name = self._executor.get_current_task_name()
        if name is None:
            return self._passthrough.write(data)
        with self._lock:
            *lines, rest = (self._pending.pop(name, "") + data).split("\n")
            if rest:
                self._pending[name] = rest
        for line in lines:
            self._emit(name, line)
        return len(data)

    def flush(self) -> None:
        name = self._executor.get_current_task_name()
        if name is None:
            self._passthrough.flush()
        else:
            self.flush_task(name)

    def flush_task(self, name: str) -> None:
        with self._lock:
            pending = self._pending.pop(name, "")
        if pending:
            self._emit(name, pending)

    def isatty(self) -> bool:
        return False

    def _emit(self, name: str, line: str) -> None:
        content = line.rstrip("\r")
        if self._is_stderr and content:
            content = f"[stderr] {content}"
        self._executor._record_line(name, content)


class ParallelExecutor:
    """Run one callable per host concurrently and keep each host's output apart.

    Every line a task prints is stored in that task's buffer, echoed to the
    terminal tagged with ``[host]`` and, when a log directory is given,
    written to ``<log_dir>/<phase>/<host>.log`` once the phase is over.
    """

    # Lines kept in memory per host before output is truncated
    MAX_BUFFER_LINES = 50000

    def __init__(self, max_workers: int = 2, echo: bool = True):
        self.max_workers = max(1, max_workers)
        self.echo = echo

        self.output_buffers: dict[str, list[str]] = {}
        self.status: dict[str, str] = {}
        self.start_times: dict[str, float] = {}
        self.finish_times: dict[str, float] = {}
        self.results: dict[str, Any] = {}
        self.log_paths: dict[str, Path] = {}

        self._state_lock = threading.Lock()
        self._print_lock = threading.Lock()
        self._output_locks: dict[str, threading.Lock] = {}
        self._overflowed: dict[str, bool] = {}
        self._queue: queue.Queue[tuple[str, str] | None] | None = None
        self._consumer_thread: threading.Thread | None = None

        self._stdout_original = sys.stdout
        self._stderr_original = sys.stderr
        self._thread_local = threading.local()
        self._streams: tuple[_TaskStream, ...] = ()
        self.phase_name: str | None = None

    def execute_parallel(
        self,
        tasks: dict[str, Callable[[], Any]],
        phase_name: str,
        log_dir: Path | str | None = None,
    ) -> dict[str, Any]:
        """Run ``tasks`` (host name -> callable) and wait for all of them.

        A task that raises gets ``None`` as its result; the traceback ends up
        in its log. Results are returned in task insertion order.
        """
        global _current_executor

        if not tasks:
            return {}

        _current_executor = self
        self.phase_name = phase_name
        self._stdout_original = sys.stdout
        self._stderr_original = sys.stderr
        self._reset_state(tasks)
        self._start_consumer(phase_name)

        self._streams = (
            _TaskStream(self, "stdout", self._stdout_original),
            _TaskStream(self, "stderr", self._stderr_original),
        )
        sys.stdout, sys.stderr = self._streams  # type: ignore[assignment]
        try:
            with ThreadPoolExecutor(
                max_workers=min(self.max_workers, len(tasks)),
                thread_name_prefix="fleetbench",
            ) as pool:
                futures = {
                    pool.submit(self._wrap_task, name, task): name
                    for name, task in tasks.items()
                }
                for future in as_completed(futures):
                    name = futures[future]
                    try:
                        result = future.result()
                    except Exception as exc:
                        self._finish(name, None, f"❌ Failed: {exc}"[:200])
                    else:
                        ok = getattr(result, "success", True)
                        self._finish(name, result, "✅ Completed" if ok else "❌ Failed")
        finally:
            sys.stdout = self._stdout_original
            sys.stderr = self._stderr_original
            self._streams = ()
            self._stop_consumer()
            _current_executor = None

        self.log_paths = self._write_logs(phase_name, log_dir)
        self._print_summary(phase_name)

        return {name: self.results.get(name) for name in tasks}

    def add_output(self, name: str, message: str) -> None:
        """Record a log line for a task."""
        self._record_line(name, message)

    def update_status(self, name: str, status: str) -> None:
        with self._state_lock:
            self.status[name] = status
        self._record_line(name, f"[status] {status}")

    # Internal helpers -------------------------------------------------

    def _wrap_task(self, name: str, task: Callable[[], Any]) -> Any:
        self._thread_local.current_task = name
        with self._state_lock:
            self.start_times[name] = time.time()
        self.update_status(name, "🔄 Running...")

        try:
            return task()
        except Exception:
            for line in traceback.format_exc().strip().splitlines():
                self._record_line(name, f"[stderr] {line}")
            raise
        finally:
            for stream in self._streams:
                stream.flush_task(name)
            self._thread_local.current_task = None

    def get_current_task_name(self) -> str | None:
        """Return the task running on the calling thread, if any."""
        return getattr(self._thread_local, "current_task", None)

    def _finish(self, name: str, result: Any, status: str) -> None:
        with self._state_lock:
            self.results[name] = result
            self.status[name] = status
            self.finish_times[name] = time.time()
        self._record_line(name, f"[status] {status}")

    def _reset_state(self, tasks: dict[str, Callable[[], Any]]) -> None:
        now = time.time()
        self.output_buffers = {name: [] for name in tasks}
        self.status = dict.fromkeys(tasks, "⏳ Pending")
        self.start_times = dict.fromkeys(tasks, now)
        self.finish_times = {}
        self.results = {}
        self.log_paths = {}
        self._output_locks = {name: threading.Lock() for name in tasks}
        self._overflowed = dict.fromkeys(tasks, False)

    def _start_consumer(self, phase_name: str) -> None:
        self._queue = queue.Queue(maxsize=10000)
        self._consumer_thread = threading.Thread(
            target=self._consume_events,
            name=f"fleetbench-log-{self._slugify(phase_name)}",
            daemon=True,
        )
        self._consumer_thread.start()
        self._print_line("")
        self._print_line(f"== {phase_name} ==")

    def _stop_consumer(self) -> None:
        if not self._queue:
            return
        try:
            self._queue.put(None, timeout=5.0)
        except queue.Full:
            self._write_direct("Warning: log queue full, consumer may be stuck\n", "stderr")

        if self._consumer_thread:
            self._consumer_thread.join(timeout=30.0)
            if self._consumer_thread.is_alive():
                self._write_direct(
                    "Warning: log consumer did not stop cleanly, some lines may be lost\n",
                    "stderr",
                )
        self._consumer_thread = None
        self._queue = None

    def _consume_events(self) -> None:
        assert self._queue is not None
        while True:
            item = self._queue.get()
            if item is None:
                break
            if not self.echo:
                continue
            name, message = item
            tag = f"[{name}]"
            if message.startswith(tag):
                line = message
            else:
                line = f"{tag} {message}" if message else tag
            with contextlib.suppress(OSError, ValueError):
                self._print_line(line)

    def _record_line(self, name: str, message: str) -> None:
        clean = message.rstrip("\n\r")

        lock = self._output_locks.get(name)
        if lock is None:
            with self._state_lock:
                lock = self._output_locks.setdefault(name, threading.Lock())
                self.output_buffers.setdefault(name, [])
                self._overflowed.setdefault(name, False)

        with lock:
            buffer = self.output_buffers[name]
            if len(buffer) < self.MAX_BUFFER_LINES:
                buffer.append(clean)
            elif not self._overflowed[name]:
                buffer.append(
                    f"[WARNING: output limit of {self.MAX_BUFFER_LINES} lines reached, "
                    "further output truncated]"
                )
                self._overflowed[name] = True

        if self._queue:
            # Dropped lines are still in the buffer and the log file
            with contextlib.suppress(queue.Full):
                self._queue.put((name, clean), timeout=1.0)

    def _write_logs(self, phase_name: str, base_log_dir: Path | str | None) -> dict[str, Path]:
        if not base_log_dir:
            return {}

        phase_dir = Path(base_log_dir) / self._slugify(phase_name)
        try:
            phase_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._write_direct(f"Warning: cannot create log directory {phase_dir}: {e}\n", "stderr")
            return {}

        log_paths: dict[str, Path] = {}
        for name, lines in self.output_buffers.items():
            path = phase_dir / f"{self._slugify(name)}.log"
            try:
                path.write_text("\n".join(lines) + "\n" if lines else "", encoding="utf-8")
            except OSError as e:
                self._write_direct(f"Warning: failed to write log for {name}: {e}\n", "stderr")
                continue
            log_paths[name] = path
        return log_paths

    def _print_summary(self, phase_name: str) -> None:
        failed = [name for name, status in self.status.items() if status.startswith("❌")]
        self._print_line(
            f"== {phase_name} Summary: {len(self.status) - len(failed)}/{len(self.status)} succeeded =="
        )
        for name, status in self.status.items():
            if not self.echo and name not in failed:
                continue
            finish = self.finish_times.get(name, time.time())
            elapsed = finish - self.start_times.get(name, finish)
            self._print_line(f"- {name}: {status} ({elapsed:.1f}s)")
            if name in self.log_paths:
                self._print_line(f"  log: {self.log_paths[name]}")
        self._print_line("")

    def _write_direct(self, text: str, stream: str = "stdout") -> None:
        target = self._stdout_original if stream == "stdout" else self._stderr_original
        if target is None:
            return
        target.write(text)
        target.flush()

    def _print_line(self, text: str) -> None:
        with self._print_lock:
            self._write_direct(text + "\n")

    @staticmethod
    def _slugify(value: str) -> str:
        slug = re.sub(r"[^a-zA-Z0-9]+", "-", value).strip("-").lower()
        return slug or "task"
