"""Remote command transports and per-host connection selection.

Two transports reach a host as ``root``:

- ``SSHExecutor``: plain ``ssh``/``scp`` with host key checking disabled
- ``VirtctlExecutor``: the KubeVirt proxy, ``virtctl ssh root@vmi/<host>``

``ConnectionStrategy`` decides per host which transport to use and turns
every transport failure into a failed ``CommandResult``; nothing raised by
a subprocess escapes to the fleet executor.
"""

from __future__ import annotations

import shlex
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ..common.enums import ConnectionMode
from ..debug import debug_log_command, debug_log_result, debug_print
from ..util import safe_command, stream_command_to_file

SSH_OPTIONS = ["-o", "StrictHostKeyChecking=no", "-o", "UserKnownHostsFile=/dev/null"]


@dataclass
class CommandResult:
    """Outcome of one command on one host."""

    host: str
    command: str
    success: bool
    returncode: int
    stdout: str = ""
    stderr: str = ""
    elapsed_s: float = 0.0

    @classmethod
    def from_dict(cls, host: str, command: str, result: dict[str, Any]) -> CommandResult:
        """Build from a ``safe_command`` style dictionary."""
        return cls(
            host=host,
            command=command,
            success=bool(result.get("success", False)),
            returncode=int(result.get("returncode", -1)),
            stdout=result.get("stdout", "") or "",
            stderr=result.get("stderr", "") or "",
            elapsed_s=float(result.get("elapsed_s", 0.0)),
        )

    @classmethod
    def failure(cls, host: str, command: str, error: str) -> CommandResult:
        return cls(host=host, command=command, success=False, returncode=-1, stderr=error)


class HostInventory(Protocol):
    def is_vm(self, name: str) -> bool: ...


class RemoteExecutor(ABC):
    """Runs commands on and copies files from a remote host."""

    mode: ConnectionMode

    def __init__(
        self,
        runner: Callable[..., dict[str, Any]] = safe_command,
        streamer: Callable[..., dict[str, Any]] = stream_command_to_file,
    ):
        self._run = runner
        self._stream = streamer

    @abstractmethod
    def remote_command(self, host: str, command: str) -> list[str]:
        """Return the local argv that runs ``command`` on ``host``."""

    @abstractmethod
    def copy_command(self, host: str, remote_path: str, local_path: Path) -> list[str]:
        """Return the local argv that copies ``remote_path`` to ``local_path``."""

    @abstractmethod
    def manual_copy_command(self, host: str, remote_path: str, local_path: Path) -> str:
        """Return a command the operator can paste to fetch a file by hand."""

    def execute(self, host: str, command: str, timeout: float | None = None) -> CommandResult:
        argv = self.remote_command(host, command)
        debug_log_command(host, argv, timeout=timeout)
        result = self._run(argv, timeout=timeout)
        debug_log_result(host, result)
        return CommandResult.from_dict(host, command, result)

    def transfer(
        self, host: str, remote_path: str, local_path: Path, timeout: float | None = None
    ) -> CommandResult:
        argv = self.copy_command(host, remote_path, Path(local_path))
        debug_log_command(host, argv, action="copy", timeout=timeout)
        result = self._run(argv, timeout=timeout)
        debug_log_result(host, result, action="copy")
        return CommandResult.from_dict(host, shlex.join(argv), result)

    def stream_file(
        self, host: str, remote_path: str, local_path: Path, timeout: float | None = None
    ) -> CommandResult:
        """Copy a file by streaming ``cat`` through the exec channel."""
        argv = self.remote_command(host, f"cat {shlex.quote(remote_path)}")
        debug_log_command(host, argv, action="stream", timeout=timeout)
        result = self._stream(argv, Path(local_path), timeout=timeout)
        debug_log_result(host, result, action="stream")
        return CommandResult.from_dict(host, shlex.join(argv), result)


class SSHExecutor(RemoteExecutor):
    """Plain ``ssh``/``scp`` as root."""

    mode = ConnectionMode.DIRECT_SSH

    def remote_command(self, host: str, command: str) -> list[str]:
        return ["ssh", *SSH_OPTIONS, f"root@{host}", command]

    def copy_command(self, host: str, remote_path: str, local_path: Path) -> list[str]:
        return ["scp", *SSH_OPTIONS, f"root@{host}:{remote_path}", str(local_path)]

    def manual_copy_command(self, host: str, remote_path: str, local_path: Path) -> str:
        return f"ssh root@{host} {shlex.quote('cat ' + remote_path)} > {local_path}"


class VirtctlExecutor(RemoteExecutor):
    """``virtctl ssh``/``virtctl scp`` against ``vmi/<host>`` in one namespace."""

    mode = ConnectionMode.VM_PROXY

    def __init__(self, namespace: str = "default", **kwargs: Any):
        super().__init__(**kwargs)
        self.namespace = namespace

    def remote_command(self, host: str, command: str) -> list[str]:
        return [
            "virtctl",
            "-n",
            self.namespace,
            "ssh",
            "-t",
            "-o StrictHostKeyChecking=no",
            f"root@vmi/{host}",
            "-c",
            command,
        ]

    def copy_command(self, host: str, remote_path: str, local_path: Path) -> list[str]:
        return [
            "virtctl",
            "-n",
            self.namespace,
            "scp",
            f"root@vmi/{host}:{remote_path}",
            str(local_path),
        ]

    def manual_copy_command(self, host: str, remote_path: str, local_path: Path) -> str:
        return (
            f"virtctl -n {self.namespace} ssh root@vmi/{host} "
            f"-c {shlex.quote('cat ' + remote_path)} > {local_path}"
        )


class ConnectionStrategy:
    """Pick a transport per host and run commands through it.

    Forced modes never look anything up. In ``AUTO`` the inventory is asked
    once per host and the answer is kept for the rest of the run. In dry-run
    no lookup is made and ``AUTO`` hosts are planned as direct SSH.
    """

    def __init__(
        self,
        mode: ConnectionMode = ConnectionMode.AUTO,
        inventory: HostInventory | None = None,
        *,
        namespace: str = "default",
        dry_run: bool = False,
        ssh_executor: RemoteExecutor | None = None,
        virtctl_executor: RemoteExecutor | None = None,
        background_workers: int = 8,
    ):
        self.mode = mode
        self.inventory = inventory
        self.namespace = namespace
        self.dry_run = dry_run
        self._executors: dict[ConnectionMode, RemoteExecutor] = {
            ConnectionMode.DIRECT_SSH: ssh_executor or SSHExecutor(),
            ConnectionMode.VM_PROXY: virtctl_executor or VirtctlExecutor(namespace),
        }
        self._cache: dict[str, ConnectionMode] = {}
        self._cache_lock = threading.Lock()
        self._background_workers = background_workers
        self._pool: ThreadPoolExecutor | None = None

    def mode_for(self, host: str) -> ConnectionMode:
        """Return the connection mode used for ``host``."""
        if self.mode.is_forced:
            return self.mode
        if self.dry_run or self.inventory is None:
            return ConnectionMode.DIRECT_SSH

        with self._cache_lock:
            cached = self._cache.get(host)
        if cached is not None:
            return cached

        try:
            is_vm = self.inventory.is_vm(host)
        except Exception as e:
            debug_print(f"VM lookup for {host} failed, using ssh: {e}")
            is_vm = False

        mode = ConnectionMode.VM_PROXY if is_vm else ConnectionMode.DIRECT_SSH
        with self._cache_lock:
            mode = self._cache.setdefault(host, mode)
        debug_print(f"{host}: connecting via {mode}")
        return mode

    def executor_for(self, host: str) -> RemoteExecutor:
        return self._executors[self.mode_for(host)]

    def run(
        self,
        host: str,
        command: str,
        *,
        background: bool = False,
        timeout: float | None = None,
    ) -> CommandResult | Future[CommandResult]:
        """Run ``command`` on ``host``.

        With ``background=True`` the command is submitted to a worker pool
        and a future is returned; the caller joins it.
        """
        if background:
            return self._get_pool().submit(self._run_safely, host, command, timeout)
        return self._run_safely(host, command, timeout)

    def transfer(
        self, host: str, remote_path: str, local_path: Path, timeout: float | None = None
    ) -> CommandResult:
        try:
            return self.executor_for(host).transfer(host, remote_path, local_path, timeout)
        except Exception as e:
            return CommandResult.failure(host, f"copy {remote_path}", str(e))

    def stream_file(
        self, host: str, remote_path: str, local_path: Path, timeout: float | None = None
    ) -> CommandResult:
        try:
            return self.executor_for(host).stream_file(host, remote_path, local_path, timeout)
        except Exception as e:
            return CommandResult.failure(host, f"cat {remote_path}", str(e))

    def manual_copy_command(self, host: str, remote_path: str, local_path: Path) -> str:
        return self.executor_for(host).manual_copy_command(host, remote_path, local_path)

    def close(self) -> None:
        """Wait for background commands and release the worker pool."""
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def __enter__(self) -> ConnectionStrategy:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _run_safely(self, host: str, command: str, timeout: float | None) -> CommandResult:
        try:
            return self.executor_for(host).execute(host, command, timeout)
        except Exception as e:
            return CommandResult.failure(host, command, f"{type(e).__name__}: {e}")

    def _get_pool(self) -> ThreadPoolExecutor:
        with self._cache_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self._background_workers,
                    thread_name_prefix="fleetbench-bg",
                )
            return self._pool
