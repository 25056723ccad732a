"""Shared fixtures: in-memory transports and inventories, no real hosts."""

from __future__ import annotations

import io
import json
import tarfile
import threading
from pathlib import Path

import pytest

from fleetbench.common.enums import ConnectionMode, WorkloadKind
from fleetbench.config import BenchConfig, FioConfig, StorageConfig, VMConfig
from fleetbench.debug import set_debug
from fleetbench.fleet.hosts import build_fleet, resolve_hosts
from fleetbench.infra.connection import CommandResult, ConnectionStrategy, RemoteExecutor
from fleetbench.run.pipeline import PipelineDriver, RunConfig, RunOptions
from fleetbench.workloads import create_workload


def fio_json(read_iops: float = 100.0, write_iops: float = 0.0) -> str:
    """A minimal FIO ``--output-format=json`` document with one job."""
    return json.dumps(
        {
            "jobs": [
                {
                    "jobname": "testfile",
                    "read": {
                        "iops": read_iops,
                        "bw": read_iops * 4,
                        "io_bytes": int(read_iops * 4096),
                        "lat_ns": {"mean": 2000.0},
                    },
                    "write": {
                        "iops": write_iops,
                        "bw": write_iops * 4,
                        "io_bytes": int(write_iops * 4096),
                        "clat_ns": {"mean": 5000.0},
                    },
                }
            ]
        }
    )


def write_archive(path: Path, files: dict[str, str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))


class FakeExecutor(RemoteExecutor):
    """Records every command instead of running it.

    ``fail_hosts`` fail every command containing ``fail_on`` (or every
    command when ``fail_on`` is None). ``interrupt_on`` raises
    KeyboardInterrupt for commands containing that text.
    """

    mode = ConnectionMode.DIRECT_SSH

    def __init__(
        self,
        fail_hosts: tuple[str, ...] = (),
        fail_on: str | None = None,
        interrupt_on: str | None = None,
        transfer_ok: bool = True,
        stream_ok: bool = True,
        archive_files: dict[str, str] | None = None,
    ):
        super().__init__()
        self.fail_hosts = set(fail_hosts)
        self.fail_on = fail_on
        self.interrupt_on = interrupt_on
        self.transfer_ok = transfer_ok
        self.stream_ok = stream_ok
        self.archive_files = archive_files if archive_files is not None else {}
        self.calls: list[tuple[str, str]] = []
        self.transfers: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def remote_command(self, host: str, command: str) -> list[str]:
        return ["fake", host, command]

    def copy_command(self, host: str, remote_path: str, local_path: Path) -> list[str]:
        return ["fake-copy", f"{host}:{remote_path}", str(local_path)]

    def manual_copy_command(self, host: str, remote_path: str, local_path: Path) -> str:
        return f"fake-copy {host}:{remote_path} {local_path}"

    def execute(self, host: str, command: str, timeout: float | None = None) -> CommandResult:
        with self._lock:
            self.calls.append((host, command))
        if self.interrupt_on and self.interrupt_on in command:
            raise KeyboardInterrupt
        if host in self.fail_hosts and (self.fail_on is None or self.fail_on in command):
            return CommandResult(host, command, False, 1, stderr="simulated failure")
        return CommandResult(host, command, True, 0, stdout=f"ok from {host}")

    def transfer(self, host, remote_path, local_path, timeout=None) -> CommandResult:
        return self._copy("copy", self.transfer_ok, host, remote_path, Path(local_path))

    def stream_file(self, host, remote_path, local_path, timeout=None) -> CommandResult:
        return self._copy("stream", self.stream_ok, host, remote_path, Path(local_path))

    def commands_for(self, host: str) -> list[str]:
        return [command for h, command in self.calls if h == host]

    def _copy(self, method: str, ok: bool, host: str, remote_path: str, local_path: Path):
        with self._lock:
            self.transfers.append((method, host, remote_path))
        if not ok:
            return CommandResult(host, method, False, 1, stderr=f"{method} unavailable")
        write_archive(local_path, self.archive_files)
        return CommandResult(host, method, True, 0)


class FakeInventory:
    """VM inventory backed by a set of VM names."""

    def __init__(self, vms=(), labels: dict[str, list[str]] | None = None):
        self.vms = set(vms)
        self.labels = labels or {}
        self.lookups: list[str] = []

    def is_vm(self, name: str) -> bool:
        self.lookups.append(name)
        return name in self.vms

    def vm_exists(self, name: str) -> bool:
        return name in self.vms

    def find_by_labels(self, selector: str) -> list[str]:
        return list(self.labels.get(selector, []))


def make_driver(
    bench: BenchConfig,
    kind: WorkloadKind | str,
    options: RunOptions,
    executor: FakeExecutor,
    results_root: Path,
    *,
    require_device: bool = True,
    **kwargs,
) -> PipelineDriver:
    """Wire a pipeline driver to a fake transport."""
    strategy = ConnectionStrategy(
        options.connection_mode,
        None,
        dry_run=options.dry_run,
        ssh_executor=executor,
        virtctl_executor=executor,
    )
    names = resolve_hosts(
        bench.host_spec(), None, dry_run=options.dry_run, connection_mode=options.connection_mode
    )
    workload = create_workload(kind, bench, fleet_size=len(names))
    hosts = build_fleet(
        names,
        device_map=bench.storage.devices,
        mode_for=strategy.mode_for,
        require_device=require_device and workload.formats_devices,
    )
    run_config = RunConfig(bench=bench, hosts=hosts, options=options, workload=WorkloadKind(kind))
    kwargs.setdefault("which", lambda tool: f"/usr/bin/{tool}")
    return PipelineDriver(run_config, workload, strategy, results_root=results_root, **kwargs)


@pytest.fixture(autouse=True)
def _reset_debug():
    set_debug(False)
    yield
    set_debug(False)


@pytest.fixture
def fio_bench() -> BenchConfig:
    """Three VMs with a device each and a one-cell FIO matrix."""
    return BenchConfig(
        vm=VMConfig(host_pattern="vm-{1..3}"),
        storage=StorageConfig(devices={"vm-{1..3}": "vdb"}),
        fio=FioConfig(block_sizes=["4k"], io_patterns=["randread"], runtime=5),
    )


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor(archive_files={"fio-test-randread-bs-4k.json": fio_json()})
