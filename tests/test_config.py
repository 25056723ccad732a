"""Tests for configuration loading."""

from __future__ import annotations

import textwrap

import pytest

from fleetbench.config import BenchConfig, StorageConfig, load_config
from fleetbench.errors import ConfigError
from fleetbench.fleet.devices import resolve_device, resolve_devices
from fleetbench.fleet.hosts import ResolvedHost


def _write(tmp_path, text: str, name: str = "config.yaml"):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text))
    return path


class TestLoadConfig:
    def test_full_fio_config(self, tmp_path):
        path = _write(
            tmp_path,
            """
            description: nvme tier
            vm:
              namespace: bench
              host_pattern: "vm-{1..3}"
            storage:
              mount_point: /mnt/test/
              filesystem: ext4
              devices:
                "vm-{1..3}": vdb
            fio:
              block_sizes: "4k 64k"
              io_patterns: [randread, write]
              runtime: 60
            execution:
              max_workers: 2
              command_timeout: 900
            """,
        )
        cfg = load_config(path)

        assert cfg.vm.namespace == "bench"
        assert cfg.storage.mount_point == "/mnt/test"
        assert cfg.storage.filesystem == "ext4"
        assert cfg.storage.devices == {"vm-{1..3}": "vdb"}
        assert cfg.fio.block_sizes == ["4k", "64k"]
        assert cfg.fio.io_patterns == ["randread", "write"]
        assert cfg.execution.max_workers == 2
        assert cfg.execution.command_timeout == 900
        assert cfg.base_dir == str(tmp_path.resolve())

    def test_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, "vm:\n  hosts: a b\n"))

        assert cfg.vm.hosts == ["a", "b"]
        assert cfg.storage.mount_point == "/root/tests/data"
        assert not cfg.storage.mount_point_is_explicit
        assert cfg.fio.io_patterns == ["randread", "randwrite"]
        assert cfg.output.format == "json+"
        assert cfg.execution.command_timeout is None
        assert cfg.test.user_count == [10]

    def test_null_values_fall_back_to_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, "vm:\n  hosts: [a]\n  host_pattern: null\ntest:\n  storage_type: 'null'\n"))
        assert cfg.vm.host_pattern is None
        assert cfg.test.storage_type is None

    def test_environment_variables_are_expanded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FLEET_NS", "perf")
        cfg = load_config(_write(tmp_path, "vm:\n  namespace: $FLEET_NS\n  hosts: [a]\n"))
        assert cfg.vm.namespace == "perf"

    def test_host_file_is_resolved_relative_to_config(self, tmp_path):
        cfg = load_config(_write(tmp_path, "vm:\n  host_file: hosts.txt\n"))
        assert cfg.host_spec().host_file == tmp_path.resolve() / "hosts.txt"

    def test_legacy_database_hosts(self, tmp_path):
        cfg = load_config(
            _write(tmp_path, "database:\n  hosts: db-1 db-2\n  namespace: databases\n")
        )
        assert cfg.vm.hosts == ["db-1", "db-2"]
        assert cfg.vm.namespace == "databases"

    def test_user_counts_from_string(self, tmp_path):
        cfg = load_config(_write(tmp_path, "test:\n  user_count: '10 20 40'\n"))
        assert cfg.test.user_count == [10, 20, 40]

    def test_device_names_are_trimmed(self, tmp_path):
        cfg = load_config(
            _write(tmp_path, "storage:\n  devices:\n    'vm-{1..2}': ' vdb '\n    ' vm-3 ': \"sdb\\t\"\n")
        )
        assert cfg.storage.devices == {"vm-{1..2}": "vdb", "vm-3": "sdb"}
        assert resolve_devices(["vm-2", "vm-3"], cfg.storage.devices) == {"vm-2": "vdb", "vm-3": "sdb"}
        assert ResolvedHost("vm-2", False, resolve_device("vm-2", cfg.storage.devices)).device_path == "/dev/vdb"


class TestInvalidConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ConfigError, match="not valid YAML"):
            load_config(_write(tmp_path, "vm: [unclosed\n"))

    def test_top_level_must_be_mapping(self, tmp_path):
        with pytest.raises(ConfigError, match="mapping"):
            load_config(_write(tmp_path, "- a\n- b\n"))

    @pytest.mark.parametrize(
        "text, location",
        [
            ("vm:\n  host_pattern: vm-1\n", "vm.host_pattern"),
            ("storage:\n  devices:\n    vm-1: /dev/vdb\n", "storage.devices"),
            ("storage:\n  devices:\n    'vm-{3..1}': vdb\n", "storage.devices"),
            ("storage:\n  filesystem: zfs\n", "storage.filesystem"),
            ("storage:\n  mount_point: relative/path\n", "storage.mount_point"),
            ("fio:\n  io_patterns: [sideways]\n", "fio.io_patterns"),
            ("fio:\n  runtime: 0\n", "fio.runtime"),
            ("execution:\n  max_workers: 0\n", "execution.max_workers"),
            ("test:\n  user_count: [0]\n", "test.user_count"),
        ],
    )
    def test_validation_errors_name_the_field(self, tmp_path, text, location):
        with pytest.raises(ConfigError) as exc_info:
            load_config(_write(tmp_path, text))
        assert location in str(exc_info.value)


def test_explicit_mount_point_is_tracked():
    assert StorageConfig(mount_point="/data").mount_point_is_explicit
    assert not BenchConfig().storage.mount_point_is_explicit
