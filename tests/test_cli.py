"""Tests for the command line interface."""

from __future__ import annotations

import textwrap

import pytest
from typer.testing import CliRunner

from fleetbench import cli
from fleetbench.cli import app

runner = CliRunner()

FIO_CONFIG = """
vm:
  host_pattern: "vm-{1..2}"
storage:
  devices:
    "vm-{1..2}": vdb
fio:
  block_sizes: [4k]
  io_patterns: [randread]
  runtime: 5
"""


@pytest.fixture
def fio_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "fio-config.yaml"
    path.write_text(textwrap.dedent(FIO_CONFIG))
    return path


class TestRunCommands:
    def test_fio_dry_run(self, fio_config, tmp_path):
        result = runner.invoke(app, ["fio", "-c", str(fio_config), "--dry-run", "--ssh-only"])

        assert result.exit_code == 0, result.output
        assert "DRY RUN" in result.output
        assert "vm-2" in result.output
        assert not any(p.name.startswith("fio-results") for p in tmp_path.iterdir())

    def test_connection_flags_are_exclusive(self, fio_config):
        result = runner.invoke(
            app, ["fio", "-c", str(fio_config), "--ssh-only", "--virtctl-only"]
        )
        assert result.exit_code == 1
        assert "mutually exclusive" in result.output

    def test_missing_config(self, tmp_path):
        result = runner.invoke(app, ["mariadb", "-c", str(tmp_path / "nope.yaml"), "--dry-run"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_missing_device_is_fatal(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        path = tmp_path / "fio-config.yaml"
        path.write_text("vm:\n  hosts: [vm-1, vm-2]\nstorage:\n  devices:\n    vm-1: vdb\n")

        result = runner.invoke(app, ["fio", "-c", str(path), "--dry-run", "--ssh-only"])

        assert result.exit_code == 1
        assert "vm-2" in result.output

    def test_database_without_storage(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("vm:\n  hosts: [db-1]\n")

        result = runner.invoke(app, ["postgresql", "-c", str(path), "--dry-run", "--ssh-only"])

        assert result.exit_code == 1
        assert "storage.mount_point" in result.output


class TestCheck:
    def test_valid_config(self, fio_config, monkeypatch):
        monkeypatch.setattr(cli, "required_tools", lambda mode: [])
        result = runner.invoke(app, ["check", "-c", str(fio_config), "--ssh-only"])

        assert result.exit_code == 0, result.output
        assert "Valid" in result.output
        assert "2 hosts resolved" in result.output

    def test_missing_devices_are_listed(self, tmp_path, monkeypatch):
        monkeypatch.setattr(cli, "required_tools", lambda mode: [])
        path = tmp_path / "fio-config.yaml"
        path.write_text("vm:\n  hosts: [vm-1, vm-2]\nstorage:\n  devices:\n    vm-1: vdb\n")

        result = runner.invoke(app, ["check", "-c", str(path), "--ssh-only"])

        assert result.exit_code == 1
        assert "no device for: vm-2" in result.output

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "fio-config.yaml"
        path.write_text("fio:\n  runtime: 0\n")

        result = runner.invoke(app, ["check", "-c", str(path)])

        assert result.exit_code == 1
        assert "Invalid" in result.output
        assert "fio.runtime" in result.output

    def test_unknown_workload(self, fio_config):
        result = runner.invoke(app, ["check", "-c", str(fio_config), "-w", "sysbench"])
        assert result.exit_code == 1
        assert "Invalid workload" in result.output


def test_hosts_table(fio_config):
    result = runner.invoke(app, ["hosts", "-c", str(fio_config), "--ssh-only"])

    assert result.exit_code == 0, result.output
    assert "vm-1" in result.output
    assert "/dev/vdb" in result.output
    assert "ssh" in result.output


class TestCleanup:
    def test_dry_run_cleanup(self, fio_config):
        result = runner.invoke(
            app, ["cleanup", "-w", "fio", "-c", str(fio_config), "--dry-run", "--ssh-only"]
        )

        assert result.exit_code == 0, result.output
        assert "Cleanup completed" in result.output

    def test_cleanup_needs_no_devices(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("vm:\n  hosts: [vm-1]\n")

        result = runner.invoke(
            app, ["cleanup", "-w", "fio", "-c", str(path), "--dry-run", "--ssh-only"]
        )

        assert result.exit_code == 0, result.output

    def test_workload_is_required(self, fio_config):
        result = runner.invoke(app, ["cleanup", "-c", str(fio_config)])
        assert result.exit_code != 0


class TestMain:
    def test_usage_error_exits_1(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["fleetbench", "no-such-command"])
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code == 1

    def test_exit_code_is_propagated(self, fio_config, monkeypatch):
        monkeypatch.setattr(
            "sys.argv",
            ["fleetbench", "fio", "-c", str(fio_config), "--ssh-only", "--virtctl-only"],
        )
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code == 1

    def test_unknown_option_exits_1(self, fio_config, monkeypatch, capsys):
        monkeypatch.setattr("sys.argv", ["fleetbench", "fio", "-c", str(fio_config), "--bogus-flag"])
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "--bogus-flag" in captured.out + captured.err

    def test_successful_dry_run_exits_0(self, fio_config, monkeypatch):
        monkeypatch.setattr(
            "sys.argv", ["fleetbench", "fio", "-c", str(fio_config), "--dry-run", "--ssh-only"]
        )
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code in (0, None)
