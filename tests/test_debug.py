"""Tests for debug tracing of remote commands."""

from __future__ import annotations

import os

from fleetbench.debug import debug_log_command, debug_log_result, is_debug_enabled, set_debug
from fleetbench.infra.connection import SSHExecutor
from fleetbench.run.parallel_executor import ParallelExecutor, get_current_phase_name


def _result(success: bool = True, stdout: str = "", stderr: str = "", returncode: int = 0) -> dict:
    return {
        "success": success,
        "stdout": stdout,
        "stderr": stderr,
        "returncode": returncode,
        "elapsed_s": 1.25,
    }


class TestDebugFlag:
    def test_set_debug_exports_environment(self):
        set_debug(True)
        assert is_debug_enabled()
        assert os.environ["FLEETBENCH_DEBUG"] == "1"

        set_debug(False)
        assert "FLEETBENCH_DEBUG" not in os.environ

    def test_environment_enables_debug(self, monkeypatch):
        monkeypatch.setenv("FLEETBENCH_DEBUG", "yes")
        assert is_debug_enabled()


class TestCommandTracing:
    def test_silent_without_debug(self, capsys):
        debug_log_command("vm-1", ["ssh", "root@vm-1", "true"])
        debug_log_result("vm-1", _result())
        assert capsys.readouterr().out == ""

    def test_command_line_names_host_and_action(self, capsys):
        set_debug(True)
        debug_log_command("vm-1", ["scp", "root@vm-1:/r/a b.tgz", "/tmp/a.tgz"], action="copy", timeout=30)

        out = capsys.readouterr().out
        assert out.startswith("[vm-1] [DEBUG] copy (30s): scp ")
        assert "'root@vm-1:/r/a b.tgz'" in out

    def test_result_shows_exit_code_and_output_tail(self, capsys):
        set_debug(True)
        stderr = "\n".join(f"line {i}" for i in range(1, 6))
        debug_log_result("vm-2", _result(False, stderr=stderr, returncode=32), tail_lines=2)

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "[vm-2] [DEBUG] exec failed, exit 32 after 1.2s"
        assert lines[1:] == ["[vm-2] [DEBUG] stderr: line 4", "[vm-2] [DEBUG] stderr: line 5"]

    def test_phase_is_included_inside_a_parallel_phase(self, monkeypatch, capsys):
        set_debug(True)
        monkeypatch.setattr(
            "fleetbench.run.parallel_executor.get_current_phase_name", lambda: "Prepare storage [4/5]"
        )
        debug_log_command("vm-3", ["ssh", "root@vm-3", "mkfs.xfs -f /dev/vdb"])

        out = capsys.readouterr().out
        assert out.startswith("[vm-3] [DEBUG] Prepare storage [4/5]: exec: ssh root@vm-3 ")

    def test_executor_traces_each_call(self, capsys):
        set_debug(True)
        runner = lambda cmd, timeout=None: _result(stdout="Linux vm-1")  # noqa: E731
        SSHExecutor(runner=runner).execute("vm-1", "uname -a", timeout=10)

        out = capsys.readouterr().out
        assert "[vm-1] [DEBUG] exec (10s): ssh " in out
        assert "[vm-1] [DEBUG] exec ok, exit 0 after 1.2s" in out
        assert "[vm-1] [DEBUG] stdout: Linux vm-1" in out


def test_current_phase_name_is_visible_to_tasks():
    seen = {}

    def task():
        seen["phase"] = get_current_phase_name()
        return True

    ParallelExecutor(max_workers=1).execute_parallel({"vm-1": task}, "Seed data [1/1]: Writing")

    assert seen["phase"] == "Seed data [1/1]: Writing"
    assert get_current_phase_name() is None
