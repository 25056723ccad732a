"""Tests for result collection."""

from __future__ import annotations

import io
import tarfile
from datetime import datetime

import pytest

from fleetbench.common.enums import ConnectionMode
from fleetbench.fleet.hosts import ResolvedHost
from fleetbench.infra.connection import CommandResult, ConnectionStrategy
from fleetbench.run.collector import (
    ResultCollector,
    archive_command,
    extract_archive,
    results_dir_name,
)
from fleetbench.run.fleet import FleetExecutor
from fleetbench.workloads.base import ResultSpec

from .conftest import FakeExecutor, write_archive

SPEC = ResultSpec(remote_dir="/root/fio-results", patterns=("*.json",), archive_name="fio-results.tar.gz")
HOSTS = (ResolvedHost("vm-1", False, "vdb", ordinal=1), ResolvedHost("vm-2", False, "vdb", ordinal=2))


def _collector(fake: FakeExecutor, dry_run: bool = False) -> ResultCollector:
    strategy = ConnectionStrategy(ConnectionMode.DIRECT_SSH, ssh_executor=fake, dry_run=dry_run)
    return ResultCollector(FleetExecutor(strategy, dry_run=dry_run), strategy)


class TestNaming:
    def test_results_dir_name(self):
        now = datetime(2024, 3, 5, 14, 7, 9)
        assert results_dir_name("fio", 3, None, now) == "fio-results-20240305-140709-machines_3"

    def test_results_dir_name_with_description(self):
        now = datetime(2024, 3, 5, 14, 7, 9)
        name = results_dir_name("mariadb", 2, "NVMe Gold Tier!", now)
        assert name == "mariadb-results-20240305-140709-nvme_gold_tier-machines_2"

    def test_archive_command(self):
        assert archive_command(SPEC) == "cd /root/fio-results && tar czf fio-results.tar.gz *.json"


class TestExtractArchive:
    def test_extracts_files(self, tmp_path):
        archive = tmp_path / "a.tar.gz"
        write_archive(archive, {"one.json": "{}", "two.json": "{}"})
        assert extract_archive(archive, tmp_path / "out") == ["one.json", "two.json"]
        assert (tmp_path / "out" / "one.json").read_text() == "{}"

    def test_rejects_path_escape(self, tmp_path):
        archive = tmp_path / "evil.tar.gz"
        write_archive(archive, {"../escape.json": "{}"})
        with pytest.raises(tarfile.TarError):
            extract_archive(archive, tmp_path / "out")
        assert not (tmp_path / "escape.json").exists()

    def test_rejects_symlinks(self, tmp_path):
        archive = tmp_path / "link.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            info = tarfile.TarInfo("link")
            info.type = tarfile.SYMTYPE
            info.linkname = "/etc/passwd"
            tar.addfile(info, io.BytesIO(b""))
        with pytest.raises(tarfile.TarError):
            extract_archive(archive, tmp_path / "out")


class TestResultCollector:
    def test_collects_into_per_host_directories(self, tmp_path):
        fake = FakeExecutor(archive_files={"fio-test-read-bs-4k.json": "{}"})
        report = _collector(fake).collect(HOSTS, SPEC, tmp_path / "results")

        assert report.succeeded
        assert report.file_count == 2
        for host in ("vm-1", "vm-2"):
            host_dir = tmp_path / "results" / host
            assert (host_dir / "fio-test-read-bs-4k.json").exists()
            assert not (host_dir / "fio-results.tar.gz").exists()
        assert {c for _, c in fake.calls} == {archive_command(SPEC)}
        assert {m for m, _, _ in fake.transfers} == {"copy"}

    def test_falls_back_to_streaming(self, tmp_path):
        fake = FakeExecutor(transfer_ok=False, archive_files={"a.json": "{}"})
        report = _collector(fake).collect(HOSTS, SPEC, tmp_path / "results")

        assert report.succeeded
        assert [h.method for h in report.hosts] == ["stream", "stream"]

    def test_both_methods_failing_reports_recovery_command(self, tmp_path):
        fake = FakeExecutor(transfer_ok=False, stream_ok=False)
        report = _collector(fake).collect(HOSTS, SPEC, tmp_path / "results")

        assert report.failed_hosts == ["vm-1", "vm-2"]
        entry = report.hosts[0]
        assert entry.recovery_command == (
            f"fake-copy vm-1:/root/fio-results/fio-results.tar.gz "
            f"{tmp_path / 'results' / 'vm-1' / 'fio-results.tar.gz'}"
        )
        assert "still available on vm-1" in entry.error

    def test_broken_archive_is_kept_and_reported(self, tmp_path):
        class GarbageExecutor(FakeExecutor):
            def transfer(self, host, remote_path, local_path, timeout=None):
                local_path.parent.mkdir(parents=True, exist_ok=True)
                local_path.write_bytes(b"not a tarball")
                return super().transfer(host, remote_path, local_path, timeout)

            def _copy(self, method, ok, host, remote_path, local_path):
                return CommandResult(host, method, True, 0)

        report = _collector(GarbageExecutor()).collect(HOSTS[:1], SPEC, tmp_path / "results")

        assert report.failed_hosts == ["vm-1"]
        assert "extraction failed" in report.hosts[0].error
        assert (tmp_path / "results" / "vm-1" / "fio-results.tar.gz").exists()

    def test_dry_run_copies_nothing(self, tmp_path, capsys):
        fake = FakeExecutor()
        report = _collector(fake, dry_run=True).collect(HOSTS, SPEC, tmp_path / "results")

        assert fake.calls == []
        assert fake.transfers == []
        assert report.succeeded
        assert not (tmp_path / "results").exists()
        assert capsys.readouterr().out.count("Would copy results") == 2
