"""Tests for FIO result summaries."""

from __future__ import annotations

import pandas as pd

from fleetbench.report.summary import (
    SUMMARY_FILENAME,
    fleet_totals,
    load_fio_results,
    parse_fio_result,
    summary_table,
    write_summary,
)

from .conftest import fio_json


def _results(tmp_path):
    (tmp_path / "vm-1").mkdir()
    (tmp_path / "vm-2").mkdir()
    (tmp_path / "vm-1" / "fio-test-randread-bs-4k.json").write_text(fio_json(read_iops=100.0))
    (tmp_path / "vm-2" / "fio-test-randread-bs-4k.json").write_text(fio_json(read_iops=300.0))
    (tmp_path / "vm-1" / "write_dataset.json").write_text(fio_json(read_iops=0.0, write_iops=50.0))
    return tmp_path


class TestParseFioResult:
    def test_rows_only_for_directions_with_io(self, tmp_path):
        path = tmp_path / "fio-test-randrw-bs-4k.json"
        path.write_text(fio_json(read_iops=100.0, write_iops=20.0))

        rows = parse_fio_result(path, "vm-1")

        assert [r["direction"] for r in rows] == ["read", "write"]
        assert rows[0]["test"] == "fio-test-randrw-bs-4k"
        assert rows[0]["iops"] == 100.0
        assert rows[0]["bw_kib_s"] == 400.0
        assert rows[0]["lat_mean_us"] == 2.0
        # write stats only carry completion latency
        assert rows[1]["lat_mean_us"] == 5.0

    def test_leading_warnings_are_skipped(self, tmp_path):
        path = tmp_path / "fio-test-read-bs-1m.json"
        path.write_text("fio: file hash not empty on exit\n" + fio_json())
        assert len(parse_fio_result(path, "vm-1")) == 1

    def test_garbage_yields_no_rows(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("fio: failed to open file")
        assert parse_fio_result(path, "vm-1") == []

        path.write_text("{ not json")
        assert parse_fio_result(path, "vm-1") == []


class TestSummaryTable:
    def test_per_host_rows_without_seed_job(self, tmp_path):
        df = load_fio_results(_results(tmp_path))
        assert set(df["test"]) == {"fio-test-randread-bs-4k", "write_dataset"}

        summary = summary_table(df)

        assert list(summary["host"]) == ["vm-1", "vm-2"]
        assert list(summary["iops"]) == [100.0, 300.0]
        assert "write_dataset" not in set(summary["test"])

    def test_empty_frames(self):
        assert summary_table(pd.DataFrame()).empty
        assert fleet_totals(pd.DataFrame()).empty

    def test_fleet_totals(self, tmp_path):
        totals = fleet_totals(summary_table(load_fio_results(_results(tmp_path))))

        assert len(totals) == 1
        row = totals.iloc[0]
        assert row["test"] == "fio-test-randread-bs-4k"
        assert row["hosts"] == 2
        assert row["total_iops"] == 400.0
        assert row["total_bw_kib_s"] == 1600.0
        assert row["mean_lat_us"] == 2.0


class TestWriteSummary:
    def test_writes_csv(self, tmp_path):
        summary = write_summary(_results(tmp_path))

        assert list(summary["host"]) == ["vm-1", "vm-2"]
        written = pd.read_csv(tmp_path / SUMMARY_FILENAME)
        assert list(written.columns) == ["test", "host", "direction", "iops", "bw_kib_s", "lat_mean_us"]
        assert len(written) == 2

    def test_nothing_to_summarise(self, tmp_path):
        (tmp_path / "vm-1").mkdir()
        assert write_summary(tmp_path).empty
        assert not (tmp_path / SUMMARY_FILENAME).exists()
