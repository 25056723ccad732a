"""Summaries of collected FIO results."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd

from ..debug import debug_print

SUMMARY_FILENAME = "summary.csv"
SEED_RESULT = "write_dataset"


def _load_fio_json(path: Path) -> dict[str, Any] | None:
    """Load one FIO output file.

    FIO may print warnings ahead of the JSON document, so parsing starts at
    the first opening brace.
    """
    text = path.read_text(encoding="utf-8", errors="replace")
    start = text.find("{")
    if start < 0:
        return None
    try:
        data = json.loads(text[start:])
    except json.JSONDecodeError as e:
        debug_print(f"Skipping {path}: {e}")
        return None
    return data if isinstance(data, dict) else None


def _lat_mean_us(stats: dict[str, Any]) -> float | None:
    for key in ("lat_ns", "clat_ns"):
        mean = stats.get(key, {}).get("mean")
        if mean is not None:
            return float(mean) / 1000.0
    return None


def parse_fio_result(path: Path, host: str) -> list[dict[str, Any]]:
    """Return one row per job and direction (read/write) with any IO."""
    data = _load_fio_json(path)
    if not data:
        return []

    rows = []
    for job in data.get("jobs", []):
        for direction in ("read", "write"):
            stats = job.get(direction) or {}
            if not stats.get("io_bytes") and not stats.get("iops"):
                continue
            rows.append(
                {
                    "host": host,
                    "test": path.stem,
                    "job": job.get("jobname", ""),
                    "direction": direction,
                    "iops": float(stats.get("iops", 0.0)),
                    "bw_kib_s": float(stats.get("bw", 0.0)),
                    "lat_mean_us": _lat_mean_us(stats),
                }
            )
    return rows


def load_fio_results(results_dir: Path) -> pd.DataFrame:
    """Parse ``<results_dir>/<host>/*.json`` into one DataFrame."""
    rows: list[dict[str, Any]] = []
    for host_dir in sorted(p for p in Path(results_dir).iterdir() if p.is_dir()):
        for path in sorted(host_dir.glob("*.json")):
            rows.extend(parse_fio_result(path, host_dir.name))
    df = pd.DataFrame(rows)
    if not df.empty:
        df["lat_mean_us"] = pd.to_numeric(df["lat_mean_us"], errors="coerce")
    return df


def summary_table(df: pd.DataFrame) -> pd.DataFrame:
    """Per host and test: total IOPS and bandwidth, mean latency.

    The seed job that lays out the test file is left out.
    """
    if df.empty:
        return pd.DataFrame()

    df = df[df["test"] != SEED_RESULT]
    if df.empty:
        return pd.DataFrame()

    summary = (
        df.groupby(["test", "host", "direction"])
        .agg(iops=("iops", "sum"), bw_kib_s=("bw_kib_s", "sum"), lat_mean_us=("lat_mean_us", "mean"))
        .reset_index()
    )
    summary[["iops", "bw_kib_s", "lat_mean_us"]] = summary[
        ["iops", "bw_kib_s", "lat_mean_us"]
    ].round(1)
    return summary.sort_values(["test", "host", "direction"]).reset_index(drop=True)


def fleet_totals(summary: pd.DataFrame) -> pd.DataFrame:
    """Aggregate IOPS and bandwidth over all hosts, per test and direction."""
    if summary.empty:
        return pd.DataFrame()
    totals = (
        summary.groupby(["test", "direction"])
        .agg(
            hosts=("host", "nunique"),
            total_iops=("iops", "sum"),
            total_bw_kib_s=("bw_kib_s", "sum"),
            mean_lat_us=("lat_mean_us", "mean"),
        )
        .reset_index()
    )
    return totals.round(1)


def write_summary(results_dir: Path) -> pd.DataFrame:
    """Write ``summary.csv`` into ``results_dir`` and return the per-host summary.

    Nothing is written when there are no results; the returned frame is empty.
    """
    summary = summary_table(load_fio_results(results_dir))
    if not summary.empty:
        summary.to_csv(Path(results_dir) / SUMMARY_FILENAME, index=False)
    return summary
