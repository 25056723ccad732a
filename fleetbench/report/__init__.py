"""Result summaries."""

from .summary import fleet_totals, load_fio_results, summary_table, write_summary

__all__ = ["fleet_totals", "load_fio_results", "summary_table", "write_summary"]
