from __future__ import annotations

from datetime import UTC, datetime

from conftest import rec

from health_export.query.engine import QueryEngine
from health_export.query.formatting import csv_cell, format_rows, resolve_columns
from health_export.query.models import Field, OutputFormat, QueryOptions, Star


def _records():
    return [
        rec("2025-01-15T08:00:00", b=2.0, a="x"),
        rec("2025-01-15T09:00:00", b=4, c=None),
    ]


def test_star_columns_are_timestamp_then_sorted_union() -> None:
    rows = [r.as_dict() for r in _records()]
    assert resolve_columns(rows, [Star()]) == ["timestamp", "a", "b", "c"]
    assert resolve_columns(rows, [Field("b"), Field("a", alias="label")]) == ["b", "label"]


def test_json_format_renders_timestamps_and_passes_values() -> None:
    result = QueryEngine().execute_query(_records(), "SELECT * FROM t")
    assert result.columns == ["timestamp", "a", "b", "c"]
    assert result.rows == [
        ["2025-01-15T08:00:00+00:00", "x", 2.0, None],
        ["2025-01-15T09:00:00+00:00", None, 4, None],
    ]
    recovered = datetime.fromisoformat(result.rows[0][0])
    assert recovered == datetime(2025, 1, 15, 8, tzinfo=UTC)


def test_csv_format_renders_text_cells() -> None:
    result = QueryEngine().execute_query(
        _records(), "SELECT * FROM t", QueryOptions(format=OutputFormat.CSV)
    )
    assert result.rows == [
        ["2025-01-15 08:00:00", "x", "2", ""],
        ["2025-01-15 09:00:00", "", "4", ""],
    ]


def test_csv_cell() -> None:
    assert csv_cell(None) == ""
    assert csv_cell(2.5) == "2.5"
    assert csv_cell(3.0) == "3"
    assert csv_cell("a") == "a"


def test_summary_format_omits_non_numeric_columns() -> None:
    result = QueryEngine().execute_query(
        _records(), "SELECT * FROM t", QueryOptions(format=OutputFormat.SUMMARY)
    )
    assert result.columns == ["b"]
    assert result.row_count == 1
    assert result.rows == [[{"count": 2, "sum": 6.0, "avg": 3.0, "min": 2.0, "max": 4.0}]]


def test_format_rows_empty() -> None:
    assert format_rows([], [Star()], OutputFormat.SUMMARY) == ([], [])
