"""Result shaping for the json, csv and summary output formats."""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from health_export.data.models import TIMESTAMP
from health_export.query.coercion import numeric_values
from health_export.query.models import ColumnExpr, OutputFormat, Star

CSV_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_columns(rows: Sequence[dict[str, Any]], select: Sequence[ColumnExpr]) -> list[str]:
    """Output column names: the select labels, or for ``*`` the timestamp plus every observed key."""
    if any(isinstance(expr, Star) for expr in select):
        observed = {key for row in rows for key in row if key != TIMESTAMP}
        return [TIMESTAMP, *sorted(observed)]
    return [expr.label for expr in select]


def json_cell(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime(CSV_TIMESTAMP_FORMAT)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def summarize(rows: Sequence[dict[str, Any]], columns: Sequence[str]) -> dict[str, dict[str, Any]]:
    """Per-column count/sum/avg/min/max over numeric values; columns without any are omitted."""
    summary: dict[str, dict[str, Any]] = {}
    for column in columns:
        if column == TIMESTAMP:
            continue
        values = numeric_values(row.get(column) for row in rows)
        if not values:
            continue
        total = math.fsum(values)
        summary[column] = {
            "count": len(values),
            "sum": total,
            "avg": total / len(values),
            "min": min(values),
            "max": max(values),
        }
    return summary


def format_rows(
    rows: Sequence[dict[str, Any]],
    select: Sequence[ColumnExpr],
    fmt: OutputFormat = OutputFormat.JSON,
) -> tuple[list[str], list[list[Any]]]:
    """Shape evaluated rows into ``(columns, rows)`` for the requested format."""
    if not rows:
        return [], []

    columns = resolve_columns(rows, select)
    if fmt == OutputFormat.CSV:
        return columns, [[csv_cell(row.get(col)) for col in columns] for row in rows]
    if fmt == OutputFormat.SUMMARY:
        summary = summarize(rows, columns)
        return list(summary), [list(summary.values())]
    return columns, [[json_cell(row.get(col)) for col in columns] for row in rows]
