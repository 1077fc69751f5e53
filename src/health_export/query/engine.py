"""Query engine: parse -> filter -> group/aggregate -> sort -> paginate -> format.

Each call is a pure pipeline over the record sequence it is given;
nothing persists between calls.
"""

from __future__ import annotations

import functools
import math
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timedelta, tzinfo
from time import perf_counter
from typing import Any
from zoneinfo import ZoneInfo

from health_export.core.errors import QueryExecutionError
from health_export.core.logging import get_logger
from health_export.data.models import TIMESTAMP, Record, Value
from health_export.query.coercion import numeric_values, to_number
from health_export.query.formatting import format_rows
from health_export.query.models import (
    Aggregate,
    AggregateKind,
    ColumnExpr,
    Field,
    Operator,
    OrderBy,
    ParsedQuery,
    QueryFilter,
    QueryOptions,
    QueryResult,
    SortDirection,
    Star,
    TimeBucket,
    TimeUnit,
)
from health_export.query.parser import parse_query

logger = get_logger("query.engine")

Row = dict[str, Any]


def time_bucket(value: Any, unit: TimeUnit) -> str | None:
    """Canonical text for the day/hour/week/month containing ``value``."""
    if not isinstance(value, datetime):
        return None
    if unit == TimeUnit.DATE:
        return value.strftime("%Y-%m-%d")
    if unit == TimeUnit.HOUR:
        return value.strftime("%Y-%m-%d %H:00")
    if unit == TimeUnit.WEEK:
        # Weeks start on Sunday.
        start = value.date() - timedelta(days=(value.weekday() + 1) % 7)
        return start.strftime("%Y-%m-%d")
    return value.date().replace(day=1).strftime("%Y-%m-%d")


def evaluate_filter(row: Row | Record, flt: QueryFilter) -> bool:
    """Evaluate one condition against a row. Pure; unknown columns read as None."""
    value = _resolve_name(row, flt.column)
    op = flt.operator
    if op == Operator.EQ:
        return _strict_equal(value, flt.value)
    if op == Operator.NE:
        return not _strict_equal(value, flt.value)
    if op in (Operator.GT, Operator.LT, Operator.GE, Operator.LE):
        left, right = to_number(value), to_number(flt.value)
        if op == Operator.GT:
            return left > right
        if op == Operator.LT:
            return left < right
        if op == Operator.GE:
            return left >= right
        return left <= right
    if op == Operator.LIKE:
        if value is None:
            return False
        pattern = str(flt.value).strip("%").lower()
        return pattern in _text(value).lower()
    if op == Operator.IN:
        return any(_strict_equal(value, item) for item in flt.value or ())
    if op == Operator.IS_NULL:
        return value is None
    if op == Operator.IS_NOT_NULL:
        return value is not None
    return False


def _strict_equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    left_is_num = isinstance(left, int | float) and not isinstance(left, bool)
    right_is_num = isinstance(right, int | float) and not isinstance(right, bool)
    if left_is_num != right_is_num:
        return False
    if isinstance(left, datetime) != isinstance(right, datetime):
        return False
    return bool(left == right)


def _text(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


_BUCKET_NAMES = {f"{unit}({TIMESTAMP})".upper(): unit for unit in TimeUnit}


def _resolve_name(row: Row | Record, name: str) -> Value:
    if name in row:
        return row.get(name)
    unit = _BUCKET_NAMES.get(name.upper())
    if unit is not None:
        return time_bucket(row.get(TIMESTAMP), unit)
    return row.get(name)


def _expr_value(row: Row | Record, expr: ColumnExpr) -> Value:
    if isinstance(expr, TimeBucket):
        return time_bucket(_resolve_name(row, expr.column), expr.unit)
    if isinstance(expr, Field):
        return _resolve_name(row, expr.name)
    if isinstance(expr, Aggregate):
        return _resolve_name(row, expr.label)
    return None


def aggregate(kind: AggregateKind, field: str, group: Sequence[Record]) -> int | float:
    """Reduce one field over a group. Empty numeric sets yield 0."""
    if kind == AggregateKind.COUNT:
        if field == "*":
            return len(group)
        return sum(1 for record in group if record.get(field) is not None)
    raw = [record.get(field) for record in group]
    if kind == AggregateKind.SUM:
        if all(isinstance(v, int) and not isinstance(v, bool) for v in raw if v is not None):
            return sum(v for v in raw if v is not None)
        return math.fsum(numeric_values(raw))
    values = numeric_values(raw)
    if not values:
        return 0
    if kind == AggregateKind.AVG:
        return math.fsum(values) / len(values)
    if kind == AggregateKind.MIN:
        return _natural(min(values))
    return _natural(max(values))


def _natural(value: float) -> int | float:
    return int(value) if value.is_integer() else value


class QueryEngine:
    """Run SQL-subset queries against in-memory record sequences."""

    def __init__(self, tz: tzinfo | None = None) -> None:
        self.tz = tz or ZoneInfo("UTC")

    def parse(self, query: str) -> ParsedQuery:
        return parse_query(query, self.tz)

    def execute_query(
        self,
        records: Sequence[Record],
        query: str,
        options: QueryOptions | None = None,
    ) -> QueryResult:
        """Execute ``query`` over ``records``.

        Raises:
            InvalidQueryError: the query text is malformed.
            QueryExecutionError: anything else failed during evaluation.
        """
        options = options or QueryOptions()
        started = perf_counter()
        try:
            parsed = self.parse(query)
            rows = self.run(records, parsed)
            columns, out_rows = format_rows(rows, parsed.select, options.format)
        except QueryExecutionError:
            # InvalidQueryError included.
            raise
        except Exception as exc:
            raise QueryExecutionError(
                f"Query execution failed: {exc}", details={"query": query}
            ) from exc

        elapsed_ms = (perf_counter() - started) * 1000
        logger.debug(
            "query_executed",
            source=parsed.source,
            input_records=len(records),
            rows=len(out_rows),
            elapsed_ms=round(elapsed_ms, 2),
        )
        return QueryResult(
            columns=columns,
            rows=out_rows,
            row_count=len(out_rows),
            execution_time_ms=elapsed_ms,
        )

    def run(self, records: Sequence[Record], parsed: ParsedQuery) -> list[Row]:
        """Apply filter, grouping, ordering and pagination; returns rows keyed by label."""
        selected = self.apply_filters(records, parsed.where)
        if parsed.is_grouped:
            rows = self.apply_group_by(selected, parsed.group_by, parsed.select)
        else:
            rows = [self._project(record, parsed.select) for record in selected]
        if parsed.order_by:
            rows = self.apply_order_by(rows, parsed.order_by, parsed.select)
        if parsed.limit is not None:
            offset = parsed.offset or 0
            rows = rows[offset : offset + parsed.limit]
        return rows

    @staticmethod
    def apply_filters(records: Sequence[Record], filters: Sequence[QueryFilter]) -> list[Record]:
        # OR is parsed but evaluated as AND.
        return [r for r in records if all(evaluate_filter(r, f) for f in filters)]

    @staticmethod
    def _project(record: Record, select: Sequence[ColumnExpr]) -> Row:
        row: Row = record.as_dict()
        for expr in select:
            if isinstance(expr, Star):
                continue
            if isinstance(expr, Field) and expr.alias is None:
                continue
            row[expr.label] = _expr_value(record, expr)
        return row

    @staticmethod
    def apply_group_by(
        records: Sequence[Record],
        group_by: Sequence[ColumnExpr],
        select: Sequence[ColumnExpr],
    ) -> list[Row]:
        """Bucket records by the group key and evaluate SELECT once per bucket.

        Without GROUP BY the whole (non-empty) sequence is one bucket.
        """
        groups: dict[tuple[Any, ...], list[Record]] = {}
        for record in records:
            key = tuple(_expr_value(record, expr) for expr in group_by)
            groups.setdefault(key, []).append(record)

        rows: list[Row] = []
        for group in groups.values():
            first = group[0]
            row: Row = {TIMESTAMP: first.timestamp}
            for expr in select:
                if isinstance(expr, Star):
                    row.update(first.as_dict())
                elif isinstance(expr, Aggregate):
                    row[expr.label] = aggregate(expr.kind, expr.field, group)
                else:
                    row[expr.label] = _expr_value(first, expr)
            rows.append(row)
        return rows

    @staticmethod
    def apply_order_by(
        rows: list[Row],
        order_by: Sequence[OrderBy],
        select: Sequence[ColumnExpr] = (),
    ) -> list[Row]:
        keys = [(_selected(item.expr, select), item.direction) for item in order_by]

        def compare(a: Row, b: Row) -> int:
            for expr, direction in keys:
                left, right = _order_value(a, expr), _order_value(b, expr)
                if left is None or right is None:
                    # Nulls lead in both directions.
                    result = (left is not None) - (right is not None)
                    if result != 0:
                        return result
                    continue
                result = _compare_values(left, right)
                if result != 0:
                    return -result if direction == SortDirection.DESC else result
            return 0

        return sorted(rows, key=functools.cmp_to_key(compare))


def _selected(expr: ColumnExpr, select: Sequence[ColumnExpr]) -> ColumnExpr:
    """The SELECT column ``expr`` refers to, so aliased outputs sort by their label."""
    if isinstance(expr, Star):
        return expr
    bare = replace(expr, alias=None)
    for column in select:
        if not isinstance(column, Star) and replace(column, alias=None) == bare:
            return column
    return expr


def _order_value(row: Row, expr: ColumnExpr) -> Value:
    if expr.label in row:
        return row[expr.label]
    if expr.expression in row:
        return row[expr.expression]
    return _expr_value(row, expr)


def _compare_values(a: Any, b: Any) -> int:
    try:
        if a < b:
            return -1
        if a > b:
            return 1
        return 0
    except TypeError:
        # Mixed types order by their text form.
        sa, sb = _text(a), _text(b)
        return (sa > sb) - (sa < sb)
