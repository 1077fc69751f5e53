"""Structured query model."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from health_export.data.models import TIMESTAMP


class AggregateKind(StrEnum):
    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"
    COUNT = "COUNT"


class TimeUnit(StrEnum):
    """Virtual time buckets computed from the record timestamp."""

    DATE = "DATE"
    HOUR = "HOUR"
    WEEK = "WEEK"
    MONTH = "MONTH"


class Operator(StrEnum):
    EQ = "="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    LIKE = "LIKE"
    IN = "IN"
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"


class SortDirection(StrEnum):
    ASC = "ASC"
    DESC = "DESC"


class OutputFormat(StrEnum):
    JSON = "json"
    CSV = "csv"
    SUMMARY = "summary"


@dataclass(frozen=True)
class Star:
    alias: str | None = None

    @property
    def expression(self) -> str:
        return "*"

    @property
    def label(self) -> str:
        return "*"


@dataclass(frozen=True)
class Field:
    name: str
    alias: str | None = None

    @property
    def expression(self) -> str:
        return self.name

    @property
    def label(self) -> str:
        return self.alias or self.name


@dataclass(frozen=True)
class Aggregate:
    kind: AggregateKind
    field: str
    alias: str | None = None

    @property
    def expression(self) -> str:
        return f"{self.kind}({self.field})"

    @property
    def label(self) -> str:
        return self.alias or self.expression


@dataclass(frozen=True)
class TimeBucket:
    unit: TimeUnit
    column: str = TIMESTAMP
    alias: str | None = None

    @property
    def expression(self) -> str:
        return f"{self.unit}({self.column})"

    @property
    def label(self) -> str:
        return self.alias or self.expression


ColumnExpr = Star | Field | Aggregate | TimeBucket


@dataclass(frozen=True)
class QueryFilter:
    column: str
    operator: Operator
    value: Any = None


@dataclass(frozen=True)
class OrderBy:
    expr: ColumnExpr
    direction: SortDirection = SortDirection.ASC

    @property
    def column(self) -> str:
        return self.expr.label


@dataclass(frozen=True)
class ParsedQuery:
    select: tuple[ColumnExpr, ...]
    source: str
    where: tuple[QueryFilter, ...] = ()
    group_by: tuple[ColumnExpr, ...] = ()
    order_by: tuple[OrderBy, ...] = ()
    limit: int | None = None
    offset: int | None = None

    @property
    def selects_all(self) -> bool:
        return any(isinstance(col, Star) for col in self.select)

    @property
    def has_aggregates(self) -> bool:
        return any(isinstance(col, Aggregate) for col in self.select)

    @property
    def is_grouped(self) -> bool:
        return bool(self.group_by) or self.has_aggregates


@dataclass(frozen=True)
class QueryOptions:
    format: OutputFormat = OutputFormat.JSON


@dataclass(frozen=True)
class QueryResult:
    columns: list[str]
    rows: list[list[Any]]
    row_count: int
    execution_time_ms: float = 0.0

    @property
    def execution_time(self) -> str:
        return f"{self.execution_time_ms:.0f}ms"

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": list(self.columns),
            "rows": [list(row) for row in self.rows],
            "metadata": {
                "rowCount": self.row_count,
                "executionTime": self.execution_time,
            },
        }
