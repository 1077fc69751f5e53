"""Report and metric services built on the store and the query engine."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from enum import StrEnum
from typing import Any

import pandas as pd

from health_export.catalog import STEP_COUNT, describe_metric
from health_export.core.logging import get_logger
from health_export.data.models import TIMESTAMP, DateRange, Record
from health_export.data.parsing import parse_timestamp
from health_export.data.store import HealthDataStore
from health_export.query.coercion import numeric_values, to_number
from health_export.query.engine import QueryEngine
from health_export.query.models import OutputFormat, QueryOptions, QueryResult

logger = get_logger("reports")

LOCAL_TIME_FORMAT = "%m/%d/%Y, %I:%M:%S %p"


class ReportType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class Aggregation(StrEnum):
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT = "count"


@dataclass(frozen=True)
class MetricSummary:
    count: int
    total: float
    average: float
    min: float
    max: float

    def to_dict(self) -> dict[str, float | int]:
        return {
            "count": self.count,
            "total": self.total,
            "average": self.average,
            "min": self.min,
            "max": self.max,
        }


@dataclass(frozen=True)
class HealthReport:
    report_type: ReportType
    date_range: DateRange
    metrics: list[str]
    data: list[dict[str, Any]]
    summary: dict[str, MetricSummary] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reportType": str(self.report_type),
            "dateRange": self.date_range.to_dict(),
            "metrics": list(self.metrics),
            "data": self.data,
            "summary": {name: s.to_dict() for name, s in self.summary.items()},
        }


def _start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _end_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def parse_range(start: str, end: str, tz: tzinfo) -> DateRange:
    """Build a range from user text.

    ``YYYY-MM-DD`` parses as midnight. When start and end are the same
    date-only string the end is widened to the last instant of that day.
    """
    start_at = parse_timestamp(start.strip(), tz)
    end_at = parse_timestamp(end.strip(), tz)
    if start.strip() == end.strip() and "T" not in start:
        end_at = _end_of_day(start_at.date(), tz)
    return DateRange(start=start_at, end=end_at)


def report_range(
    report_type: ReportType | str,
    now: datetime,
    start: str | None = None,
    end: str | None = None,
    tz: tzinfo | None = None,
) -> DateRange:
    """Date range covered by a report of the given type, relative to ``now``."""
    tz = tz or now.tzinfo
    if tz is None:
        raise ValueError("now must be timezone-aware when no tz is given")
    local_now = now.astimezone(tz)
    try:
        kind = ReportType(report_type)
    except ValueError as exc:
        raise ValueError(f"Invalid report_type: {report_type}") from exc

    today_end = _end_of_day(local_now.date(), tz)
    if kind == ReportType.DAILY:
        return DateRange(_start_of_day(local_now.date(), tz), today_end)
    if kind == ReportType.WEEKLY:
        return DateRange(_start_of_day(local_now.date() - timedelta(weeks=1), tz), today_end)
    if kind == ReportType.MONTHLY:
        month_ago = (pd.Timestamp(local_now.date()) - pd.DateOffset(months=1)).date()
        return DateRange(_start_of_day(month_ago, tz), today_end)
    if not start or not end:
        raise ValueError("Custom reports require start and end dates")
    return DateRange(parse_timestamp(start, tz), parse_timestamp(end, tz))


def summarize_values(values: Iterable[Any]) -> MetricSummary | None:
    """Statistics over the numeric values; None when there are none."""
    numbers = numeric_values(values)
    if not numbers:
        return None
    total = sum(numbers)
    return MetricSummary(
        count=len(numbers),
        total=total,
        average=total / len(numbers),
        min=min(numbers),
        max=max(numbers),
    )


def _project(record: Record, metrics: Sequence[str]) -> dict[str, Any]:
    row: dict[str, Any] = {TIMESTAMP: record.timestamp}
    for metric in metrics:
        value = record.values.get(metric)
        if value is not None:
            row[metric] = value
    return row


def build_report(
    store: HealthDataStore,
    report_type: ReportType | str,
    start: str | None = None,
    end: str | None = None,
    include_metrics: Sequence[str] | None = None,
    now: datetime | None = None,
) -> HealthReport:
    """Read the report's range and summarise every requested metric."""
    now = now or datetime.now(store.zone)
    date_range = report_range(report_type, now, start, end, tz=store.zone)
    records = store.get_data_in_range(date_range)

    if include_metrics:
        metrics = list(include_metrics)
        data = [_project(record, metrics) for record in records]
    else:
        # Metric list follows the first record's columns.
        metrics = list(records[0].values) if records else []
        data = [record.as_dict() for record in records]

    summary: dict[str, MetricSummary] = {}
    for metric in metrics:
        stats = summarize_values(row.get(metric) for row in data)
        if stats is not None:
            summary[metric] = stats

    logger.info(
        "report_built",
        report_type=str(report_type),
        records=len(data),
        metrics=len(metrics),
    )
    return HealthReport(
        report_type=ReportType(report_type),
        date_range=date_range,
        metrics=metrics,
        data=data,
        summary=summary,
    )


def aggregate_values(values: Iterable[Any], aggregation: Aggregation | str) -> float | int:
    """Reduce metric values; empty inputs give 0."""
    try:
        kind = Aggregation(aggregation)
    except ValueError as exc:
        raise ValueError(f"Invalid aggregation type: {aggregation}") from exc
    numbers = numeric_values(values)
    if kind == Aggregation.COUNT:
        return len(numbers)
    if kind == Aggregation.SUM:
        return sum(numbers)
    if not numbers:
        return 0
    if kind == Aggregation.AVG:
        return sum(numbers) / len(numbers)
    if kind == Aggregation.MIN:
        return min(numbers)
    return max(numbers)


def local_time(ts: datetime, tz: tzinfo) -> str:
    return ts.astimezone(tz).strftime(LOCAL_TIME_FORMAT)


def query_metric(
    store: HealthDataStore,
    metric_name: str,
    start: str | None = None,
    end: str | None = None,
    aggregation: Aggregation | str | None = None,
) -> dict[str, Any]:
    """Non-null samples of one metric, optionally reduced to a single value.

    Without both ``start`` and ``end`` every loadable file is scanned.
    """
    if not metric_name:
        raise ValueError("metric_name is required")

    date_range: DateRange | None = None
    if start and end:
        date_range = parse_range(start, end, store.zone)
        records = store.get_data_in_range(date_range)
    else:
        records = [r for parsed in store.load_all_files() for r in parsed.records]

    samples = [
        {
            TIMESTAMP: record.timestamp,
            "localTime": local_time(record.timestamp, store.zone),
            "value": record.values[metric_name],
        }
        for record in records
        if record.values.get(metric_name) is not None
    ]

    data: Any = samples
    if aggregation:
        data = {"value": aggregate_values((s["value"] for s in samples), aggregation)}

    return {
        "metric": metric_name,
        "aggregation": str(aggregation) if aggregation else None,
        "data": data,
        "count": len(samples),
        "dateRange": date_range.to_dict() if date_range else None,
    }


def get_metrics(
    store: HealthDataStore,
    start: str,
    end: str,
    metrics: Sequence[str] | None = None,
) -> dict[str, Any]:
    """Records in a range, optionally restricted to the named metrics."""
    if not start or not end:
        raise ValueError("start and end dates are required")
    date_range = parse_range(start, end, store.zone)
    records = store.get_data_in_range(date_range)

    data: list[dict[str, Any]] = []
    for record in records:
        row = _project(record, metrics) if metrics else record.as_dict()
        row["localTime"] = local_time(record.timestamp, store.zone)
        data.append(row)

    return {
        "dateRange": {"start": start, "end": end},
        "dataPoints": len(data),
        "availableMetrics": store.get_available_metrics(),
        "requestedMetrics": list(metrics) if metrics else "all",
        "data": data,
    }


def steps_for_date(records: Iterable[Record], day: date, tz: tzinfo) -> float:
    """Total step count recorded on one calendar day in ``tz``."""
    start = _start_of_day(day, tz)
    end = _start_of_day(day + timedelta(days=1), tz)
    total = 0.0
    for record in records:
        if not start <= record.timestamp < end:
            continue
        value = record.values.get(STEP_COUNT)
        if value is None:
            continue
        number = to_number(value)
        if not math.isnan(number):
            total += number
    return total


def schema_overview(store: HealthDataStore, sample_size: int = 5) -> dict[str, Any]:
    """Available metrics with metadata, overall date range, samples and cache state."""
    date_range = store.get_date_range()
    samples = store.get_sample_data(STEP_COUNT, sample_size)
    return {
        "availableMetrics": [describe_metric(m).to_dict() for m in store.get_available_metrics()],
        "dateRange": date_range.to_dict() if date_range else None,
        "sampleData": {STEP_COUNT: [s.to_dict() for s in samples]},
        "fileCount": len(store.discover_files()),
        "cacheStats": store.get_cache_stats().to_dict(),
    }


def run_query(
    store: HealthDataStore,
    engine: QueryEngine,
    query: str,
    fmt: OutputFormat | str = OutputFormat.JSON,
) -> QueryResult:
    """Run a query over every loadable record, deduplicated by timestamp."""
    by_timestamp: dict[datetime, Record] = {}
    for parsed in store.load_all_files():
        for record in parsed.records:
            by_timestamp[record.timestamp] = record
    records = sorted(by_timestamp.values(), key=lambda r: r.timestamp)
    return engine.execute_query(records, query, QueryOptions(format=OutputFormat(fmt)))
