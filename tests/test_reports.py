from __future__ import annotations

from datetime import UTC, date, datetime, time

import pytest
from conftest import rec

from health_export.catalog import HEALTH_METRICS, STEP_COUNT, describe_metric
from health_export.data.store import HealthDataStore
from health_export.query.engine import QueryEngine
from health_export.query.models import OutputFormat
from health_export.reports import (
    Aggregation,
    ReportType,
    aggregate_values,
    build_report,
    get_metrics,
    parse_range,
    query_metric,
    report_range,
    run_query,
    schema_overview,
    steps_for_date,
    summarize_values,
)

NOW = datetime(2025, 3, 31, 15, 30, tzinfo=UTC)


class TestReportRange:
    """Ranges are closed and end at the last instant of today."""

    def test_daily(self) -> None:
        r = report_range("daily", NOW)
        assert r.start == datetime(2025, 3, 31, tzinfo=UTC)
        assert r.end == datetime.combine(date(2025, 3, 31), time.max, tzinfo=UTC)

    def test_weekly(self) -> None:
        assert report_range(ReportType.WEEKLY, NOW).start == datetime(2025, 3, 24, tzinfo=UTC)

    def test_monthly_clamps_to_month_end(self) -> None:
        assert report_range("monthly", NOW).start == datetime(2025, 2, 28, tzinfo=UTC)

    def test_custom(self) -> None:
        r = report_range("custom", NOW, "2025-01-01", "2025-01-31")
        assert (r.start, r.end) == (datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 1, 31, tzinfo=UTC))

    def test_custom_requires_dates(self) -> None:
        with pytest.raises(ValueError, match="Custom reports"):
            report_range("custom", NOW, "2025-01-01")

    def test_invalid_type(self) -> None:
        with pytest.raises(ValueError, match="Invalid report_type"):
            report_range("yearly", NOW)


def test_parse_range_widens_single_day() -> None:
    r = parse_range("2025-01-15", "2025-01-15", UTC)
    assert r.start == datetime(2025, 1, 15, tzinfo=UTC)
    assert r.end == datetime.combine(date(2025, 1, 15), time.max, tzinfo=UTC)
    timed = parse_range("2025-01-15T08:00:00", "2025-01-15T08:00:00", UTC)
    assert timed.start == timed.end


def test_build_report_with_metrics(store: HealthDataStore) -> None:
    report = build_report(
        store, "custom", "2025-01-15", "2025-01-16T23:59:59", include_metrics=[STEP_COUNT]
    )
    assert report.metrics == [STEP_COUNT]
    assert len(report.data) == 4
    assert report.data[-1] == {"timestamp": datetime(2025, 1, 16, 18, 45, tzinfo=UTC)}
    summary = report.summary[STEP_COUNT]
    assert (summary.count, summary.total, summary.min, summary.max) == (3, 18000, 5000, 7000)
    assert summary.average == 6000
    payload = report.to_dict()
    assert payload["reportType"] == "custom"
    assert payload["summary"][STEP_COUNT]["count"] == 3


def test_build_report_all_metrics(store: HealthDataStore) -> None:
    report = build_report(store, "custom", "2025-01-15", "2025-01-16T23:59:59")
    assert report.metrics == ["Active Energy (kcal)", STEP_COUNT, "Heart Rate [Avg] (bpm)"]
    assert report.summary["Active Energy (kcal)"].count == 3
    assert report.summary["Active Energy (kcal)"].total == pytest.approx(34.75)


def test_build_report_daily_without_data(store: HealthDataStore) -> None:
    report = build_report(store, "daily", now=NOW)
    assert report.data == []
    assert report.metrics == []
    assert report.summary == {}


def test_query_metric_all_files(store: HealthDataStore) -> None:
    payload = query_metric(store, STEP_COUNT)
    assert payload["count"] == 4
    assert [s["value"] for s in payload["data"]] == [5000, 200, 6000, 7000]
    assert payload["dateRange"] is None
    assert payload["data"][0]["localTime"] == "01/15/2025, 08:00:00 AM"


def test_query_metric_single_day_aggregated(store: HealthDataStore) -> None:
    payload = query_metric(store, STEP_COUNT, "2025-01-15", "2025-01-15", aggregation="sum")
    assert payload["count"] == 2
    assert payload["data"] == {"value": 11000}
    assert payload["aggregation"] == "sum"
    assert payload["dateRange"]["end"].startswith("2025-01-15T23:59:59")


def test_query_metric_requires_name(store: HealthDataStore) -> None:
    with pytest.raises(ValueError):
        query_metric(store, "")


@pytest.mark.parametrize(
    ("aggregation", "expected"),
    [("sum", 6), ("avg", 2), ("min", 1), ("max", 3), ("count", 3)],
)
def test_aggregate_values(aggregation: str, expected: float) -> None:
    assert aggregate_values([1, "2", 3, None, "n/a"], aggregation) == expected


def test_aggregate_values_empty_and_invalid() -> None:
    assert aggregate_values([], Aggregation.AVG) == 0
    assert aggregate_values([], Aggregation.MAX) == 0
    with pytest.raises(ValueError, match="Invalid aggregation"):
        aggregate_values([1], "median")


def test_summarize_values_without_numbers() -> None:
    assert summarize_values([None, "Asleep"]) is None


def test_get_metrics_projection(store: HealthDataStore) -> None:
    payload = get_metrics(store, "2025-01-16", "2025-01-16", ["Heart Rate [Avg] (bpm)"])
    assert payload["dataPoints"] == 2
    assert payload["requestedMetrics"] == ["Heart Rate [Avg] (bpm)"]
    assert "Heart Rate [Avg] (bpm)" not in payload["data"][0]
    assert payload["data"][1]["Heart Rate [Avg] (bpm)"] == 80
    assert payload["data"][1]["localTime"] == "01/16/2025, 06:45:00 PM"
    assert payload["availableMetrics"] == store.get_available_metrics()


def test_get_metrics_all(store: HealthDataStore) -> None:
    payload = get_metrics(store, "2025-01-15", "2025-01-15")
    assert payload["requestedMetrics"] == "all"
    assert payload["dataPoints"] == 2
    assert payload["data"][0]["Step Count (steps)"] == 5000


def test_steps_for_date() -> None:
    records = [
        rec("2025-01-14T23:59:59", **{STEP_COUNT: 1}),
        rec("2025-01-15T00:00:00", **{STEP_COUNT: 10}),
        rec("2025-01-15T12:00:00", **{STEP_COUNT: "20"}),
        rec("2025-01-15T13:00:00", **{STEP_COUNT: None}),
        rec("2025-01-16T00:00:00", **{STEP_COUNT: 100}),
    ]
    assert steps_for_date(records, date(2025, 1, 15), UTC) == 30


def test_schema_overview(store: HealthDataStore) -> None:
    schema = schema_overview(store)
    names = [m["name"] for m in schema["availableMetrics"]]
    assert names == store.get_available_metrics()
    steps_entry = next(m for m in schema["availableMetrics"] if m["name"] == STEP_COUNT)
    assert steps_entry["unit"] == "steps"
    assert schema["fileCount"] == 2
    assert len(schema["sampleData"][STEP_COUNT]) == 4
    assert schema["dateRange"]["start"].startswith("2025-01-15T08:00:00")
    assert schema["cacheStats"]["size"] == 2


def test_run_query_over_all_files(store: HealthDataStore) -> None:
    result = run_query(
        store, QueryEngine(), "SELECT SUM(`Step Count (steps)`) AS total FROM health_data"
    )
    assert result.columns == ["total"]
    assert result.rows == [[18200]]
    csv_result = run_query(store, QueryEngine(), "SELECT * FROM health_data LIMIT 1", OutputFormat.CSV)
    assert csv_result.rows[0][0] == "2025-01-15 01:30:00"


def test_describe_metric() -> None:
    assert describe_metric(STEP_COUNT) is HEALTH_METRICS[STEP_COUNT]
    custom = describe_metric("Mindful Minutes (min)")
    assert custom.to_dict() == {
        "name": "Mindful Minutes (min)",
        "unit": "unknown",
        "type": "numeric",
        "description": "Custom metric from health data",
    }
