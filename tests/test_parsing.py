from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
from conftest import write_export

from health_export.core.errors import (
    CsvParseError,
    InvalidFilenameError,
    InvalidTimestampError,
    SourceFileNotFoundError,
)
from health_export.data.parsing import (
    coerce_cell,
    extract_date_from_filename,
    parse_csv_file,
    parse_timestamp,
    try_parse_timestamp,
)


@pytest.mark.parametrize(
    "filename",
    ["HealthMetrics-2025-01-15.csv", "HealthMetrics20250115.csv"],
)
def test_extract_date_from_filename(filename: str) -> None:
    assert extract_date_from_filename(filename) == date(2025, 1, 15)


@pytest.mark.parametrize(
    "filename",
    ["HealthMetrics.csv", "HealthMetrics-2025-13-40.csv", "Other-2025-01-15.csv", "HealthMetrics-2025-01-15.txt"],
)
def test_extract_date_rejects_bad_names(filename: str) -> None:
    with pytest.raises(InvalidFilenameError):
        extract_date_from_filename(filename)


def test_parse_timestamp_localizes_naive_values() -> None:
    tz = ZoneInfo("America/New_York")
    parsed = parse_timestamp("2025-01-15 08:00:00", tz)
    assert parsed.tzinfo == tz
    assert parsed.hour == 8


def test_parse_timestamp_keeps_explicit_offset() -> None:
    parsed = parse_timestamp("2025-01-15 08:00:00 -0500", UTC)
    assert parsed.utcoffset() == timedelta(hours=-5)
    assert parsed.astimezone(UTC) == datetime(2025, 1, 15, 13, tzinfo=UTC)


def test_parse_timestamp_iso() -> None:
    parsed = parse_timestamp("2025-01-15T08:00:00+01:00", UTC)
    assert parsed == datetime(2025, 1, 15, 8, tzinfo=timezone(timedelta(hours=1)))


def test_parse_timestamp_failure() -> None:
    assert try_parse_timestamp("yesterday", UTC) is None
    with pytest.raises(InvalidTimestampError):
        parse_timestamp("yesterday", UTC)


def test_coerce_cell() -> None:
    assert coerce_cell("") is None
    assert coerce_cell("5000") == 5000
    assert isinstance(coerce_cell("5000"), int)
    assert coerce_cell("10.5") == 10.5
    assert coerce_cell("Asleep") == "Asleep"


def test_parse_csv_file(tmp_path: Path) -> None:
    path = write_export(
        tmp_path,
        "HealthMetrics-2025-01-15.csv",
        ["2025-01-15 08:00:00,10.5,5000,", "2025-01-15 09:00:00,,6000,70"],
    )
    parsed = parse_csv_file(path, UTC)
    assert parsed.date == date(2025, 1, 15)
    assert parsed.filename == "HealthMetrics-2025-01-15.csv"
    assert parsed.row_count == 2
    assert parsed.columns[0] == "Date"
    first = parsed.records[0]
    assert first.timestamp == datetime(2025, 1, 15, 8, tzinfo=UTC)
    assert first.values["Step Count (steps)"] == 5000
    assert first.values["Heart Rate [Avg] (bpm)"] is None
    assert "Date" not in first.values
    assert parsed.records[1].values["Active Energy (kcal)"] is None


def test_parse_csv_file_accepts_csvdate_column(tmp_path: Path) -> None:
    path = write_export(
        tmp_path, "HealthMetrics20250115.csv", ["2025-01-15 08:00:00,1"], header="csvDate,x"
    )
    parsed = parse_csv_file(path, UTC)
    assert parsed.records[0].values == {"x": 1}


def test_parse_csv_file_short_rows_are_padded(tmp_path: Path) -> None:
    path = write_export(
        tmp_path, "HealthMetrics-2025-01-15.csv", ["2025-01-15 08:00:00,1"], header="Date,a,b"
    )
    parsed = parse_csv_file(path, UTC)
    assert parsed.records[0].values == {"a": 1, "b": None}


@pytest.mark.parametrize("position", [0, 1])
def test_parse_csv_file_drops_wide_rows(tmp_path: Path, position: int) -> None:
    rows = ["2025-01-15 09:00:00,1,2,3", "2025-01-15 10:00:00,4,5,6"]
    rows.insert(position, "2025-01-15 08:00:00,1,2,3,4,5")
    path = write_export(tmp_path, "HealthMetrics-2025-01-15.csv", rows)
    parsed = parse_csv_file(path, UTC)
    assert [r.timestamp.hour for r in parsed.records] == [9, 10]
    assert parsed.records[0].values == {
        "Active Energy (kcal)": 1,
        "Step Count (steps)": 2,
        "Heart Rate [Avg] (bpm)": 3,
    }


def test_parse_csv_file_header_only(tmp_path: Path) -> None:
    path = write_export(tmp_path, "HealthMetrics-2025-01-15.csv", [])
    assert parse_csv_file(path, UTC).row_count == 0


def test_parse_csv_file_missing(tmp_path: Path) -> None:
    with pytest.raises(SourceFileNotFoundError) as excinfo:
        parse_csv_file(tmp_path / "HealthMetrics-2025-01-15.csv", UTC)
    assert excinfo.value.code == "FILE_NOT_FOUND"
    assert isinstance(excinfo.value, FileNotFoundError)


def test_parse_csv_file_without_timestamp_column(tmp_path: Path) -> None:
    path = write_export(tmp_path, "HealthMetrics-2025-01-15.csv", ["1,2"], header="a,b")
    with pytest.raises(InvalidTimestampError):
        parse_csv_file(path, UTC)


def test_parse_csv_file_bad_timestamp(tmp_path: Path) -> None:
    path = write_export(tmp_path, "HealthMetrics-2025-01-15.csv", ["not a date,1,2,3"])
    with pytest.raises(InvalidTimestampError):
        parse_csv_file(path, UTC)


def test_parse_csv_file_undecodable(tmp_path: Path) -> None:
    path = tmp_path / "HealthMetrics-2025-01-15.csv"
    path.write_bytes(b"Date,x\n\xff\xfe\xfa,1\n")
    with pytest.raises(CsvParseError):
        parse_csv_file(path, UTC)
