"""Parsing of Health Export CSV files: file names, timestamps and cells."""

from __future__ import annotations

import re
import warnings
from datetime import date, datetime, tzinfo
from pathlib import Path
from typing import Any

import pandas as pd

from health_export.core.errors import (
    CsvParseError,
    InvalidFilenameError,
    InvalidTimestampError,
    SourceFileNotFoundError,
)
from health_export.core.logging import get_logger
from health_export.data.models import MetricValue, Record, SourceFile

logger = get_logger("data.parsing")

TIMESTAMP_COLUMNS = ("Date", "csvDate")

FALLBACK_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S %z",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
)

_NUMBER_RE = re.compile(r"^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?\s*$")
_INTEGER_RE = re.compile(r"^\s*[-+]?\d+\s*$")


def _filename_patterns(prefix: str, extension: str) -> tuple[re.Pattern[str], re.Pattern[str]]:
    stem = re.escape(prefix)
    ext = re.escape(extension)
    dashed = re.compile(rf"{stem}-(\d{{4}})-(\d{{2}})-(\d{{2}})\.{ext}")
    compact = re.compile(rf"{stem}(\d{{4}})(\d{{2}})(\d{{2}})\.{ext}")
    return dashed, compact


def extract_date_from_filename(
    filename: str, prefix: str = "HealthMetrics", extension: str = "csv"
) -> date:
    """Return the calendar date encoded in an export file name.

    Accepts ``<prefix>-YYYY-MM-DD.<ext>`` and ``<prefix>YYYYMMDD.<ext>``.
    """
    for pattern in _filename_patterns(prefix, extension):
        match = pattern.fullmatch(filename)
        if match is None:
            continue
        year, month, day = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError as exc:
            raise InvalidFilenameError(
                f"Cannot extract date from filename: {filename}", details=str(exc)
            ) from exc
    raise InvalidFilenameError(f"Cannot extract date from filename: {filename}")


def localize(value: datetime, tz: tzinfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def try_parse_timestamp(value: Any, tz: tzinfo) -> datetime | None:
    """Parse ISO-8601 first, then the fallback patterns. None when nothing matches."""
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        return localize(value, tz)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return localize(datetime.fromisoformat(text), tz)
    except ValueError:
        pass
    for fmt in FALLBACK_TIMESTAMP_FORMATS:
        try:
            return localize(datetime.strptime(text, fmt), tz)
        except ValueError:
            continue
    return None


def parse_timestamp(value: Any, tz: tzinfo) -> datetime:
    parsed = try_parse_timestamp(value, tz)
    if parsed is None:
        raise InvalidTimestampError(f"Cannot parse timestamp: {value}")
    return parsed


def coerce_cell(value: Any) -> MetricValue:
    """Type a raw CSV cell: empty -> None, numeric text -> int/float, else text."""
    if value is None:
        return None
    if not isinstance(value, str):
        return None if pd.isna(value) else value
    if value == "":
        return None
    if _NUMBER_RE.match(value):
        if _INTEGER_RE.match(value):
            return int(value)
        return float(value)
    return value


def _drop_bad_line(bad_line: list[str]) -> None:
    # Rows wider than the header are tolerated and dropped.
    return None


def _read_frame(path: Path) -> tuple[pd.DataFrame, list[str]]:
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            frame = pd.read_csv(
                path,
                dtype=str,
                index_col=False,
                keep_default_na=False,
                skip_blank_lines=True,
                on_bad_lines=_drop_bad_line,
                engine="python",
                encoding="utf-8",
            )
        except pd.errors.EmptyDataError:
            frame = pd.DataFrame()
    return frame, [str(w.message) for w in caught]


def parse_csv_file(
    path: str | Path,
    tz: tzinfo,
    prefix: str = "HealthMetrics",
    extension: str = "csv",
) -> SourceFile:
    """Parse one export file into a :class:`SourceFile`.

    Raises:
        SourceFileNotFoundError: the file does not exist.
        InvalidFilenameError: the name carries no date.
        InvalidTimestampError: a row's timestamp cannot be parsed.
        CsvParseError: the content is not readable as CSV.
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise SourceFileNotFoundError(f"File not found: {file_path}")

    file_date = extract_date_from_filename(file_path.name, prefix, extension)

    try:
        frame, parse_warnings = _read_frame(file_path)
    except (pd.errors.ParserError, UnicodeDecodeError, OSError) as exc:
        raise CsvParseError(f"Failed to parse CSV file: {file_path}", details=str(exc)) from exc

    if parse_warnings:
        logger.warning("csv_parse_warnings", file=file_path.name, warnings=parse_warnings)

    frame = frame.rename(columns=lambda col: str(col).strip())
    columns = tuple(frame.columns)
    ts_column = next((col for col in TIMESTAMP_COLUMNS if col in columns), None)

    records: list[Record] = []
    if not frame.empty:
        if ts_column is None:
            raise InvalidTimestampError(
                f"No timestamp column in {file_path.name}", details={"columns": list(columns)}
            )
        for row in frame.to_dict(orient="records"):
            timestamp = parse_timestamp(row[ts_column], tz)
            values = {
                key: coerce_cell(raw)
                for key, raw in row.items()
                if key not in TIMESTAMP_COLUMNS
            }
            records.append(Record(timestamp=timestamp, values=values))

    return SourceFile(
        path=str(file_path),
        filename=file_path.name,
        date=file_date,
        records=tuple(records),
        columns=columns,
    )
