"""Record model shared by the store and the query engine."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime

MetricValue = int | float | str | None
Value = int | float | str | datetime | None

TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class Record:
    """One timestamped observation with a sparse set of metric values."""

    timestamp: datetime
    values: Mapping[str, MetricValue] = field(default_factory=dict)

    def get(self, name: str, default: Value = None) -> Value:
        if name == TIMESTAMP:
            return self.timestamp
        return self.values.get(name, default)

    def __contains__(self, name: object) -> bool:
        return name == TIMESTAMP or name in self.values

    def keys(self) -> Iterator[str]:
        yield TIMESTAMP
        yield from self.values

    def as_dict(self) -> dict[str, Value]:
        return {TIMESTAMP: self.timestamp, **self.values}


@dataclass(frozen=True)
class SourceFile:
    """One parsed CSV export, cached as a unit."""

    path: str
    filename: str
    date: date
    records: tuple[Record, ...]
    columns: tuple[str, ...]

    @property
    def row_count(self) -> int:
        return len(self.records)

    @property
    def first_timestamp(self) -> datetime | None:
        return self.records[0].timestamp if self.records else None

    @property
    def last_timestamp(self) -> datetime | None:
        return self.records[-1].timestamp if self.records else None


@dataclass(frozen=True)
class DateRange:
    """Closed interval [start, end] of aware instants."""

    start: datetime
    end: datetime

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts <= self.end

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start <= self.end and end >= self.start

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class CacheStats:
    size: int
    files: list[str]

    def to_dict(self) -> dict[str, object]:
        return {"size": self.size, "files": list(self.files)}


@dataclass(frozen=True)
class MetricSample:
    timestamp: datetime
    value: MetricValue

    def to_dict(self) -> dict[str, object]:
        return {"timestamp": self.timestamp.isoformat(), "value": self.value}
