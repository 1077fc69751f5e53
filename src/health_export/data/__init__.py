"""Data package: record model, CSV parsing and the time-series store."""

from health_export.data.models import (
    CacheStats,
    DateRange,
    MetricSample,
    Record,
    SourceFile,
)
from health_export.data.store import HealthDataStore

__all__ = [
    "CacheStats",
    "DateRange",
    "HealthDataStore",
    "MetricSample",
    "Record",
    "SourceFile",
]
