"""Exception taxonomy for the store and the query engine."""

from __future__ import annotations

from typing import Any


class HealthExportError(Exception):
    """Base exception carrying a stable error code and optional details."""

    code = "HEALTH_EXPORT_ERROR"

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class FileDiscoveryError(HealthExportError):
    code = "FILE_DISCOVERY_FAILED"


class SourceFileNotFoundError(HealthExportError, FileNotFoundError):
    code = "FILE_NOT_FOUND"


class CsvParseError(HealthExportError):
    code = "CSV_PARSE_FAILED"


class InvalidFilenameError(HealthExportError):
    code = "INVALID_FILENAME"


class InvalidTimestampError(HealthExportError):
    code = "INVALID_TIMESTAMP"


class QueryExecutionError(HealthExportError):
    """Any failure while running a query. Not retriable without changing the query."""

    code = "QUERY_EXECUTION_FAILED"


class InvalidQueryError(QueryExecutionError):
    """The query text does not match the supported grammar."""

    code = "INVALID_QUERY"
