"""SQL-subset query engine over record sequences."""

from health_export.query.engine import QueryEngine
from health_export.query.models import (
    OutputFormat,
    ParsedQuery,
    QueryOptions,
    QueryResult,
)
from health_export.query.parser import parse_query

__all__ = [
    "OutputFormat",
    "ParsedQuery",
    "QueryEngine",
    "QueryOptions",
    "QueryResult",
    "parse_query",
]
