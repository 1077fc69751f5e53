"""Loose numeric coercion used by comparisons, aggregates and summaries."""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime
from typing import Any


def to_number(value: Any) -> float:
    """Numeric view of a value; NaN when it has none."""
    if value is None or isinstance(value, bool):
        return math.nan
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return math.nan


def numeric_values(values: Iterable[Any]) -> list[float]:
    return [n for n in (to_number(v) for v in values) if not math.isnan(n)]
