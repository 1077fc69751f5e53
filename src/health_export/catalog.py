"""Metadata for the well-known Health Export metric columns."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Literal

MetricType = Literal["numeric", "categorical"]

STEP_COUNT = "Step Count (steps)"


@dataclass(frozen=True)
class HealthMetric:
    name: str
    unit: str
    type: MetricType = "numeric"
    description: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return asdict(self)


HEALTH_METRICS: dict[str, HealthMetric] = {
    metric.name: metric
    for metric in (
        HealthMetric("Active Energy (kcal)", "kcal", description="Active energy burned in kilocalories"),
        HealthMetric("Heart Rate [Min] (bpm)", "bpm", description="Minimum heart rate in beats per minute"),
        HealthMetric("Heart Rate [Max] (bpm)", "bpm", description="Maximum heart rate in beats per minute"),
        HealthMetric("Heart Rate [Avg] (bpm)", "bpm", description="Average heart rate in beats per minute"),
        HealthMetric(STEP_COUNT, "steps", description="Number of steps taken"),
        HealthMetric("Sleep Analysis [Total] (hr)", "hr", description="Total sleep duration in hours"),
    )
}


def describe_metric(name: str) -> HealthMetric:
    """Catalog entry for ``name``, or a generic numeric entry for custom columns."""
    known = HEALTH_METRICS.get(name)
    if known is not None:
        return known
    return HealthMetric(name, "unknown", description="Custom metric from health data")
