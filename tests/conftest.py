from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from health_export.core.config import Settings
from health_export.data.models import Record
from health_export.data.store import HealthDataStore

HEADER = "Date,Active Energy (kcal),Step Count (steps),Heart Rate [Avg] (bpm)"


def write_export(directory: Path, name: str, rows: list[str], header: str = HEADER) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("\n".join([header, *rows]) + "\n", encoding="utf-8")
    return path


def make_settings(tmp_path: Path, **overrides: object) -> Settings:
    values: dict[str, object] = {"data_dir": tmp_path, "timezone": "UTC", "max_workers": 2}
    values.update(overrides)
    return Settings(**values)


def ts(text: str) -> datetime:
    return datetime.fromisoformat(text).replace(tzinfo=UTC)


def rec(when: str, **values: object) -> Record:
    return Record(timestamp=ts(when), values=values)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def populated(tmp_path: Path) -> Path:
    """Two consecutive export days plus an unrelated file."""
    write_export(
        tmp_path,
        "HealthMetrics-2025-01-15.csv",
        [
            "2025-01-15 08:00:00,10.5,5000,61",
            "2025-01-15 01:30:00,3,200,55",
            "2025-01-15 12:00:00,,6000,72",
        ],
    )
    write_export(
        tmp_path / "nested",
        "HealthMetrics20250116.csv",
        [
            "2025-01-16 09:15:00,20,7000,",
            "2025-01-16 18:45:00,4.25,,80",
        ],
    )
    (tmp_path / "notes.csv").write_text("Date,x\n2025-01-15 10:00:00,1\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def store(populated: Path) -> HealthDataStore:
    return HealthDataStore(make_settings(populated))
