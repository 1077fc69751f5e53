"""Centralized runtime settings."""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Annotated
from zoneinfo import ZoneInfo

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogFormat(StrEnum):
    """Supported logging formats."""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """Global configuration loaded from env vars and optional .env file."""

    model_config = SettingsConfigDict(
        env_prefix="HEALTH_EXPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # HEALTH_EXPORT_DIR is the variable the export tooling documents.
    data_dir: Path = Field(
        default_factory=Path.cwd,
        validation_alias=AliasChoices("HEALTH_EXPORT_DIR", "HEALTH_EXPORT_DATA_DIR"),
    )
    file_prefix: str = "HealthMetrics"
    file_extension: str = "csv"

    cache_size: Annotated[int, Field(ge=1)] = 10
    enable_caching: bool = True
    max_workers: Annotated[int, Field(ge=1, le=64)] = 4

    timezone: str = "UTC"
    source_name: str = "health_data"

    log_level: str = "INFO"
    log_format: LogFormat = LogFormat.CONSOLE

    @property
    def zone(self) -> ZoneInfo:
        """Timezone used to localise naive timestamps and file days."""
        return ZoneInfo(self.timezone)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
