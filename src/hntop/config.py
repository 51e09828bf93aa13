"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (HNTOP__WORKER__INTERVAL_SECONDS=300)
  2. hntop.yaml             (searched in cwd, then ~/.config/hntop/)
  3. Hardcoded defaults

The config file is optional. Every field has a default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from hntop.models.story import Timespan

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("hntop")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "hntop.db")

_MINUTE = 60
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR


def _find_config_file() -> str | None:
    """Return the path of the first hntop.yaml found, or None."""
    candidates = [
        Path("hntop.yaml"),
        Path.home() / ".config" / "hntop" / "hntop.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class TimespanTtls(BaseModel):
    """TTL in seconds for each timespan bucket."""

    model_config = ConfigDict(extra="forbid")

    day: int = Field(default=30 * _MINUTE, ge=0)
    week: int = Field(default=_HOUR, ge=0)
    month: int = Field(default=3 * _HOUR, ge=0)
    year: int = Field(default=6 * _HOUR, ge=0)
    all: int = Field(default=12 * _HOUR, ge=0)

    def for_timespan(self, timespan: Timespan) -> int:
        return getattr(self, timespan.value.lower())


def _snapshot_ttls() -> TimespanTtls:
    return TimespanTtls(
        day=30 * _MINUTE, week=2 * _DAY, month=4 * _DAY, year=7 * _DAY, all=14 * _DAY
    )


class CacheSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    db_path: str = _DEFAULT_DB_PATH
    max_query_docs: int = Field(default=500, ge=1)
    memory_ttl: TimespanTtls = Field(default_factory=TimespanTtls)
    snapshot_ttl: TimespanTtls = Field(default_factory=_snapshot_ttls)
    memory_max_entries: int = Field(default=1024, ge=1)
    hidden_ttl_seconds: int = Field(default=60, ge=0)
    hidden_max_entries: int = Field(default=4096, ge=1)


class StalenessTier(BaseModel):
    """Stories submitted within ``window_hours`` and not refreshed for ``stale_hours``.

    ``window_hours: null`` matches stories of any age.
    """

    model_config = ConfigDict(extra="forbid")

    window_hours: Annotated[float, Field(gt=0)] | None
    stale_hours: float = Field(gt=0)

    @property
    def label(self) -> str:
        window = "any" if self.window_hours is None else f"{self.window_hours:g}h"
        return f"{window}/{self.stale_hours:g}h"


def _default_tiers() -> list[StalenessTier]:
    return [
        StalenessTier(window_hours=28 * 24, stale_hours=48),
        StalenessTier(window_hours=7 * 24, stale_hours=6),
        StalenessTier(window_hours=24, stale_hours=1),
    ]


class WorkerSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    interval_seconds: int = Field(default=10 * _MINUTE, ge=0)
    batch_limit: int = Field(default=200, ge=1)
    fetch_batch_size: int = Field(default=20, ge=1)
    discover_mode: Literal["watermark", "exists"] = "watermark"
    tiers: list[StalenessTier] = Field(default_factory=_default_tiers)


class UpstreamSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_url: str = "https://hacker-news.firebaseio.com/v0"
    login_url: str = "https://news.ycombinator.com/login"
    timeout_seconds: float = Field(default=10.0, gt=0)


class ApiSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_limit: int = Field(default=500, ge=1)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: HNTOP__CACHE__DB_PATH=/tmp/hntop.db
        env_prefix="HNTOP__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    cache: CacheSettings = CacheSettings()
    worker: WorkerSettings = WorkerSettings()
    upstream: UpstreamSettings = UpstreamSettings()
    api: ApiSettings = ApiSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
        )
