"""Centralized engine settings powered by Pydantic.

Environment matrix:

| Section   | Environment Variable            | Default     | Purpose                                   |
|-----------|---------------------------------|-------------|-------------------------------------------|
| Engine    | `BARSIM_MAX_BARS_BACK`          | `256`       | Depth retained by every TimeSeries        |
| Engine    | `BARSIM_INITIAL_CASH`           | `100000`    | Starting cash of a simulated account      |
| Engine    | `BARSIM_COMMISSION_PER_SHARE`   | `0.0`       | Default per-share commission              |
| Engine    | `BARSIM_COMMISSION_PER_ORDER`   | `0.0`       | Default flat commission per order         |
| Engine    | `BARSIM_DATA_DIR`               | `data`      | Directory read by the CSV vendor          |
| Optimizer | `BARSIM_MAX_WORKERS`            | CPU count   | Concurrent simulations in a sweep         |
| Optimizer | `BARSIM_JOB_TIMEOUT_S`          | `None`      | Wall-clock limit per simulation           |
| Optimizer | `BARSIM_SWEEP_OUTPUT_DIR`       | `None`      | Where sweep summaries are written         |
| Optimizer | `BARSIM_SWEEP_REGISTRY`         | `None`      | JSONL manifest of sweep job events        |
| Sentry    | `SENTRY_DSN`                    | `None`      | Sentry ingest DSN                         |
| Sentry    | `SENTRY_TRACES_SAMPLE_RATE`     | `0.0`       | Fraction of transactions to trace         |
| Sentry    | `SENTRY_ENVIRONMENT`            | `None`      | Deployment environment label              |
| Logging   | `LOG_LEVEL`                     | `INFO`      | Minimum level of the stdout sink          |
| Logging   | `ENV`                           | `local`     | Environment label on every log record     |
| Logging   | `LOG_FILE`                      | `None`      | Extra file sink for the same records      |

The settings objects source environment variables at instantiation and are
read-only.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class _SettingsBase(BaseSettings):
    """Common configuration for BaseSettings subclasses."""

    model_config = SettingsConfigDict(
        env_prefix="",
        populate_by_name=True,
        extra="ignore",
        case_sensitive=True,
        frozen=True,
    )


class EngineSettings(_SettingsBase):
    """Defaults for a single simulation run."""

    max_bars_back: int = Field(default=256, alias="BARSIM_MAX_BARS_BACK", ge=1)
    initial_cash: float = Field(default=100_000.0, alias="BARSIM_INITIAL_CASH")
    commission_per_share: float = Field(default=0.0, alias="BARSIM_COMMISSION_PER_SHARE", ge=0)
    commission_per_order: float = Field(default=0.0, alias="BARSIM_COMMISSION_PER_ORDER", ge=0)
    data_dir: Path = Field(default=Path("data"), alias="BARSIM_DATA_DIR")


class OptimizerSettings(_SettingsBase):
    """Parallel sweep configuration."""

    max_workers: int | None = Field(default=None, alias="BARSIM_MAX_WORKERS")
    job_timeout_s: float | None = Field(default=None, alias="BARSIM_JOB_TIMEOUT_S")
    output_dir: Path | None = Field(default=None, alias="BARSIM_SWEEP_OUTPUT_DIR")
    registry_path: Path | None = Field(default=None, alias="BARSIM_SWEEP_REGISTRY")

    @field_validator("max_workers", mode="before")
    @classmethod
    def _coerce_workers(cls, value: int | str | None) -> int | None:
        if value in (None, ""):
            return None
        try:
            workers = int(value)
        except (TypeError, ValueError):
            return None
        return workers if workers > 0 else None

    @field_validator("job_timeout_s", mode="before")
    @classmethod
    def _coerce_timeout(cls, value: float | str | None) -> float | None:
        if value in (None, ""):
            return None
        timeout = float(value)
        return timeout if timeout > 0 else None

    @computed_field
    @property
    def effective_workers(self) -> int:
        return self.max_workers or (os.cpu_count() or 1)


class SentrySettings(_SettingsBase):
    """Sentry SDK configuration."""

    dsn: str | None = Field(default=None, alias="SENTRY_DSN")
    traces_sample_rate: float = Field(default=0.0, alias="SENTRY_TRACES_SAMPLE_RATE")
    environment: str | None = Field(default=None, alias="SENTRY_ENVIRONMENT")

    @computed_field
    @property
    def enabled(self) -> bool:
        return bool(self.dsn)


class LoggingSettings(_SettingsBase):
    level: str = Field(default="INFO", alias="LOG_LEVEL")
    environment: str = Field(default="local", alias="ENV")
    file: Path | None = Field(default=None, alias="LOG_FILE")

    @field_validator("level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.strip().upper()


class Settings(BaseModel):
    """Aggregate accessor for domain-specific settings."""

    engine: EngineSettings = Field(default_factory=EngineSettings)
    optimizer: OptimizerSettings = Field(default_factory=OptimizerSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {
        "frozen": True,
        "arbitrary_types_allowed": True,
    }


def get_settings() -> Settings:
    """Instantiate settings from the current environment."""
    return Settings()


def reload_settings() -> Settings:
    """Alias for get_settings to maintain a consistent API."""
    return get_settings()


def get_engine_settings() -> EngineSettings:
    return get_settings().engine


def get_optimizer_settings() -> OptimizerSettings:
    return get_settings().optimizer


def get_sentry_settings() -> SentrySettings:
    return get_settings().sentry


def get_logging_settings() -> LoggingSettings:
    return get_settings().logging


__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "get_engine_settings",
    "get_optimizer_settings",
    "get_sentry_settings",
    "get_logging_settings",
    "EngineSettings",
    "OptimizerSettings",
    "SentrySettings",
    "LoggingSettings",
]
