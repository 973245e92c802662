"""Pydantic models for backtest and sweep definitions, loadable from YAML."""

from __future__ import annotations

import math
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from barsim.core.exceptions import ConfigurationError
from barsim.dal.schemas import as_utc
from barsim.sim.account import CommissionSchedule

Number = Union[int, float]


class CommissionConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    per_share: float = Field(default=0.0, ge=0)
    per_order: float = Field(default=0.0, ge=0)
    pct: float = Field(default=0.0, ge=0)
    minimum: float = Field(default=0.0, ge=0)

    def schedule(self) -> CommissionSchedule:
        return CommissionSchedule(
            per_share=self.per_share, per_order=self.per_order, pct=self.pct, minimum=self.minimum
        )


class BacktestConfig(BaseModel):
    """
    One simulation run.

    Attributes:
        algorithm (str): Registered algorithm name.
        params (dict): Overrides for the algorithm's parameter dataclass.
        symbols (list[str]): Symbols to load; empty means the strategy's own.
        vendor (str | None): Vendor name in the DAL; the DAL default when None.
        warmup_start (datetime | None): First bar loaded.
        start (datetime | None): Orders before this time are cancelled as warm-up.
        end (datetime | None): Last bar loaded.
        slippage (float): Fraction of the fill price paid on every fill.
        fitness (str): Metric used when the strategy does not define a fitness.

    Naive datetimes and plain dates are read as UTC.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    algorithm: str
    params: Dict[str, Any] = Field(default_factory=dict)
    symbols: List[str] = Field(default_factory=list)
    vendor: Optional[str] = None
    warmup_start: Optional[datetime] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    initial_cash: Optional[float] = Field(default=None, gt=0)
    max_bars_back: Optional[int] = Field(default=None, ge=1)
    commission: Optional[CommissionConfig] = None
    slippage: float = Field(default=0.0, ge=0, lt=1)
    fitness: str = "nav"

    @field_validator("symbols", mode="before")
    @classmethod
    def _split_symbols(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [s.strip() for s in value.split(",") if s.strip()]
        return value

    @field_validator("warmup_start", "start", "end", mode="before")
    @classmethod
    def _dates_to_datetimes(cls, value: Any) -> Any:
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime.combine(value, time(), tzinfo=timezone.utc)
        return value

    @field_validator("warmup_start", "start", "end")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # bar timestamps are aware UTC; comparisons need the same here
        return as_utc(value)

    @model_validator(mode="after")
    def _check_range(self) -> "BacktestConfig":
        if self.start and self.end and self.end < self.start:
            raise ValueError("end must not precede start")
        if self.warmup_start and self.start and self.warmup_start > self.start:
            raise ValueError("warmup_start must not follow start")
        return self


class ParamRange(BaseModel):
    """Inclusive ``start..end`` range sampled every ``step``; disabled ranges hold ``start``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    start: Number
    end: Number
    step: Number = 1
    enabled: bool = True

    def values(self) -> List[Number]:
        if not self.enabled:
            return [self.start]
        if self.step <= 0:
            raise ConfigurationError(f"range {self.name}: step must be > 0 (got {self.step})")
        if self.end < self.start:
            raise ConfigurationError(f"range {self.name}: end {self.end} < start {self.start}")
        count = int(math.floor((self.end - self.start) / self.step + 1e-9)) + 1
        integral = all(isinstance(v, int) for v in (self.start, self.end, self.step))
        if integral:
            return [self.start + i * self.step for i in range(count)]
        return [round(self.start + i * self.step, 10) for i in range(count)]


class SweepConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: Optional[str] = None
    backtest: BacktestConfig
    ranges: List[ParamRange] = Field(default_factory=list)
    max_workers: Optional[int] = Field(default=None, ge=1)
    job_timeout_s: Optional[float] = Field(default=None, gt=0)
    output_dir: Optional[Path] = None

    @field_validator("ranges", mode="before")
    @classmethod
    def _ranges_from_mapping(cls, value: Any) -> Any:
        # ranges may be written as {name: {start, end, step}}
        if isinstance(value, dict):
            return [dict(spec, name=name) for name, spec in value.items()]
        return value


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(Path(path).read_text())
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"cannot read config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"config {path} must be a mapping")
    return data


def load_backtest_config(path: Path | str) -> BacktestConfig:
    data = _read_yaml(Path(path))
    try:
        return BacktestConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid backtest config {path}: {exc}") from exc


def load_sweep_config(path: Path | str) -> SweepConfig:
    data = _read_yaml(Path(path))
    try:
        return SweepConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid sweep config {path}: {exc}") from exc


__all__ = [
    "BacktestConfig",
    "CommissionConfig",
    "ParamRange",
    "SweepConfig",
    "load_backtest_config",
    "load_sweep_config",
]
