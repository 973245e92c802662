"""Core primitives: time series, per-run cache and the exception taxonomy."""

from .cache import CacheKey, RunCache
from .exceptions import (
    BarsimError,
    ConfigurationError,
    DataUnavailable,
    DataValidationError,
    InsufficientHistory,
    JobFailed,
    JobTimeout,
    OrderRejected,
)
from .timeseries import GAP, TimeSeries

__all__ = [
    "CacheKey",
    "RunCache",
    "TimeSeries",
    "GAP",
    "BarsimError",
    "ConfigurationError",
    "DataUnavailable",
    "DataValidationError",
    "InsufficientHistory",
    "JobFailed",
    "JobTimeout",
    "OrderRejected",
]
