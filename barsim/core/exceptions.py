from __future__ import annotations

from typing import Any, Mapping, Optional


class BarsimError(Exception):
    """Base class for all barsim exceptions."""


class InsufficientHistory(BarsimError, IndexError):
    """Raised when a series is read further back than its recorded depth."""

    def __init__(self, name: str, bars_back: int, available: int) -> None:
        super().__init__(
            f"{name or 'series'}: {bars_back} bars back requested, {available} available"
        )
        self.name = name
        self.bars_back = bars_back
        self.available = available


class DataUnavailable(BarsimError):
    """Raised when an instrument has no data at the current simulated step."""


class DataValidationError(BarsimError):
    """Raised when a bar stream fails ordering or schema validation."""


class OrderRejected(BarsimError):
    """Raised when an order cannot be priced at its fill step."""


class ConfigurationError(BarsimError):
    """Raised for missing/malformed configuration, before any job runs."""


class JobFailed(BarsimError):
    """Raised when a single simulation job fails; carries its parameters."""

    def __init__(
        self,
        message: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.params = dict(params or {})
        self.cause = cause


class JobTimeout(JobFailed):
    """Raised when a job exceeds its wall-clock budget."""


__all__ = [
    "BarsimError",
    "InsufficientHistory",
    "DataUnavailable",
    "DataValidationError",
    "OrderRejected",
    "ConfigurationError",
    "JobFailed",
    "JobTimeout",
]
