"""Telemetry helpers (OpenTelemetry API; exporters configured by the host)."""

from .backtest import record_job, record_run, start_span

__all__ = ["start_span", "record_run", "record_job"]
