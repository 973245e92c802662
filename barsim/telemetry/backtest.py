"""OpenTelemetry helpers for simulation runs and sweep jobs."""

from __future__ import annotations

from typing import Any, Dict

from opentelemetry import metrics, trace

_tracer = trace.get_tracer("barsim")
_meter = metrics.get_meter("barsim")

_run_counter = _meter.create_counter(
    name="backtest_runs_total",
    unit="1",
    description="Number of backtest runs completed",
)
_job_counter = _meter.create_counter(
    name="sweep_jobs_total",
    unit="1",
    description="Number of sweep jobs finished, by status",
)


def start_span(name: str, attributes: Dict[str, Any] | None = None):
    """Start a current span; a no-op span when no SDK is configured."""
    attrs = {k: v for k, v in (attributes or {}).items() if v is not None}
    return _tracer.start_as_current_span(name, attributes=attrs)


def record_run(attributes: Dict[str, Any]) -> None:
    _run_counter.add(1, attributes={k: v for k, v in attributes.items() if v is not None})


def record_job(status: str, attributes: Dict[str, Any] | None = None) -> None:
    attrs = {"status": status}
    attrs.update({k: v for k, v in (attributes or {}).items() if v is not None})
    _job_counter.add(1, attributes=attrs)


__all__ = ["start_span", "record_run", "record_job"]
