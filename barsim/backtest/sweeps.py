"""Exhaustive grid search over strategy parameters on a bounded worker pool."""

from __future__ import annotations

import itertools
import json
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from loguru import logger

from barsim.backtest import sweep_registry
from barsim.backtest.config import BacktestConfig, ParamRange, SweepConfig, load_sweep_config
from barsim.backtest.runner import Backtest
from barsim.core.exceptions import ConfigurationError, JobFailed
from barsim.dal.manager import MarketDataDAL
from barsim.logging_utils import logging_context
from barsim.settings import get_optimizer_settings
from barsim.sim.registry import build_params, create_algorithm, get_algorithm
from barsim.telemetry import record_job, start_span


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ParamKey = Tuple[Tuple[str, Any], ...]


@dataclass(frozen=True)
class OptimizationResult:
    job_id: int
    params: ParamKey
    status: JobState
    fitness: Optional[float] = None
    final_nav: Optional[float] = None
    error: Optional[str] = None
    metrics: Mapping[str, Any] = field(default_factory=dict, compare=False)
    duration_ms: float = 0.0

    @property
    def param_dict(self) -> Dict[str, Any]:
        return dict(self.params)

    def _rank_key(self) -> Tuple[int, float]:
        if self.fitness is None or math.isnan(self.fitness):
            return (0, -math.inf)
        return (1, self.fitness)

    def __lt__(self, other: "OptimizationResult") -> bool:
        return self._rank_key() < other._rank_key()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "params": self.param_dict,
            "status": self.status.value,
            "fitness": self.fitness,
            "final_nav": self.final_nav,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "metrics": dict(self.metrics),
        }


@dataclass
class Job:
    id: int
    params: Dict[str, Any]
    state: JobState = JobState.QUEUED
    result: Optional[OptimizationResult] = None
    future: Optional[Future] = field(default=None, repr=False)

    @property
    def key(self) -> ParamKey:
        return tuple(self.params.items())


@dataclass
class OptimizerReport:
    sweep_id: str
    jobs: List[Job]
    ranked: List[OptimizationResult]
    failed: List[OptimizationResult]
    cancelled: List[Job]
    duration_ms: float = 0.0
    summary_path: Optional[Path] = None

    @property
    def best(self) -> Optional[OptimizationResult]:
        return self.ranked[0] if self.ranked else None

    @property
    def results(self) -> List[OptimizationResult]:
        return self.ranked + self.failed

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for rank, res in enumerate(self.ranked, start=1):
            rows.append({"rank": rank, **res.param_dict, **_flat(res)})
        for res in self.failed:
            rows.append({"rank": None, **res.param_dict, **_flat(res)})
        return pd.DataFrame(rows)

    def __len__(self) -> int:
        return len(self.ranked) + len(self.failed)


def _flat(res: OptimizationResult) -> Dict[str, Any]:
    return {
        "job_id": res.job_id,
        "status": res.status.value,
        "fitness": res.fitness,
        "final_nav": res.final_nav,
        "error": res.error,
    }


def expand_param_grid(ranges: Sequence[ParamRange]) -> List[Dict[str, Any]]:
    """Cartesian product of every range's values, in declaration order."""
    names = [r.name for r in ranges]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigurationError(f"duplicate parameter ranges: {dupes}")
    if not ranges:
        return [{}]
    value_lists = [r.values() for r in ranges]
    empty = [r.name for r, vals in zip(ranges, value_lists) if not vals]
    if empty:
        raise ConfigurationError(f"empty parameter ranges: {empty}")
    return [dict(zip(names, combo, strict=True)) for combo in itertools.product(*value_lists)]


class GridOptimizer:
    """
    Runs one Backtest per grid point and ranks them by fitness.

    Jobs are independent: each builds its own RunContext, and only the bars
    in the shared BarStore (prefetched before dispatch) are common to them.
    A job that raises is recorded as failed with its parameters and cause;
    its siblings are unaffected.
    """

    def __init__(
        self,
        backtest: BacktestConfig,
        ranges: Sequence[ParamRange],
        *,
        dal: Optional[MarketDataDAL] = None,
        max_workers: Optional[int] = None,
        job_timeout_s: Optional[float] = None,
        output_dir: Optional[Path] = None,
        manifest_path: Optional[Path] = None,
        sweep_id: Optional[str] = None,
    ) -> None:
        settings = get_optimizer_settings()
        self.backtest = backtest
        self.ranges = list(ranges)
        self.dal = dal or MarketDataDAL()
        self.max_workers = max_workers or settings.effective_workers
        self.job_timeout_s = job_timeout_s if job_timeout_s is not None else settings.job_timeout_s
        self.output_dir = output_dir if output_dir is not None else settings.output_dir
        self.manifest_path = manifest_path or settings.registry_path
        self.sweep_id = sweep_id or datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
        self.jobs: List[Job] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._started = 0.0

    @classmethod
    def from_config(cls, config: SweepConfig, **kwargs: Any) -> "GridOptimizer":
        kwargs.setdefault("max_workers", config.max_workers)
        kwargs.setdefault("job_timeout_s", config.job_timeout_s)
        kwargs.setdefault("output_dir", config.output_dir)
        kwargs.setdefault("sweep_id", config.name)
        return cls(config.backtest, config.ranges, **kwargs)

    # ------------------------------------------------------------------ setup
    def plan(self) -> List[Dict[str, Any]]:
        """Expand and validate the grid; raises ConfigurationError before anything runs."""
        combos = expand_param_grid(self.ranges)
        spec = get_algorithm(self.backtest.algorithm)
        for combo in combos:
            build_params(spec.params_cls, {**self.backtest.params, **combo})
        return combos

    def _symbols(self, combos: Sequence[Dict[str, Any]]) -> List[str]:
        if self.backtest.symbols:
            return list(self.backtest.symbols)
        symbols: Dict[str, None] = {}
        for combo in combos:
            strategy = create_algorithm(self.backtest.algorithm, {**self.backtest.params, **combo})
            symbols.update(dict.fromkeys(strategy.symbols))
        return list(symbols)

    def _event(self, status: str, **payload: object) -> None:
        if self.manifest_path is None:
            return
        sweep_registry.record_job_event(self.sweep_id, status, path=self.manifest_path, **payload)

    # ------------------------------------------------------------- execution
    def start(self) -> "GridOptimizer":
        combos = self.plan()
        cfg = self.backtest
        self.dal.prefetch(self._symbols(combos), start=cfg.warmup_start or cfg.start, end=cfg.end, vendor=cfg.vendor)

        self.jobs = [Job(id=idx, params=combo) for idx, combo in enumerate(combos, start=1)]
        self._started = perf_counter()
        self._event(
            "running",
            algorithm=cfg.algorithm,
            jobs=len(self.jobs),
            max_workers=self.max_workers,
            started_at=datetime.now(timezone.utc).isoformat(),
        )
        logger.info(
            "[sweep] starting sweep={} algorithm={} jobs={} workers={}",
            self.sweep_id,
            cfg.algorithm,
            len(self.jobs),
            self.max_workers,
        )
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="sweep")
        for job in self.jobs:
            job.future = self._executor.submit(self._execute, job)
        return self

    def _execute(self, job: Job) -> OptimizationResult:
        with self._lock:
            job.state = JobState.RUNNING
        started = perf_counter()
        run_id = f"{self.sweep_id}-{job.id:04d}"
        attributes = {"algorithm": self.backtest.algorithm, "job_id": str(job.id)}
        cfg = self.backtest.model_copy(update={"params": {**self.backtest.params, **job.params}})
        try:
            with logging_context(job_id=str(job.id)), start_span("sweep.job", attributes):
                bt = Backtest(cfg, dal=self.dal, run_id=run_id, timeout_s=self.job_timeout_s).run()
                fitness = bt.report()
                summary = bt.summary()
        except JobFailed as exc:
            exc.params = dict(job.params)
            exc.cause = exc.cause or exc
            raise
        except Exception as exc:
            raise JobFailed(f"job {job.id} failed: {exc}", params=job.params, cause=exc) from exc

        duration_ms = (perf_counter() - started) * 1000.0
        logger.info(
            "[sweep] job={} params={} fitness={:.6g} nav={:.2f}",
            job.id,
            job.params,
            fitness,
            bt.nav,
        )
        return OptimizationResult(
            job_id=job.id,
            params=job.key,
            status=JobState.COMPLETED,
            fitness=fitness,
            final_nav=bt.nav,
            metrics=summary["equity"],
            duration_ms=duration_ms,
        )

    def cancel(self) -> int:
        """Cancel every job that has not started; running jobs finish normally."""
        cancelled = 0
        with self._lock:
            for job in self.jobs:
                if job.state is JobState.QUEUED and job.future is not None and job.future.cancel():
                    job.state = JobState.CANCELLED
                    cancelled += 1
        if cancelled:
            logger.info("[sweep] cancelled {} queued jobs sweep={}", cancelled, self.sweep_id)
        return cancelled

    def join(self) -> OptimizerReport:
        """Wait for every submitted job, then rank the completed ones."""
        if self._executor is None:
            raise RuntimeError("optimizer has not been started")
        future_map = {job.future: job for job in self.jobs if job.future is not None}
        try:
            for future in as_completed(future_map):
                job = future_map[future]
                if future.cancelled():
                    job.state = JobState.CANCELLED
                    continue
                try:
                    job.result = future.result()
                    job.state = JobState.COMPLETED
                    record_job("completed", {"algorithm": self.backtest.algorithm})
                except JobFailed as exc:
                    cause = exc.cause or exc
                    logger.opt(exception=cause).error("[sweep] job={} params={} failed", job.id, job.params)
                    job.state = JobState.FAILED
                    job.result = OptimizationResult(
                        job_id=job.id,
                        params=job.key,
                        status=JobState.FAILED,
                        error=f"{type(cause).__name__}: {cause}",
                    )
                    record_job("failed", {"algorithm": self.backtest.algorithm})
        except BaseException:
            self._event("failed", finished_at=datetime.now(timezone.utc).isoformat())
            raise
        finally:
            self._executor.shutdown(wait=True)
            self._executor = None

        report = self._report()
        self._event(
            "completed",
            results_count=len(report.ranked),
            failed_count=len(report.failed),
            cancelled_count=len(report.cancelled),
            summary_path=str(report.summary_path) if report.summary_path else None,
            finished_at=datetime.now(timezone.utc).isoformat(),
            duration_ms=report.duration_ms,
        )
        logger.info(
            "[sweep] completed sweep={} succeeded={} failed={} cancelled={}",
            self.sweep_id,
            len(report.ranked),
            len(report.failed),
            len(report.cancelled),
        )
        return report

    def run(self) -> OptimizerReport:
        return self.start().join()

    def _report(self) -> OptimizerReport:
        completed = [j.result for j in self.jobs if j.state is JobState.COMPLETED and j.result]
        failed = [j.result for j in self.jobs if j.state is JobState.FAILED and j.result]
        report = OptimizerReport(
            sweep_id=self.sweep_id,
            jobs=list(self.jobs),
            ranked=sorted(completed, reverse=True),
            failed=sorted(failed, key=lambda r: r.job_id),
            cancelled=[j for j in self.jobs if j.state is JobState.CANCELLED],
            duration_ms=(perf_counter() - self._started) * 1000.0,
        )
        if self.output_dir:
            report.summary_path = self._write_summary(report)
        return report

    def _write_summary(self, report: OptimizerReport) -> Path:
        sweep_dir = Path(self.output_dir) / self.sweep_id
        sweep_dir.mkdir(parents=True, exist_ok=True)
        summary_path = sweep_dir / "summary.jsonl"
        with summary_path.open("w") as handle:
            for record in report.results:
                handle.write(json.dumps(record.as_dict(), default=str) + "\n")
        return summary_path

    def rerun(self, result: OptimizationResult) -> Backtest:
        """Run one grid point again and return the finished Backtest for inspection."""
        cfg = self.backtest.model_copy(update={"params": {**self.backtest.params, **result.param_dict}})
        return Backtest(cfg, dal=self.dal, run_id=f"{self.sweep_id}-rerun-{result.job_id:04d}").run()


def run_sweep(config_path: Path, *, dal: Optional[MarketDataDAL] = None) -> OptimizerReport:
    cfg = load_sweep_config(config_path)
    return GridOptimizer.from_config(cfg, dal=dal).run()


__all__ = [
    "GridOptimizer",
    "Job",
    "JobState",
    "OptimizationResult",
    "OptimizerReport",
    "expand_param_grid",
    "run_sweep",
]
