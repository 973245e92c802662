from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

import pandas as pd
from loguru import logger

from barsim.backtest.config import BacktestConfig
from barsim.backtest.metrics import fitness_from, summarize
from barsim.core.exceptions import (
    ConfigurationError,
    DataUnavailable,
    InsufficientHistory,
    JobTimeout,
)
from barsim.dal.manager import MarketDataDAL
from barsim.logging_utils import logging_context
from barsim.settings import get_engine_settings
from barsim.sim.account import Account, CommissionSchedule, OrderStatus, slippage_model
from barsim.sim.context import RunContext
from barsim.sim.loop import SimulationLoop
from barsim.sim.registry import Strategy, create_algorithm
from barsim.telemetry import record_run, start_span


class Backtest:
    """
    Drives one strategy through one simulation.

    Args:
        config (BacktestConfig): What to run and over which range.
        dal (MarketDataDAL | None): Data access; shares its BarStore across
            every Backtest built with it.
        strategy (Strategy | None): Prebuilt strategy; built from the
            registry when omitted.
        run_id (str | None): Identity of the run's cache and log context.
        timeout_s (float | None): Wall-clock budget, checked after loading and
            around every step.
    """

    def __init__(
        self,
        config: BacktestConfig,
        *,
        dal: Optional[MarketDataDAL] = None,
        strategy: Optional[Strategy] = None,
        run_id: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> None:
        self.config = config
        self.dal = dal or MarketDataDAL()
        self.strategy = strategy or create_algorithm(config.algorithm, config.params)
        self.run_id = run_id
        self.timeout_s = timeout_s
        self.symbols: List[str] = list(config.symbols or self.strategy.symbols)
        if not self.symbols:
            raise ConfigurationError(f"algorithm {config.algorithm!r} has no symbols to trade")
        self.context: Optional[RunContext] = None
        self.skipped_steps = 0

    def _new_context(self) -> RunContext:
        engine = get_engine_settings()
        cfg = self.config
        commission = (
            cfg.commission.schedule()
            if cfg.commission is not None
            else CommissionSchedule(
                per_share=engine.commission_per_share, per_order=engine.commission_per_order
            )
        )
        account = Account(
            cash=cfg.initial_cash if cfg.initial_cash is not None else engine.initial_cash,
            commission=commission,
            fill_model=slippage_model(cfg.slippage) if cfg.slippage else None,
        )
        deadline = time.monotonic() + self.timeout_s if self.timeout_s else None
        return RunContext(
            run_id=self.run_id,
            account=account,
            max_bars_back=cfg.max_bars_back or engine.max_bars_back,
            start=cfg.start,
            deadline=deadline,
        )

    def run(self) -> "Backtest":
        cfg = self.config
        ctx = self._new_context()
        self.context = ctx
        first = cfg.warmup_start or cfg.start
        streams = {
            sym: self.dal.load(sym, start=first, end=cfg.end, vendor=cfg.vendor) for sym in self.symbols
        }
        if ctx.expired:
            raise JobTimeout(f"run {ctx.run_id} exceeded its deadline while loading data")
        attributes: Dict[str, Any] = {
            "algorithm": cfg.algorithm,
            "run_id": ctx.run_id,
            "symbols": ",".join(self.symbols),
        }
        for sym in self.symbols:
            ctx.add_instrument(sym)
        loop = SimulationLoop(ctx, streams, end=cfg.end)
        with logging_context(run_id=ctx.run_id), start_span("backtest.run", attributes):
            logger.info(
                "[backtest] start algorithm={} symbols={} params={}",
                cfg.algorithm,
                self.symbols,
                cfg.params,
            )
            self.strategy.on_start(ctx)
            for step in loop:
                try:
                    self.strategy.on_step(ctx, step)
                except (InsufficientHistory, DataUnavailable) as exc:
                    self.skipped_steps += 1
                    logger.debug("[backtest] step={} skipped: {}", step.index, exc)
            self.strategy.on_finish(ctx)
            logger.info(
                "[backtest] done steps={} nav={:.2f} fills={}",
                loop.steps,
                ctx.account.nav,
                sum(1 for e in ctx.account.log if e.status is OrderStatus.FILLED),
            )
        record_run({"algorithm": cfg.algorithm})
        return self

    # ------------------------------------------------------------------ results
    def _require_context(self) -> RunContext:
        if self.context is None:
            raise RuntimeError("backtest has not been run")
        return self.context

    def equity_frame(self, include_warmup: bool = False) -> pd.DataFrame:
        return self._require_context().equity_frame(include_warmup=include_warmup)

    def trades_frame(self) -> pd.DataFrame:
        log = self._require_context().account.log
        return pd.DataFrame([entry.as_dict() for entry in log])

    def summary(self) -> Dict[str, Any]:
        ctx = self._require_context()
        curve = ctx.equity_frame()["nav"]
        return summarize(curve, ctx.account.log)

    def report(self) -> float:
        """Scalar fitness: the strategy's own when defined, else the configured metric."""
        ctx = self._require_context()
        own = self.strategy.fitness(ctx)
        if own is not None:
            return float(own)
        return fitness_from(self.summary(), self.config.fitness)

    @property
    def nav(self) -> float:
        return self._require_context().account.nav


def run_backtest(config: BacktestConfig, *, dal: Optional[MarketDataDAL] = None) -> Backtest:
    return Backtest(config, dal=dal).run()


__all__ = ["Backtest", "run_backtest"]
