from __future__ import annotations

import time as _time
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import pandas as pd

from barsim.core.cache import RunCache
from barsim.core.exceptions import DataUnavailable
from barsim.core.timeseries import DEFAULT_MAX_BARS_BACK, TimeSeries
from barsim.sim.account import Account
from barsim.sim.instrument import Instrument


class RunContext:
    """
    Everything owned by one simulation run.

    The run's cache, account, instruments and derived series are created
    here and dropped together when the run is discarded. Nothing in a
    RunContext is shared with another run; only the bar tuples the
    instruments were fed from are shared.

    Attributes:
        run_id (str): Identity used in cache keys and log context.
        step (int): Index of the current simulated step (-1 before the first).
        time (datetime | None): Simulated time of the current step.
        sim_time (TimeSeries): Simulated time, one value per step.
        nav (TimeSeries): Account NAV at the end of every completed step.
        start (datetime | None): Orders submitted before this time are
            cancelled as warm-up.
        deadline (float | None): ``time.monotonic()`` value after which the
            loop aborts the run.
    """

    def __init__(
        self,
        *,
        run_id: Optional[str] = None,
        account: Optional[Account] = None,
        max_bars_back: int = DEFAULT_MAX_BARS_BACK,
        start: Optional[datetime] = None,
        deadline: Optional[float] = None,
    ) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.account = account or Account()
        self.max_bars_back = int(max_bars_back)
        self.start = start
        self.deadline = deadline
        self.step = -1
        self.time: Optional[datetime] = None
        self.cache = RunCache(self.run_id, clock=lambda: self.step)
        self.instruments: Dict[str, Instrument] = {}
        self.indicators: List[TimeSeries] = []
        self.sim_time: TimeSeries[datetime] = TimeSeries("sim_time", self.max_bars_back)
        self.nav: TimeSeries[float] = TimeSeries("nav", self.max_bars_back)
        self.equity: List[dict] = []

    # ------------------------------------------------------------- instruments
    def add_instrument(self, symbol: str) -> Instrument:
        inst = self.instruments.get(symbol)
        if inst is None:
            inst = Instrument(symbol, self.account, max_bars_back=self.max_bars_back, context=self)
            self.instruments[symbol] = inst
        return inst

    def instrument(self, symbol: str) -> Instrument:
        """Instrument for ``symbol``; raises DataUnavailable until it has a bar."""
        inst = self.instruments.get(symbol)
        if inst is None:
            raise DataUnavailable(f"unknown instrument {symbol!r}")
        if not inst.has_data:
            raise DataUnavailable(f"no data for {symbol} at step {self.step}")
        return inst

    def is_ready(self, *symbols: str) -> bool:
        names: Iterable[str] = symbols or self.instruments.keys()
        return all(s in self.instruments and self.instruments[s].has_data for s in names)

    def has_fresh_bar(self, symbol: str) -> bool:
        inst = self.instruments.get(symbol)
        return inst is not None and inst.is_fresh(self.step)

    def fresh_bars(self) -> dict:
        return {
            sym: inst.bar for sym, inst in self.instruments.items() if inst.is_fresh(self.step)
        }

    # -------------------------------------------------------------- indicators
    def register_indicator(self, indicator: TimeSeries) -> None:
        self.indicators.append(indicator)

    def settle_indicators(self) -> None:
        """Bring every indicator up to date so its history has no holes."""
        for indicator in list(self.indicators):
            indicator.refresh()  # type: ignore[attr-defined]

    # ------------------------------------------------------------------ status
    @property
    def in_warmup(self) -> bool:
        return self.start is not None and self.time is not None and self.time < self.start

    @property
    def expired(self) -> bool:
        return self.deadline is not None and _time.monotonic() >= self.deadline

    def record_equity(self) -> None:
        nav = self.account.nav
        self.nav.append(nav)
        self.equity.append(
            {
                "time": self.time,
                "step": self.step,
                "cash": self.account.cash,
                "nav": nav,
                "warmup": self.in_warmup,
            }
        )

    def equity_frame(self, include_warmup: bool = False) -> pd.DataFrame:
        frame = pd.DataFrame(self.equity, columns=["time", "step", "cash", "nav", "warmup"])
        if not include_warmup:
            frame = frame[~frame["warmup"].astype(bool)]
        return frame.set_index("time")

    def __repr__(self) -> str:
        return f"RunContext(run_id={self.run_id!r}, step={self.step}, instruments={list(self.instruments)})"


__all__ = ["RunContext"]
