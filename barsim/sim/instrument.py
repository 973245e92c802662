from __future__ import annotations

from datetime import datetime
from typing import Optional

from barsim.core.timeseries import DEFAULT_MAX_BARS_BACK, TimeSeries
from barsim.dal.schemas import Bar
from barsim.sim.account import Account, Order, OrderType, Position


class Instrument:
    """
    One tradable symbol inside a run.

    Holds Open/High/Low/Close/Volume series that advance only on steps where
    the symbol has a bar. Positions live in the Account and are looked up by
    symbol; ``trade`` only submits an order, settlement happens in the loop.
    """

    def __init__(
        self,
        symbol: str,
        account: Account,
        *,
        max_bars_back: int = DEFAULT_MAX_BARS_BACK,
        context=None,
    ) -> None:
        self.symbol = symbol
        self.account = account
        self._context = context
        self.open: TimeSeries[float] = TimeSeries(f"{symbol}.open", max_bars_back)
        self.high: TimeSeries[float] = TimeSeries(f"{symbol}.high", max_bars_back)
        self.low: TimeSeries[float] = TimeSeries(f"{symbol}.low", max_bars_back)
        self.close: TimeSeries[float] = TimeSeries(f"{symbol}.close", max_bars_back)
        self.volume: TimeSeries[float] = TimeSeries(f"{symbol}.volume", max_bars_back)
        self.bar: Optional[Bar] = None
        self.last_time: Optional[datetime] = None
        self.fresh_step = -1

    def advance(self, bar: Bar, step: int) -> None:
        self.open.append(bar.open)
        self.high.append(bar.high)
        self.low.append(bar.low)
        self.close.append(bar.close)
        self.volume.append(bar.volume)
        self.bar = bar
        self.last_time = bar.timestamp
        self.fresh_step = step

    @property
    def has_data(self) -> bool:
        return self.bar is not None

    def is_fresh(self, step: int) -> bool:
        return self.fresh_step == step

    @property
    def position(self) -> Position:
        return self.account.position(self.symbol)

    def trade(
        self,
        quantity: float,
        order_type: OrderType | str = OrderType.CLOSE_THIS_BAR,
        stop_price: Optional[float] = None,
        limit_price: Optional[float] = None,
    ) -> Order:
        ctx = self._context
        return self.account.submit(
            self.symbol,
            quantity,
            order_type,
            stop_price=stop_price,
            limit_price=limit_price,
            time=ctx.time if ctx is not None else self.last_time,
            step=ctx.step if ctx is not None else -1,
            warmup=ctx.in_warmup if ctx is not None else False,
        )

    def target_position(
        self, size: float, order_type: OrderType | str = OrderType.CLOSE_THIS_BAR
    ) -> Optional[Order]:
        """Trade the difference between ``size`` and the current position (plus pending orders)."""
        pending = sum(o.quantity for o in self.account.pending if o.symbol == self.symbol)
        delta = size - self.position.size - pending
        if abs(delta) < 1e-9:
            return None
        return self.trade(delta, order_type)

    def __repr__(self) -> str:
        return f"Instrument({self.symbol!r}, bars={len(self.close)})"


__all__ = ["Instrument"]
