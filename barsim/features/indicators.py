"""
Feature engineering: lazy technical indicators.

Every indicator is itself a TimeSeries. Its value for the current step is
computed the first time it is read after one of its inputs advanced, then
memoized until an input advances again. Indicators are created through the
run's cache so that asking twice for ``sma(close, 20)`` yields one object,
and nested indicators pull from their inputs on demand.
"""

from __future__ import annotations

import math
import operator
from typing import Any, Callable, Optional, Sequence, Tuple, Union

import numpy as np
from loguru import logger

from barsim.core.exceptions import InsufficientHistory
from barsim.core.timeseries import DEFAULT_MAX_BARS_BACK, GAP, TimeSeries

TRADING_DAYS = 252

Number = Union[int, float]


class Indicator(TimeSeries[float]):
    """
    Base class for derived series.

    Subclasses implement ``calc``, reading inputs with ``get``. A calc that
    raises :class:`InsufficientHistory` records a warm-up gap for the step,
    and reading that gap raises :class:`InsufficientHistory` to the caller.
    """

    def __init__(
        self,
        name: str,
        inputs: Sequence[TimeSeries[Any]],
        max_bars_back: int = DEFAULT_MAX_BARS_BACK,
    ) -> None:
        super().__init__(name=name, max_bars_back=max_bars_back)
        if not inputs:
            raise ValueError(f"indicator {name} needs at least one input series")
        self.inputs: Tuple[TimeSeries[Any], ...] = tuple(inputs)
        self.computations = 0
        self._synced: Optional[Tuple[int, ...]] = None

    def calc(self) -> float:
        raise NotImplementedError

    def refresh(self) -> None:
        stamps = []
        for series in self.inputs:
            if isinstance(series, Indicator):
                series.refresh()
            stamps.append(series.stamp)
        current = tuple(stamps)
        if current == self._synced or not any(current):
            return
        # mark as synced before computing so self-reads inside calc see the previous value
        self._synced = current
        self.computations += 1
        try:
            value = self.calc()
        except InsufficientHistory:
            self._append_gap()
            return
        self.append(float(value))

    def get(self, bars_back: int = 0) -> float:
        self.refresh()
        return super().get(bars_back)

    def _previous(self) -> Optional[float]:
        """Last recorded value of this indicator, or None during warm-up."""
        if not self._data or self._data[0] is GAP:
            return None
        return self._data[0]  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Indicator implementations
# ---------------------------------------------------------------------------


class SMA(Indicator):
    def __init__(self, src: TimeSeries[float], n: int, **kw: Any) -> None:
        super().__init__(f"sma({src.name},{n})", [src], **kw)
        self.src, self.n = src, int(n)

    def calc(self) -> float:
        return sum(self.src[t] for t in range(self.n)) / self.n


class EMA(Indicator):
    def __init__(self, src: TimeSeries[float], n: int, **kw: Any) -> None:
        super().__init__(f"ema({src.name},{n})", [src], **kw)
        self.src, self.n = src, int(n)
        self.alpha = 2.0 / (self.n + 1.0)

    def calc(self) -> float:
        x = self.src[0]
        prev = self._previous()
        if prev is None:
            return x
        return prev + self.alpha * (x - prev)


class Highest(Indicator):
    def __init__(self, src: TimeSeries[float], n: int, **kw: Any) -> None:
        super().__init__(f"highest({src.name},{n})", [src], **kw)
        self.src, self.n = src, int(n)

    def calc(self) -> float:
        return max(self.src[t] for t in range(self.n))


class Lowest(Indicator):
    def __init__(self, src: TimeSeries[float], n: int, **kw: Any) -> None:
        super().__init__(f"lowest({src.name},{n})", [src], **kw)
        self.src, self.n = src, int(n)

    def calc(self) -> float:
        return min(self.src[t] for t in range(self.n))


class Returns(Indicator):
    def __init__(self, src: TimeSeries[float], **kw: Any) -> None:
        super().__init__(f"returns({src.name})", [src], **kw)
        self.src = src

    def calc(self) -> float:
        return self.src[0] / self.src[1] - 1.0


class LogReturns(Indicator):
    def __init__(self, src: TimeSeries[float], **kw: Any) -> None:
        super().__init__(f"log_returns({src.name})", [src], **kw)
        self.src = src

    def calc(self) -> float:
        return math.log(self.src[0] / self.src[1])


class StdDev(Indicator):
    def __init__(self, src: TimeSeries[float], n: int, **kw: Any) -> None:
        super().__init__(f"std_dev({src.name},{n})", [src], **kw)
        self.src, self.n = src, int(n)

    def calc(self) -> float:
        window = np.array([self.src[t] for t in range(self.n)], dtype=float)
        return float(window.std(ddof=0))


class Momentum(Indicator):
    """Annualized slope of a log-price linear regression over ``n`` bars."""

    def __init__(self, src: TimeSeries[float], n: int, **kw: Any) -> None:
        super().__init__(f"momentum({src.name},{n})", [src], **kw)
        self.src, self.n = src, max(2, int(n))

    def calc(self) -> float:
        x = -np.arange(self.n, dtype=float)
        y = np.log([self.src[t] for t in range(self.n)])
        slope = np.polyfit(x, y, 1)[0]
        return float(TRADING_DAYS * slope)


class Drawdown(Indicator):
    def __init__(self, src: TimeSeries[float], n: int, **kw: Any) -> None:
        super().__init__(f"drawdown({src.name},{n})", [src], **kw)
        self.src, self.n = src, int(n)

    def calc(self) -> float:
        peak = max(self.src[t] for t in range(self.n))
        return 1.0 - self.src[0] / peak if peak > 0 else 0.0


class MaxDrawdown(Indicator):
    def __init__(self, src: TimeSeries[float], n: int, **kw: Any) -> None:
        super().__init__(f"max_drawdown({src.name},{n})", [src], **kw)
        self.src, self.n = src, int(n)

    def calc(self) -> float:
        highest = 0.0
        max_dd = 0.0
        for t in range(self.n - 1, -1, -1):
            value = self.src[t]
            highest = max(highest, value)
            if highest > 0:
                max_dd = max(max_dd, 1.0 - value / highest)
        return max_dd


class Lambda(Indicator):
    """Arbitrary computation over input series; ``fn`` reads inputs via ``get``."""

    def __init__(
        self,
        name: str,
        fn: Callable[[], Number],
        inputs: Sequence[TimeSeries[Any]],
        **kw: Any,
    ) -> None:
        super().__init__(name, inputs, **kw)
        self.fn = fn

    def calc(self) -> float:
        return float(self.fn())


class BinaryOp(Indicator):
    _SYMBOLS = {operator.add: "+", operator.sub: "-", operator.mul: "*", operator.truediv: "/"}

    def __init__(
        self,
        a: TimeSeries[float],
        b: Union[TimeSeries[float], Number],
        op: Callable[[float, float], float],
        **kw: Any,
    ) -> None:
        b_name = b.name if isinstance(b, TimeSeries) else repr(float(b))
        inputs = [a, b] if isinstance(b, TimeSeries) else [a]
        super().__init__(f"({a.name}{self._SYMBOLS.get(op, '?')}{b_name})", inputs, **kw)
        self.a, self.b, self.op = a, b, op

    def calc(self) -> float:
        rhs = self.b[0] if isinstance(self.b, TimeSeries) else float(self.b)
        if self.op is operator.truediv and rhs == 0:
            logger.debug("[indicators] division by zero in {}", self.name)
            return math.nan
        return self.op(self.a[0], rhs)


# ---------------------------------------------------------------------------
# Cached constructors
# ---------------------------------------------------------------------------


def _cached(ctx: Any, name: str, params: Tuple[Any, ...], factory: Callable[..., Indicator]) -> Indicator:
    """
    Fetch or build an indicator in ``ctx``'s run cache.

    Parameters
    ----------
    ctx : RunContext
        Owner of the run cache; new indicators are registered with it so the
        loop can settle them each step.
    name : str
        Computation name, part of the cache key.
    params : tuple
        Hashable parameters (input series names, window lengths).
    factory : callable
        Called with ``max_bars_back`` when the key is not cached yet.
    """
    key = ctx.cache.key(name, *params)

    def create() -> Indicator:
        indicator = factory(max_bars_back=ctx.max_bars_back)
        ctx.register_indicator(indicator)
        return indicator

    return ctx.cache.get_or_create(key, create)


def sma(ctx: Any, src: TimeSeries[float], n: int) -> Indicator:
    """Simple moving average over ``n`` bars; warm-up until ``n`` bars exist."""
    return _cached(ctx, "sma", (src.name, int(n)), lambda **kw: SMA(src, n, **kw))


def ema(ctx: Any, src: TimeSeries[float], n: int) -> Indicator:
    """Exponential moving average, seeded with the first available value."""
    return _cached(ctx, "ema", (src.name, int(n)), lambda **kw: EMA(src, n, **kw))


def highest(ctx: Any, src: TimeSeries[float], n: int) -> Indicator:
    return _cached(ctx, "highest", (src.name, int(n)), lambda **kw: Highest(src, n, **kw))


def lowest(ctx: Any, src: TimeSeries[float], n: int) -> Indicator:
    return _cached(ctx, "lowest", (src.name, int(n)), lambda **kw: Lowest(src, n, **kw))


def returns(ctx: Any, src: TimeSeries[float]) -> Indicator:
    return _cached(ctx, "returns", (src.name,), lambda **kw: Returns(src, **kw))


def log_returns(ctx: Any, src: TimeSeries[float]) -> Indicator:
    return _cached(ctx, "log_returns", (src.name,), lambda **kw: LogReturns(src, **kw))


def std_dev(ctx: Any, src: TimeSeries[float], n: int) -> Indicator:
    return _cached(ctx, "std_dev", (src.name, int(n)), lambda **kw: StdDev(src, n, **kw))


def momentum(ctx: Any, src: TimeSeries[float], n: int) -> Indicator:
    return _cached(ctx, "momentum", (src.name, int(n)), lambda **kw: Momentum(src, n, **kw))


def drawdown(ctx: Any, src: TimeSeries[float], n: int) -> Indicator:
    return _cached(ctx, "drawdown", (src.name, int(n)), lambda **kw: Drawdown(src, n, **kw))


def max_drawdown(ctx: Any, src: TimeSeries[float], n: int) -> Indicator:
    return _cached(
        ctx, "max_drawdown", (src.name, int(n)), lambda **kw: MaxDrawdown(src, n, **kw)
    )


def lambda_series(
    ctx: Any,
    name: str,
    fn: Callable[[], Number],
    inputs: Sequence[TimeSeries[Any]],
) -> Indicator:
    """
    Wrap a callable as a memoized indicator.

    ``name`` identifies the computation within the run; the same name with the
    same inputs returns the existing indicator and ignores ``fn``.
    """
    params = (name,) + tuple(s.name for s in inputs)
    return _cached(ctx, "lambda", params, lambda **kw: Lambda(name, fn, inputs, **kw))


def _binary(ctx: Any, a: TimeSeries[float], b: Union[TimeSeries[float], Number], op) -> Indicator:
    b_key = b.name if isinstance(b, TimeSeries) else float(b)
    return _cached(
        ctx,
        f"op{BinaryOp._SYMBOLS[op]}",
        (a.name, b_key),
        lambda **kw: BinaryOp(a, b, op, **kw),
    )


def add(ctx: Any, a: TimeSeries[float], b: Union[TimeSeries[float], Number]) -> Indicator:
    return _binary(ctx, a, b, operator.add)


def subtract(ctx: Any, a: TimeSeries[float], b: Union[TimeSeries[float], Number]) -> Indicator:
    return _binary(ctx, a, b, operator.sub)


def multiply(ctx: Any, a: TimeSeries[float], b: Union[TimeSeries[float], Number]) -> Indicator:
    return _binary(ctx, a, b, operator.mul)


def divide(ctx: Any, a: TimeSeries[float], b: Union[TimeSeries[float], Number]) -> Indicator:
    return _binary(ctx, a, b, operator.truediv)


__all__ = [
    "Indicator",
    "sma",
    "ema",
    "highest",
    "lowest",
    "returns",
    "log_returns",
    "std_dev",
    "momentum",
    "drawdown",
    "max_drawdown",
    "lambda_series",
    "add",
    "subtract",
    "multiply",
    "divide",
]
