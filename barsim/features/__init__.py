"""
Feature engineering package.

- `indicators`: lazy, per-run memoized technical indicators built on TimeSeries

Usage:
    from barsim.features import indicators as ind
    fast = ind.sma(ctx, spy.close, 10)
"""

from . import indicators

__all__ = ["indicators"]
