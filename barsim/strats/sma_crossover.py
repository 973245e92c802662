from __future__ import annotations

import math

from barsim.features import indicators as ind
from barsim.sim.registry import Strategy, register_algorithm

from .params import SmaCrossoverParams


@register_algorithm("sma_crossover", SmaCrossoverParams, "Long (or short) on fast/slow SMA crosses")
class SmaCrossover(Strategy):
    """
    Holds a long position while the fast SMA is above the slow SMA.

    With ``allow_short`` the position flips short below the slow SMA instead
    of going flat. Reads raise InsufficientHistory until ``slow`` bars exist;
    the runner skips those steps.
    """

    def __init__(self, params: SmaCrossoverParams) -> None:
        if params.fast >= params.slow:
            raise ValueError(f"fast ({params.fast}) must be shorter than slow ({params.slow})")
        super().__init__(params)
        self.symbols = (params.symbol,)

    def on_start(self, ctx) -> None:
        close = ctx.instruments[self.params.symbol].close
        self.fast = ind.sma(ctx, close, self.params.fast)
        self.slow = ind.sma(ctx, close, self.params.slow)

    def on_step(self, ctx, step) -> None:
        p = self.params
        if not ctx.has_fresh_bar(p.symbol):
            return
        inst = ctx.instrument(p.symbol)
        bullish = self.fast[0] > self.slow[0]

        size = math.floor(ctx.account.nav * p.fraction / inst.close[0])
        if bullish:
            target = size
        else:
            target = -size if p.allow_short else 0
        if (target > 0) != (inst.position.size > 0) or (target < 0) != (inst.position.size < 0):
            inst.target_position(target, p.order_type)
