from __future__ import annotations

import math

from barsim.sim.registry import Strategy, register_algorithm

from .params import BuyAndHoldParams


@register_algorithm("buy_and_hold", BuyAndHoldParams, "Invest once and hold to the end")
class BuyAndHold(Strategy):
    def __init__(self, params: BuyAndHoldParams) -> None:
        super().__init__(params)
        self.symbols = (params.symbol,)
        self.entered = False

    def on_step(self, ctx, step) -> None:
        p = self.params
        if self.entered or ctx.in_warmup or not ctx.has_fresh_bar(p.symbol):
            return
        inst = ctx.instrument(p.symbol)
        shares = math.floor(ctx.account.nav * p.fraction / inst.close[0])
        if shares > 0:
            inst.trade(shares, p.order_type)
            self.entered = True
