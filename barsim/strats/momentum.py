from __future__ import annotations

import math
from typing import Dict

from loguru import logger

from barsim.core.exceptions import InsufficientHistory
from barsim.features import indicators as ind
from barsim.sim.registry import Strategy, register_algorithm

from .params import MomentumRotationParams


@register_algorithm(
    "momentum_rotation",
    MomentumRotationParams,
    "Hold the strongest symbols by annualized log-regression momentum",
)
class MomentumRotation(Strategy):
    def __init__(self, params: MomentumRotationParams) -> None:
        super().__init__(params)
        self.symbols = tuple(params.symbols)
        self.last_rebalance = None

    def on_start(self, ctx) -> None:
        p = self.params
        self.scores = {s: ind.momentum(ctx, ctx.instruments[s].close, p.lookback) for s in self.symbols}
        self.trends = (
            {s: ind.sma(ctx, ctx.instruments[s].close, p.trend_window) for s in self.symbols}
            if p.trend_window
            else {}
        )

    def _eligible(self, ctx) -> Dict[str, float]:
        out: Dict[str, float] = {}
        for sym in self.symbols:
            if not ctx.has_fresh_bar(sym):
                continue
            try:
                score = self.scores[sym][0]
                if sym in self.trends and ctx.instruments[sym].close[0] < self.trends[sym][0]:
                    continue
            except InsufficientHistory:
                continue
            if score > 0:
                out[sym] = score
        return out

    def on_step(self, ctx, step) -> None:
        p = self.params
        if ctx.in_warmup or not ctx.is_ready(*self.symbols):
            return
        if self.last_rebalance is not None and step.index - self.last_rebalance < p.rebalance_every:
            return

        ranked = sorted(self._eligible(ctx).items(), key=lambda kv: kv[1], reverse=True)
        picks = [sym for sym, _ in ranked[: p.top_n]]
        budget = ctx.account.nav * p.fraction / max(1, p.top_n)
        for sym in self.symbols:
            if not ctx.has_fresh_bar(sym):
                continue
            inst = ctx.instrument(sym)
            target = math.floor(budget / inst.close[0]) if sym in picks else 0
            inst.target_position(target, p.order_type)
        self.last_rebalance = step.index
        logger.debug("[momentum] step={} picks={}", step.index, picks)
