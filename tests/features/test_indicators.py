from __future__ import annotations

import math

import numpy as np
import pytest

from barsim.core.exceptions import InsufficientHistory
from barsim.core.timeseries import TimeSeries
from barsim.features import indicators as ind
from barsim.sim.context import RunContext


def _advance(ctx: RunContext, src: TimeSeries, value: float) -> None:
    ctx.step += 1
    src.append(value)


def _replay(values, build):
    """Feed ``values`` step by step; returns the indicator value (or None) after each step."""
    ctx = RunContext(run_id="replay")
    src = TimeSeries("px")
    indicator = build(ctx, src)
    out = []
    for v in values:
        _advance(ctx, src, v)
        try:
            out.append(indicator[0])
        except InsufficientHistory:
            out.append(None)
        ctx.settle_indicators()
    return out


def test_sma_warms_up_then_averages():
    values = _replay([1, 2, 3, 4, 5], lambda ctx, s: ind.sma(ctx, s, 3))
    assert values == [None, None, 2.0, 3.0, 4.0]


def test_warmup_gap_is_not_readable_later():
    ctx = RunContext(run_id="gap")
    src = TimeSeries("px")
    sma = ind.sma(ctx, src, 2)
    for v in (1.0, 2.0, 3.0):
        _advance(ctx, src, v)
        ctx.settle_indicators()
    assert sma[0] == 2.5
    assert sma[1] == 1.5
    with pytest.raises(InsufficientHistory):
        sma[2]


def test_no_look_ahead_prefix_values_identical():
    rng = np.random.default_rng(7)
    series = list(100 + np.cumsum(rng.normal(size=80)))

    def build(ctx, src):
        return ind.ema(ctx, ind.sma(ctx, src, 5), 4)

    full = _replay(series, build)
    for cut in (10, 33, 61):
        assert _replay(series[:cut], build) == full[:cut]
    # reversing the history changes later values but never earlier ones
    altered = series[:40] + list(reversed(series[40:]))
    assert _replay(altered, build)[:40] == full[:40]


def test_computation_runs_once_per_step_regardless_of_reads():
    ctx = RunContext(run_id="memo")
    src = TimeSeries("px")
    calls = []

    def compute():
        calls.append(ctx.step)
        return src[0] * 2

    doubled = ind.lambda_series(ctx, "double", compute, [src])
    for v in (1.0, 2.0, 3.0):
        _advance(ctx, src, v)
        for _ in range(5):
            assert doubled[0] == v * 2
        ctx.settle_indicators()
    assert calls == [0, 1, 2]
    assert doubled.computations == 3


def test_nested_indicators_do_not_recompute_inputs():
    ctx = RunContext(run_id="nested")
    src = TimeSeries("px")
    inner = ind.sma(ctx, src, 2)
    outer = ind.sma(ctx, inner, 2)
    other = ind.ema(ctx, inner, 3)
    for v in range(1, 7):
        _advance(ctx, src, float(v))
        try:
            outer[0]
            other[0]
        except InsufficientHistory:
            pass
        ctx.settle_indicators()
    assert inner.computations == 6
    assert outer[0] == pytest.approx((5.5 + 4.5) / 2)


def test_indicators_are_shared_within_a_run_only():
    ctx_a = RunContext(run_id="a")
    ctx_b = RunContext(run_id="b")
    src = TimeSeries("px")
    assert ind.sma(ctx_a, src, 5) is ind.sma(ctx_a, src, 5)
    assert ind.sma(ctx_a, src, 5) is not ind.sma(ctx_a, src, 6)
    assert ind.sma(ctx_a, src, 5) is not ind.sma(ctx_b, src, 5)
    assert len(ctx_a.indicators) == 2


def test_catalog_values():
    closes = [10.0, 11.0, 9.0, 12.0, 8.0]
    assert _replay(closes, lambda c, s: ind.highest(c, s, 3))[-1] == 12.0
    assert _replay(closes, lambda c, s: ind.lowest(c, s, 3))[-1] == 8.0
    assert _replay(closes, lambda c, s: ind.returns(c, s))[-1] == pytest.approx(8 / 12 - 1)
    assert _replay(closes, lambda c, s: ind.log_returns(c, s))[-1] == pytest.approx(math.log(8 / 12))
    assert _replay(closes, lambda c, s: ind.std_dev(c, s, 5))[-1] == pytest.approx(np.std(closes))
    assert _replay(closes, lambda c, s: ind.drawdown(c, s, 5))[-1] == pytest.approx(1 - 8 / 12)
    assert _replay(closes, lambda c, s: ind.max_drawdown(c, s, 5))[-1] == pytest.approx(1 - 8 / 12)


def test_ema_seeds_with_first_value():
    values = _replay([10.0, 20.0], lambda c, s: ind.ema(c, s, 3))
    assert values == [10.0, pytest.approx(15.0)]


def test_momentum_of_exponential_growth():
    growth = 0.001
    closes = [100 * math.exp(growth * i) for i in range(30)]
    value = _replay(closes, lambda c, s: ind.momentum(c, s, 20))[-1]
    assert value == pytest.approx(growth * 252, rel=1e-6)


def test_binary_ops_and_division_by_zero():
    ctx = RunContext(run_id="ops")
    a = TimeSeries("a")
    b = TimeSeries("b")
    total = ind.add(ctx, a, b)
    ratio = ind.divide(ctx, a, b)
    scaled = ind.multiply(ctx, a, 2.0)
    diff = ind.subtract(ctx, a, b)
    ctx.step = 0
    a.append(6.0)
    b.append(3.0)
    assert (total[0], ratio[0], scaled[0], diff[0]) == (9.0, 2.0, 12.0, 3.0)
    ctx.step = 1
    a.append(1.0)
    b.append(0.0)
    assert math.isnan(ratio[0])
