from __future__ import annotations

import time

import pytest

from barsim.core.exceptions import DataUnavailable, DataValidationError, JobTimeout
from barsim.dal.schemas import Bar
from barsim.sim.account import Account, OrderStatus, OrderType
from barsim.sim.context import RunContext
from barsim.sim.loop import SimulationLoop
from conftest import bars_at, day


def _ohlc(symbol, rows, first_day=0):
    return [
        Bar(symbol, day(first_day + i), o, h, l, c, 1_000.0)
        for i, (o, h, l, c) in enumerate(rows)
    ]


THREE_BARS = [
    (10.0, 11.0, 9.0, 10.5),
    (11.0, 12.0, 10.0, 11.5),
    (12.0, 13.0, 11.0, 12.5),
]


def test_merge_advances_only_symbols_with_a_bar():
    ctx = RunContext(run_id="merge")
    streams = {"A": bars_at("A", [1, 3, 5]), "B": bars_at("B", [2, 3, 4])}

    steps = list(SimulationLoop(ctx, streams))

    assert [s.time for s in steps] == [day(n) for n in (1, 2, 3, 4, 5)]
    assert [s.advanced for s in steps] == [
        frozenset({"A"}),
        frozenset({"B"}),
        frozenset({"A", "B"}),
        frozenset({"B"}),
        frozenset({"A"}),
    ]
    assert [s.is_last for s in steps] == [False, False, False, False, True]
    assert [s.index for s in steps] == [0, 1, 2, 3, 4]
    assert len(ctx.instruments["A"].close) == 3
    assert len(ctx.instruments["B"].close) == 3
    assert len(ctx.sim_time) == 5
    assert ctx.sim_time[0] == day(5)


def test_stale_instrument_keeps_previous_bar():
    ctx = RunContext(run_id="stale")
    loop = SimulationLoop(ctx, {"A": bars_at("A", [1, 3]), "B": bars_at("B", [1, 2, 3])})
    seen = {}
    for step in loop:
        a = ctx.instrument("A")
        seen[step.index] = (a.close[0], ctx.has_fresh_bar("A"))
    assert seen == {0: (101.0, True), 1: (101.0, False), 2: (103.0, True)}


def test_unordered_stream_is_rejected():
    ctx = RunContext(run_id="bad")
    stream = bars_at("A", [1, 2]) + bars_at("A", [2])
    with pytest.raises(DataValidationError):
        list(SimulationLoop(ctx, {"A": stream}))


def test_no_streams_rejected():
    with pytest.raises(ValueError):
        SimulationLoop(RunContext(), {})


def test_instrument_without_data_is_unavailable():
    ctx = RunContext(run_id="late")
    loop = SimulationLoop(ctx, {"A": bars_at("A", [1, 2]), "B": bars_at("B", [2])})
    it = iter(loop)
    next(it)
    assert ctx.is_ready("A")
    assert not ctx.is_ready("A", "B")
    with pytest.raises(DataUnavailable):
        ctx.instrument("B")
    with pytest.raises(DataUnavailable):
        ctx.instrument("ZZZ")
    next(it)
    assert ctx.is_ready()
    assert ctx.instrument("B").close[0] == 102.0


def test_end_bound_stops_the_loop():
    ctx = RunContext(run_id="end")
    steps = list(SimulationLoop(ctx, {"A": bars_at("A", [1, 2, 3, 4])}, end=day(2)))
    assert [s.time for s in steps] == [day(1), day(2)]
    assert steps[-1].is_last


def test_deadline_aborts_the_run():
    ctx = RunContext(run_id="slow", deadline=time.monotonic() - 1.0)
    with pytest.raises(JobTimeout):
        list(SimulationLoop(ctx, {"A": bars_at("A", [1, 2])}))


def test_fill_timing_is_literal():
    ctx = RunContext(run_id="fills", account=Account(cash=1_000.0))
    orders = {}
    for step in SimulationLoop(ctx, {"X": _ohlc("X", THREE_BARS)}):
        x = ctx.instrument("X")
        if step.index == 0:
            orders["close"] = x.trade(10)
            orders["open"] = x.trade(5, OrderType.OPEN_NEXT_BAR)
        elif step.index == 1:
            # next-bar orders fill at the open, before the strategy sees the step
            assert orders["open"].status is OrderStatus.FILLED
            orders["exit"] = x.trade(-15, "open_next_bar")
            assert orders["exit"].status is OrderStatus.PENDING

    assert (orders["close"].fill_price, orders["close"].filled_at) == (10.5, day(0))
    assert (orders["open"].fill_price, orders["open"].filled_at) == (11.0, day(1))
    assert (orders["exit"].fill_price, orders["exit"].filled_at) == (12.0, day(2))
    acct = ctx.account
    assert acct.positions == {}
    assert acct.cash == pytest.approx(1_000.0 - 105.0 - 55.0 + 180.0)
    assert acct.realized_pnl == pytest.approx(20.0)
    assert acct.nav == pytest.approx(1_020.0)


def test_nav_recorded_after_close_fills():
    ctx = RunContext(run_id="nav", account=Account(cash=1_000.0))
    for step in SimulationLoop(ctx, {"X": _ohlc("X", THREE_BARS)}):
        if step.index == 0:
            ctx.instrument("X").trade(10)
    frame = ctx.equity_frame()
    assert list(frame["nav"]) == pytest.approx([1_000.0, 1_010.0, 1_020.0])
    assert list(frame["cash"]) == pytest.approx([895.0] * 3)
    assert ctx.nav[0] == pytest.approx(1_020.0)


def test_stop_orders_fill_or_cancel_on_the_next_bar():
    ctx = RunContext(run_id="stops", account=Account(cash=10_000.0))
    orders = {}
    for step in SimulationLoop(ctx, {"X": _ohlc("X", THREE_BARS)}):
        x = ctx.instrument("X")
        if step.index == 0:
            orders["hit"] = x.trade(1, "stop_next_bar", stop_price=11.5)
        elif step.index == 1:
            orders["miss"] = x.trade(1, "stop_next_bar", stop_price=14.0)
    assert orders["hit"].fill_price == 11.5
    assert orders["hit"].filled_at == day(1)
    assert orders["miss"].status is OrderStatus.CANCELLED
    assert "not reached" in orders["miss"].reason


def test_orders_without_a_fresh_bar_are_cancelled():
    ctx = RunContext(run_id="stale-orders")
    streams = {"A": bars_at("A", [0, 1, 2]), "B": bars_at("B", [0, 2])}
    orders = {}
    for step in SimulationLoop(ctx, streams):
        b = ctx.instrument("B")
        if step.index == 0:
            orders["next"] = b.trade(1, "open_next_bar")
        elif step.index == 1:
            orders["close"] = b.trade(1)
    for order in orders.values():
        assert order.status is OrderStatus.CANCELLED
        assert order.filled_at is None
    assert orders["next"].reason.startswith("no bar")
    assert ctx.account.cash == 100_000.0
    cancelled = [e for e in ctx.account.log if e.status is OrderStatus.CANCELLED]
    assert [e.time for e in cancelled] == [day(1), day(1)]


def test_warmup_orders_are_cancelled():
    ctx = RunContext(run_id="warm", start=day(2))
    orders = []
    for step in SimulationLoop(ctx, {"X": bars_at("X", [0, 1, 2, 3])}):
        orders.append(ctx.instrument("X").trade(1))
    assert [o.status for o in orders] == [
        OrderStatus.CANCELLED,
        OrderStatus.CANCELLED,
        OrderStatus.FILLED,
        OrderStatus.FILLED,
    ]
    assert "warm-up" in orders[0].reason
    assert list(ctx.equity_frame().index) == [day(2), day(3)]
    assert len(ctx.equity_frame(include_warmup=True)) == 4


def test_pending_orders_cancelled_when_data_ends():
    ctx = RunContext(run_id="tail")
    orders = []
    for step in SimulationLoop(ctx, {"X": bars_at("X", [0, 1])}):
        if step.is_last:
            orders.append(ctx.instrument("X").trade(1, "open_next_bar"))
    assert orders[0].status is OrderStatus.CANCELLED
    assert "data ended" in orders[0].reason
    assert ctx.account.pending == []


def test_limit_orders_fill_on_the_next_bar():
    ctx = RunContext(run_id="limits", account=Account(cash=10_000.0))
    orders = {}
    for step in SimulationLoop(ctx, {"X": _ohlc("X", THREE_BARS)}):
        x = ctx.instrument("X")
        if step.index == 0:
            orders["dip"] = x.trade(1, OrderType.LIMIT_NEXT_BAR, limit_price=10.5)
        elif step.index == 1:
            orders["miss"] = x.trade(1, "limit_next_bar", limit_price=10.0)
    assert (orders["dip"].fill_price, orders["dip"].filled_at) == (10.5, day(1))
    assert orders["miss"].status is OrderStatus.CANCELLED
    assert "buy limit" in orders["miss"].reason


def test_ended_stream_is_delisted_at_its_last_close():
    ctx = RunContext(run_id="delist", account=Account(cash=1_000.0))
    streams = {"A": bars_at("A", [0, 1]), "B": bars_at("B", range(10))}
    closed_at = None
    for step in SimulationLoop(ctx, streams):
        if step.index == 0:
            ctx.instrument("A").trade(2)
        if closed_at is None and "A" not in ctx.account.positions and step.index > 0:
            closed_at = step.time

    # last A bar on day 1; more than five days later is day 7
    assert closed_at == day(7)
    entry = ctx.account.log[-1]
    assert entry.order_type is OrderType.DELISTED
    assert (entry.price, entry.time, entry.commission) == (101.0, day(7), 0.0)
    assert ctx.account.cash == pytest.approx(1_000.0 - 200.0 + 202.0)


def test_no_delisting_within_the_grace_period():
    ctx = RunContext(run_id="grace")
    streams = {"A": bars_at("A", [0, 1]), "B": bars_at("B", range(5))}
    for step in SimulationLoop(ctx, streams):
        if step.index == 0:
            ctx.instrument("A").trade(2)
    assert ctx.account.positions["A"].size == 2
    assert all(e.order_type is not OrderType.DELISTED for e in ctx.account.log)


def test_delisting_can_be_disabled():
    ctx = RunContext(run_id="keep")
    streams = {"A": bars_at("A", [0]), "B": bars_at("B", range(10))}
    for step in SimulationLoop(ctx, streams, delist_after=None):
        if step.index == 0:
            ctx.instrument("A").trade(1)
    assert ctx.account.positions["A"].size == 1


def test_deadline_checked_when_a_slow_step_returns():
    ctx = RunContext(run_id="slow-last", deadline=time.monotonic() + 0.5)
    with pytest.raises(JobTimeout):
        for step in SimulationLoop(ctx, {"A": bars_at("A", [1])}):
            time.sleep(0.6)
