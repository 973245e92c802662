from __future__ import annotations

import time

import pytest

from barsim.backtest.config import BacktestConfig, CommissionConfig, load_backtest_config
from barsim.backtest.runner import Backtest, run_backtest
from barsim.core.exceptions import ConfigurationError, JobTimeout
from barsim.dal.manager import MarketDataDAL
from barsim.dal.vendors.frame import FrameVendor
from barsim.sim.account import OrderStatus
from conftest import day, frame_from_closes


def _config(**overrides):
    base = dict(algorithm="buy_and_hold", params={"symbol": "SPY"}, initial_cash=1_000.0)
    base.update(overrides)
    return BacktestConfig(**base)


def test_buy_and_hold_final_nav(make_dal):
    dal = make_dal({"SPY": frame_from_closes([10, 10, 12, 15])})

    bt = run_backtest(_config(), dal=dal)

    assert bt.nav == pytest.approx(1_500.0)
    fills = bt.trades_frame()
    assert list(fills["status"]) == ["filled"]
    assert fills["price"].iloc[0] == 10.0
    assert fills["quantity"].iloc[0] == 100
    assert bt.report() == pytest.approx(1_500.0)
    assert bt.summary()["equity"]["total_return"] == pytest.approx(0.5)


def test_commission_comes_out_of_nav(make_dal):
    dal = make_dal({"SPY": frame_from_closes([10, 10, 12, 15])})
    cfg = _config(commission=CommissionConfig(per_order=1.0))
    assert run_backtest(cfg, dal=dal).nav == pytest.approx(1_499.0)


def test_engine_defaults_from_environment(make_dal, monkeypatch):
    monkeypatch.setenv("BARSIM_INITIAL_CASH", "2000")
    monkeypatch.setenv("BARSIM_COMMISSION_PER_ORDER", "2.5")
    dal = make_dal({"SPY": frame_from_closes([10, 10, 12, 15])})
    bt = run_backtest(_config(initial_cash=None), dal=dal)
    assert bt.context.account.initial_cash == 2_000.0
    assert bt.nav == pytest.approx(3_000.0 - 2.5)


def test_sma_crossover_enters_after_history_fills(make_dal):
    closes = [10, 9, 8, 7, 6, 7, 8, 9, 10, 11, 12]
    dal = make_dal({"SPY": frame_from_closes(closes)})
    cfg = BacktestConfig(
        algorithm="sma_crossover",
        params={"symbol": "SPY", "fast": 2, "slow": 4},
        initial_cash=1_000.0,
    )

    bt = Backtest(cfg, dal=dal).run()

    assert bt.skipped_steps == 3
    filled = [e for e in bt.context.account.log if e.status is OrderStatus.FILLED]
    assert len(filled) == 1
    assert filled[0].price == 8.0
    assert filled[0].time == day(6)
    assert filled[0].quantity == 118  # floor(1000 * 0.95 / 8)
    assert bt.nav == pytest.approx(1_000.0 + 118 * 4)


def test_warmup_bars_feed_history_but_not_trades(make_dal):
    dal = make_dal({"SPY": frame_from_closes([10, 10, 10, 10, 20])})
    cfg = _config(warmup_start=day(0), start=day(2))

    bt = run_backtest(cfg, dal=dal)

    equity = bt.equity_frame()
    assert list(equity.index) == [day(2), day(3), day(4)]
    assert len(bt.equity_frame(include_warmup=True)) == 5
    fill = bt.trades_frame().iloc[0]
    assert fill["time"] == day(3)
    assert bt.nav == pytest.approx(2_000.0)


def test_runs_share_bars_but_not_state(make_dal):
    dal = make_dal({"SPY": frame_from_closes([10, 10, 12, 15])})
    first = run_backtest(_config(), dal=dal)
    second = run_backtest(_config(params={"symbol": "SPY", "fraction": 0.5}), dal=dal)

    assert dal.vendor_clients["frame"].calls == 1
    assert first.context.run_id != second.context.run_id
    assert first.nav == pytest.approx(1_500.0)
    assert second.nav == pytest.approx(1_250.0)


def test_strategy_without_symbols_is_rejected(make_dal):
    cfg = BacktestConfig(algorithm="momentum_rotation", params={"symbols": ()})
    with pytest.raises(ConfigurationError):
        Backtest(cfg, dal=make_dal({}))


def test_results_need_a_run(make_dal):
    bt = Backtest(_config(), dal=make_dal({}))
    with pytest.raises(RuntimeError):
        bt.summary()


def test_unknown_fitness_metric(make_dal):
    dal = make_dal({"SPY": frame_from_closes([10, 11])})
    bt = run_backtest(_config(fitness="alpha"), dal=dal)
    with pytest.raises(ConfigurationError):
        bt.report()


def test_momentum_rotation_picks_the_trending_symbol(make_dal):
    up = [100 * 1.01**i for i in range(40)]
    down = [100 * 0.99**i for i in range(40)]
    dal = make_dal({"UP": frame_from_closes(up), "DN": frame_from_closes(down)})
    cfg = BacktestConfig(
        algorithm="momentum_rotation",
        params={
            "symbols": ("UP", "DN"),
            "lookback": 10,
            "trend_window": 0,
            "rebalance_every": 5,
        },
        initial_cash=10_000.0,
    )

    bt = run_backtest(cfg, dal=dal)

    positions = bt.context.account.positions
    assert set(positions) == {"UP"}
    assert positions["UP"].size > 0
    assert bt.nav > 10_000.0


def test_yaml_config_with_plain_dates_runs(make_dal, tmp_path):
    path = tmp_path / "bt.yaml"
    path.write_text(
        "algorithm: buy_and_hold\n"
        "params: {symbol: SPY}\n"
        "initial_cash: 1000\n"
        "warmup_start: 2024-01-01\n"
        "start: 2024-01-02\n"
        "end: 2024-01-04\n"
    )
    dal = make_dal({"SPY": frame_from_closes([10, 10, 10, 15, 20, 30])})

    bt = run_backtest(load_backtest_config(path), dal=dal)

    assert list(bt.equity_frame().index) == [day(1), day(2), day(3)]
    assert bt.trades_frame().iloc[0]["time"] == day(2)
    assert bt.nav == pytest.approx(1_500.0)


def test_slippage_is_paid_on_fills(make_dal):
    dal = make_dal({"SPY": frame_from_closes([10, 10, 12, 15])})
    bt = run_backtest(_config(slippage=0.01), dal=dal)
    fill = bt.trades_frame().iloc[0]
    assert fill["price"] == pytest.approx(10.1)
    assert bt.nav == pytest.approx(1_000.0 - 1_010.0 + 1_500.0)


class _SlowVendor(FrameVendor):
    def fetch_bars(self, request):
        time.sleep(0.3)
        return super().fetch_bars(request)


def test_deadline_checked_after_loading():
    vendor = _SlowVendor({"SPY": frame_from_closes([10, 11])}, name="slow")
    dal = MarketDataDAL(vendor_clients={"slow": vendor}, default_vendor="slow")
    bt = Backtest(_config(), dal=dal, timeout_s=0.1)
    with pytest.raises(JobTimeout, match="loading"):
        bt.run()
