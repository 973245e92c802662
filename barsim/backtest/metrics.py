from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from barsim.core.exceptions import ConfigurationError
from barsim.sim.account import LogEntry, OrderStatus

TRADING_DAYS = 252

FITNESS_METRICS = ("nav", "total_return", "cagr", "sharpe", "sortino", "mar")


# -------- Data classes --------
@dataclass
class EquityMetrics:
    start: pd.Timestamp | None
    end: pd.Timestamp | None
    periods: int
    final_nav: float
    cagr: float
    total_return: float
    vol: float
    sharpe: float
    sortino: float
    max_drawdown: float
    max_dd_len: int
    mar: float


@dataclass
class TradeMetrics:
    n_fills: int
    n_cancelled: int
    n_closing: int
    win_rate: float
    avg_pnl: float
    best: float
    worst: float
    gross_profit: float
    gross_loss: float
    commissions: float


# -------- Internals --------
def _to_returns(curve: pd.Series) -> pd.Series:
    s = curve.astype(float).dropna()
    if s.empty:
        return pd.Series(dtype=float)
    return s.pct_change().replace([np.inf, -np.inf], np.nan).fillna(0.0).astype(float)


def _annualize_returns(mean_ret: float, std_ret: float, periods_per_year: int) -> Tuple[float, float]:
    return mean_ret * periods_per_year, std_ret * math.sqrt(periods_per_year)


def _cagr(equity: pd.Series) -> float:
    s = equity.astype(float).dropna()
    if len(s) < 2:
        return 0.0
    # clamp very short backtests to avoid extreme annualization
    elapsed_years = max(0.25, (s.index[-1] - s.index[0]).days / 365.25)
    start_val = float(s.iloc[0])
    end_val = float(s.iloc[-1])
    if start_val <= 0 or end_val <= 0:
        return -1.0 if start_val > 0 else 0.0
    return (end_val / start_val) ** (1.0 / elapsed_years) - 1.0


def _drawdown_curve(curve: pd.Series) -> Tuple[pd.Series, float, int]:
    s = curve.astype(float).dropna()
    if s.empty:
        return pd.Series(dtype=float), 0.0, 0
    dd = s / s.cummax() - 1.0
    max_dd = float(dd.min())

    # Longest drawdown duration (consecutive dd < 0)
    max_run = run = 0
    for m in (dd < 0).to_numpy():
        if m:
            run += 1
            max_run = max(max_run, run)
        else:
            run = 0
    return dd, max_dd, int(max_run)


# -------- Public API --------
def equity_stats(
    curve: pd.Series,
    *,
    periods_per_year: int = TRADING_DAYS,
    risk_free_rate: float = 0.0,
) -> EquityMetrics:
    """
    Compute equity metrics from a NAV curve indexed by datetime.

    risk_free_rate: annual risk-free rate used to compute excess return in Sharpe.
    """
    curve = curve.astype(float).dropna()
    if curve.empty:
        return EquityMetrics(None, None, 0, 0.0, 0, 0, 0, 0, 0, 0, 0, 0)
    if not curve.index.is_monotonic_increasing:
        logger.warning("[metrics] equity index not monotonic; sorting by index")
        curve = curve.sort_index()

    rets = _to_returns(curve)
    rf_per_period = float(risk_free_rate) / float(periods_per_year)
    if rf_per_period != 0.0:
        rets = rets - rf_per_period
    mean = float(rets.mean())
    std = float(rets.std(ddof=0))
    ann_mean, ann_std = _annualize_returns(mean, std, periods_per_year)
    sharpe = ann_mean / ann_std if ann_std > 0 else 0.0

    neg = rets[rets < 0]
    downs = float(neg.std(ddof=0)) if len(neg) else 0.0
    sortino = ann_mean / (downs * math.sqrt(periods_per_year)) if downs > 0 else 0.0

    _, max_dd, max_dd_len = _drawdown_curve(curve)
    total_ret = float(curve.iloc[-1] / curve.iloc[0] - 1.0) if curve.iloc[0] else 0.0
    cagr = _cagr(curve)
    mar = min(cagr / abs(max_dd), 100.0) if max_dd < 0 else 0.0

    logger.debug(
        "[metrics] {}→{} n={} cagr={:.4f} tot={:.4f} vol={:.4f} sharpe={:.3f} maxDD={:.4f} mar={:.3f}",
        curve.index[0],
        curve.index[-1],
        len(curve),
        cagr,
        total_ret,
        ann_std,
        sharpe,
        max_dd,
        mar,
    )

    return EquityMetrics(
        start=curve.index[0],
        end=curve.index[-1],
        periods=len(curve),
        final_nav=float(curve.iloc[-1]),
        cagr=cagr,
        total_return=total_ret,
        vol=ann_std,
        sharpe=sharpe,
        sortino=sortino,
        max_drawdown=max_dd,
        max_dd_len=max_dd_len,
        mar=mar,
    )


def trade_stats(log: Iterable[LogEntry]) -> TradeMetrics:
    entries = list(log)
    fills = [e for e in entries if e.status is OrderStatus.FILLED]
    cancelled = sum(1 for e in entries if e.status is OrderStatus.CANCELLED)
    commissions = float(sum(e.commission for e in fills))

    pnls = np.array([e.realized_pnl for e in fills if e.realized_pnl != 0.0], dtype=float)
    if not len(pnls):
        return TradeMetrics(len(fills), cancelled, 0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, commissions)

    wins = pnls[pnls > 0]
    losses = pnls[pnls <= 0]
    return TradeMetrics(
        n_fills=len(fills),
        n_cancelled=cancelled,
        n_closing=len(pnls),
        win_rate=float(len(wins)) / len(pnls),
        avg_pnl=float(pnls.mean()),
        best=float(pnls.max()),
        worst=float(pnls.min()),
        gross_profit=float(wins.sum()) if len(wins) else 0.0,
        gross_loss=float(losses.sum()) if len(losses) else 0.0,
        commissions=commissions,
    )


def summarize(
    curve: pd.Series,
    log: Iterable[LogEntry],
    *,
    periods_per_year: int = TRADING_DAYS,
) -> Dict[str, Any]:
    eqm = equity_stats(curve, periods_per_year=periods_per_year)
    tm = trade_stats(log)
    return {"equity": asdict(eqm), "trades": asdict(tm)}


def fitness_from(summary: Dict[str, Any], metric: str) -> float:
    """Pick a scalar fitness out of a ``summarize`` result."""
    if metric not in FITNESS_METRICS:
        raise ConfigurationError(f"unknown fitness metric {metric!r}; expected one of {FITNESS_METRICS}")
    key = "final_nav" if metric == "nav" else metric
    return float(summary["equity"][key])


def drawdown_series(curve: pd.Series) -> pd.Series:
    s = curve.astype(float).dropna()
    if s.empty:
        return pd.Series(dtype=float)
    return s / s.cummax() - 1.0


__all__ = [
    "EquityMetrics",
    "TradeMetrics",
    "FITNESS_METRICS",
    "equity_stats",
    "trade_stats",
    "summarize",
    "fitness_from",
    "drawdown_series",
]
