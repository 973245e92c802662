from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class BuyAndHoldParams:
    symbol: str = "SPY"
    fraction: float = 1.0  # share of NAV invested on the first tradable bar
    order_type: str = "open_next_bar"


@dataclass(frozen=True)
class SmaCrossoverParams:
    symbol: str = "SPY"
    fast: int = 10
    slow: int = 30
    fraction: float = 0.95
    allow_short: bool = False

    # Execution semantics
    order_type: str = "close_this_bar"  # or "open_next_bar"


@dataclass(frozen=True)
class MomentumRotationParams:
    # Universe and signal
    symbols: Tuple[str, ...] = ("SPY", "TLT", "GLD")
    lookback: int = 60  # bars in the log-price regression
    top_n: int = 1
    trend_window: int = 100  # price must be above its SMA; 0 disables the filter

    # Rebalancing
    rebalance_every: int = 21
    fraction: float = 0.95
    order_type: str = "open_next_bar"
