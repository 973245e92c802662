from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Dict, Sequence

import numpy as np
import pandas as pd
import pytest

from barsim.dal.manager import MarketDataDAL
from barsim.dal.schemas import Bar
from barsim.dal.vendors.frame import FrameVendor
from barsim.logging_utils import setup_test_logging

os.environ.setdefault("ENV", "test")

_ENV_KEYS = (
    "BARSIM_MAX_BARS_BACK",
    "BARSIM_INITIAL_CASH",
    "BARSIM_COMMISSION_PER_SHARE",
    "BARSIM_COMMISSION_PER_ORDER",
    "BARSIM_DATA_DIR",
    "BARSIM_MAX_WORKERS",
    "BARSIM_JOB_TIMEOUT_S",
    "BARSIM_SWEEP_OUTPUT_DIR",
    "BARSIM_SWEEP_REGISTRY",
)


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    setup_test_logging(level=os.getenv("PYTEST_LOGLEVEL", "INFO"))
    yield


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def day(n: int) -> datetime:
    """UTC midnight ``n`` days after 2024-01-01 (day(1) is 2024-01-02)."""
    return datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(days=n)


def frame_from_rows(rows: Sequence[Sequence[float]], *, start: str = "2024-01-01") -> pd.DataFrame:
    """Rows of (open, high, low, close[, volume]) on consecutive days."""
    idx = pd.date_range(start, periods=len(rows), freq="D", tz="UTC")
    cols = ["open", "high", "low", "close", "volume"][: len(rows[0])]
    return pd.DataFrame([list(r) for r in rows], index=idx, columns=cols)


def frame_from_closes(closes: Sequence[float], *, start: str = "2024-01-01") -> pd.DataFrame:
    """Flat bars (open == high == low == close) from a close sequence."""
    return frame_from_rows([(c, c, c, c, 1_000.0) for c in closes], start=start)


def bars_at(symbol: str, days: Sequence[int], close: float = 100.0) -> list[Bar]:
    return [
        Bar(symbol=symbol, timestamp=day(d), open=close, high=close, low=close, close=close + d)
        for d in days
    ]


@pytest.fixture
def random_walk_frame() -> pd.DataFrame:
    rng = np.random.default_rng(1337)
    n = 300
    rets = rng.normal(loc=0.0004, scale=0.01, size=n)
    close = 100.0 * np.exp(np.cumsum(rets))
    open_ = np.concatenate([[100.0], close[:-1]]) * (1 + rng.normal(0, 0.002, size=n))
    high = np.maximum(open_, close) * (1 + np.abs(rng.normal(0, 0.003, size=n)))
    low = np.minimum(open_, close) * (1 - np.abs(rng.normal(0, 0.003, size=n)))
    idx = pd.bdate_range("2023-01-02", periods=n, tz="UTC")
    return pd.DataFrame(
        {"open": open_, "high": high, "low": low, "close": close, "volume": 1_000_000.0},
        index=idx,
    )


@pytest.fixture
def make_dal():
    def _make(frames: Dict[str, pd.DataFrame]) -> MarketDataDAL:
        return MarketDataDAL(vendor_clients={"frame": FrameVendor(frames)}, default_vendor="frame")

    return _make
