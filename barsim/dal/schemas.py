from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import pandas as pd

_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


def as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime; naive values are taken to be UTC already."""
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class Bar:
    """Normalized OHLCV bar."""

    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    vendor: str = "unknown"
    source: str = "historical"


@dataclass(slots=True)
class Bars:
    """Collection of bars for a single symbol."""

    symbol: str
    vendor: str
    data: List[Bar] = field(default_factory=list)

    def append(self, bar: Bar) -> None:
        if bar.symbol != self.symbol:
            raise ValueError("bar symbol mismatch")
        self.data.append(bar)

    def extend(self, bars: Iterable[Bar]) -> None:
        for bar in bars:
            self.append(bar)

    def __len__(self) -> int:
        return len(self.data)

    def to_dataframe(self) -> pd.DataFrame:
        if not self.data:
            return pd.DataFrame(columns=_COLUMNS).set_index("timestamp")
        raw = [
            {
                "timestamp": bar.timestamp,
                "open": bar.open,
                "high": bar.high,
                "low": bar.low,
                "close": bar.close,
                "volume": bar.volume,
            }
            for bar in self.data
        ]
        return pd.DataFrame(raw).set_index("timestamp").sort_index()

    @classmethod
    def from_dataframe(
        cls, symbol: str, df: pd.DataFrame, *, vendor: str = "frame", source: str = "historical"
    ) -> "Bars":
        """
        Build bars from a frame indexed by timestamp with OHLCV columns.

        Column names are matched case-insensitively; a missing volume column
        is treated as zero volume.
        """
        out = cls(symbol=symbol, vendor=vendor)
        if df is None or df.empty:
            return out
        frame = df.rename(columns=lambda c: str(c).strip().lower())
        missing = {"open", "high", "low", "close"} - set(frame.columns)
        if missing:
            raise KeyError(f"frame for {symbol} missing columns: {sorted(missing)}")
        for ts, row in frame.iterrows():
            stamp = pd.Timestamp(ts)
            if stamp.tzinfo is None:
                stamp = stamp.tz_localize("UTC")
            out.append(
                Bar(
                    symbol=symbol,
                    timestamp=stamp.to_pydatetime(),
                    open=float(row["open"]),
                    high=float(row["high"]),
                    low=float(row["low"]),
                    close=float(row["close"]),
                    volume=float(row.get("volume", 0.0) or 0.0),
                    vendor=vendor,
                    source=source,
                )
            )
        return out


__all__ = ["Bar", "Bars", "as_utc"]
