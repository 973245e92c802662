from __future__ import annotations

from pathlib import Path

import pandas as pd
from loguru import logger

from barsim.core.exceptions import DataValidationError
from barsim.dal.schemas import Bars
from barsim.dal.vendors.base import FetchRequest, VendorClient

_DATE_COLUMNS = ("date", "timestamp", "time", "datetime")


class CsvVendor(VendorClient):
    """
    Reads ``<data_dir>/<SYMBOL>.csv`` files.

    The file needs a date column (``date``, ``timestamp``, ``time`` or
    ``datetime``) and open/high/low/close columns; volume is optional.
    Naive timestamps are interpreted in ``timezone_name``.
    """

    def __init__(self, data_dir: Path | str, timezone_name: str = "UTC") -> None:
        super().__init__("csv")
        self.data_dir = Path(data_dir)
        self.timezone_name = timezone_name

    def path_for(self, symbol: str) -> Path:
        return self.data_dir / f"{symbol.upper()}.csv"

    def fetch_bars(self, request: FetchRequest) -> Bars:
        symbol = request.symbol.upper()
        path = self.path_for(symbol)
        if not path.exists():
            logger.warning("[csv] no data file for symbol={} path={}", symbol, path)
            return Bars(symbol=symbol, vendor=self.name)

        df = pd.read_csv(path)
        df = self._normalize_dataframe(df, path)
        logger.debug("[csv] loaded {} rows symbol={} path={}", len(df), symbol, path)
        return Bars.from_dataframe(symbol, df, vendor=self.name)

    # ------------------------------------------------------------------
    # Data shaping helpers
    # ------------------------------------------------------------------

    def _normalize_dataframe(self, df: pd.DataFrame, path: Path) -> pd.DataFrame:
        normalized = df.rename(columns={col: str(col).strip().lower() for col in df.columns})
        date_col = next((c for c in _DATE_COLUMNS if c in normalized.columns), None)
        if date_col is None:
            raise DataValidationError(f"{path}: no date column (expected one of {_DATE_COLUMNS})")

        index = pd.to_datetime(normalized[date_col])
        if getattr(index.dt, "tz", None) is None:
            index = index.dt.tz_localize(self.timezone_name)
        normalized.index = pd.DatetimeIndex(index).tz_convert("UTC")

        cols = ["open", "high", "low", "close", "volume"]
        for col in cols:
            if col not in normalized.columns:
                normalized[col] = 0.0 if col == "volume" else float("nan")
        out = normalized[cols].astype(float)
        return out.dropna(subset=["close"])
