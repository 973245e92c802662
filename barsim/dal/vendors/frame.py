from __future__ import annotations

from typing import Dict, Mapping

import pandas as pd
from loguru import logger

from barsim.dal.schemas import Bars
from barsim.dal.vendors.base import FetchRequest, VendorClient


class FrameVendor(VendorClient):
    """Serves bars from in-memory OHLCV frames keyed by symbol."""

    def __init__(self, frames: Mapping[str, pd.DataFrame], name: str = "frame") -> None:
        super().__init__(name)
        self._frames: Dict[str, pd.DataFrame] = {
            symbol.upper(): frame.sort_index() for symbol, frame in frames.items()
        }
        self.calls = 0

    def fetch_bars(self, request: FetchRequest) -> Bars:
        self.calls += 1
        symbol = request.symbol.upper()
        frame = self._frames.get(symbol)
        if frame is None:
            logger.debug("[{}] no frame for symbol={}", self.name, symbol)
            return Bars(symbol=symbol, vendor=self.name)
        return Bars.from_dataframe(symbol, frame, vendor=self.name)
