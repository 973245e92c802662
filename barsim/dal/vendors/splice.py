from __future__ import annotations

from dataclasses import replace

from loguru import logger

from barsim.dal.schemas import Bars
from barsim.dal.vendors.base import FetchRequest, VendorClient


class SplicedVendor(VendorClient):
    """
    Backfills a primary provider with older history from a secondary one.

    Secondary bars strictly before the primary's first bar are prepended.
    When both providers have a bar at the primary's first timestamp, the
    backfilled prices are scaled by ``primary.close / secondary.close`` at that
    bar so the joined series has no jump at the seam.
    """

    def __init__(self, primary: VendorClient, backfill: VendorClient, name: str | None = None) -> None:
        super().__init__(name or f"{primary.name}+{backfill.name}")
        self.primary = primary
        self.backfill = backfill

    def fetch_bars(self, request: FetchRequest) -> Bars:
        head = self.primary.fetch_bars(request)
        older = self.backfill.fetch_bars(request)
        symbol = request.symbol.upper()
        out = Bars(symbol=symbol, vendor=self.name)

        if not head.data:
            out.extend(replace(bar, symbol=symbol, vendor=self.name) for bar in older.data)
            return out

        seam = head.data[0]
        scale = 1.0
        for bar in older.data:
            if bar.timestamp == seam.timestamp and bar.close:
                scale = seam.close / bar.close
                break

        prefix = [
            replace(
                bar,
                symbol=symbol,
                open=bar.open * scale,
                high=bar.high * scale,
                low=bar.low * scale,
                close=bar.close * scale,
                vendor=self.name,
                source="backfill",
            )
            for bar in older.data
            if bar.timestamp < seam.timestamp
        ]
        logger.debug(
            "[splice] symbol={} backfilled={} primary={} scale={:.6f}",
            symbol,
            len(prefix),
            len(head.data),
            scale,
        )
        out.extend(prefix)
        out.extend(replace(bar, symbol=symbol, vendor=self.name) for bar in head.data)
        return out
