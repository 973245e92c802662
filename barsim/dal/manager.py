from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from loguru import logger

from barsim.dal.schemas import Bar, Bars, as_utc
from barsim.dal.store import BarStore, BarTuple, StoreKey
from barsim.dal.vendors.base import FetchRequest, VendorClient
from barsim.dal.vendors.csv import CsvVendor
from barsim.telemetry import start_span


class MarketDataDAL:
    """
    Unified interface for historical bars.

    ``fetch_bars`` asks a vendor and normalizes the result; ``load`` goes
    through the shared :class:`BarStore` so repeated runs over the same symbol
    and range reuse one immutable tuple of bars.
    """

    def __init__(
        self,
        *,
        vendor_clients: Optional[Dict[str, VendorClient]] = None,
        store: Optional[BarStore] = None,
        data_dir: Optional[Path] = None,
        default_vendor: Optional[str] = None,
    ) -> None:
        self.vendor_clients = dict(vendor_clients or self._default_vendors(data_dir))
        self.store = store or BarStore()
        self.default_vendor = default_vendor or next(iter(self.vendor_clients), "csv")

    def _default_vendors(self, data_dir: Optional[Path]) -> Dict[str, VendorClient]:
        if data_dir is None:
            from barsim.settings import get_settings

            data_dir = get_settings().engine.data_dir
        return {"csv": CsvVendor(data_dir)}

    def register_vendor(self, name: str, client: VendorClient) -> None:
        self.vendor_clients[name] = client

    def _get_vendor(self, vendor: str) -> VendorClient:
        try:
            return self.vendor_clients[vendor]
        except KeyError as exc:
            raise ValueError(f"Unknown vendor: {vendor}") from exc

    def fetch_bars(
        self,
        symbol: str,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        interval: str = "1Day",
        vendor: Optional[str] = None,
    ) -> Bars:
        vendor = vendor or self.default_vendor
        client = self._get_vendor(vendor)
        request = FetchRequest(
            symbol=symbol.upper(), start=as_utc(start), end=as_utc(end), interval=interval
        )
        with start_span("dal.fetch_bars", {"vendor": vendor, "symbol": request.symbol}):
            raw = client.fetch_bars(request)
        bars = self._normalize(raw, request)
        logger.debug(
            "[dal] vendor={} symbol={} raw={} normalized={}",
            vendor,
            request.symbol,
            len(raw),
            len(bars),
        )
        return bars

    def load(
        self,
        symbol: str,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        vendor: Optional[str] = None,
    ) -> BarTuple:
        key = self.key_for(symbol, start=start, end=end, vendor=vendor)
        return self.store.get_or_load(
            key,
            lambda: self.fetch_bars(key.symbol, start=key.start, end=key.end, vendor=key.vendor).data,
        )

    def prefetch(
        self,
        symbols: Iterable[str],
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        vendor: Optional[str] = None,
    ) -> int:
        keys = [self.key_for(sym, start=start, end=end, vendor=vendor) for sym in symbols]
        return self.store.prefetch(
            (
                key,
                (lambda k=key: self.fetch_bars(k.symbol, start=k.start, end=k.end, vendor=k.vendor).data),
            )
            for key in keys
        )

    def key_for(
        self,
        symbol: str,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        vendor: Optional[str] = None,
    ) -> StoreKey:
        return StoreKey(
            vendor=vendor or self.default_vendor,
            symbol=symbol.upper(),
            start=as_utc(start),
            end=as_utc(end),
        )

    @staticmethod
    def _normalize(bars: Bars, request: FetchRequest) -> Bars:
        by_ts: Dict[datetime, Bar] = {}
        for bar in bars.data:
            ts = as_utc(bar.timestamp)
            if request.start is not None and ts < request.start:
                continue
            if request.end is not None and ts > request.end:
                continue
            # later duplicates win
            by_ts[ts] = bar if ts == bar.timestamp else replace(bar, timestamp=ts)
        ordered: List[Bar] = [by_ts[ts] for ts in sorted(by_ts)]
        out = Bars(symbol=request.symbol, vendor=bars.vendor)
        out.extend(bar if bar.symbol == request.symbol else replace(bar, symbol=request.symbol) for bar in ordered)
        return out


__all__ = ["MarketDataDAL"]
