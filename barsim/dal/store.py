"""Run-independent bar storage shared read-only across simulations."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional, Tuple

from loguru import logger

from barsim.dal.schemas import Bar


@dataclass(frozen=True, slots=True)
class StoreKey:
    vendor: str
    symbol: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None


BarTuple = Tuple[Bar, ...]
Loader = Callable[[], Iterable[Bar]]


class BarStore:
    """
    Thread-safe store of immutable bar tuples.

    Each key is initialized at most once: concurrent callers for the same key
    block on a per-key lock while the first caller loads, then all receive the
    same tuple. Callers for different keys load concurrently.
    """

    def __init__(self) -> None:
        self._data: Dict[StoreKey, BarTuple] = {}
        self._locks: Dict[StoreKey, threading.Lock] = {}
        self._guard = threading.Lock()
        self.loads = 0

    def _lock_for(self, key: StoreKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get_or_load(self, key: StoreKey, loader: Loader) -> BarTuple:
        cached = self._data.get(key)
        if cached is not None:
            return cached
        with self._lock_for(key):
            cached = self._data.get(key)
            if cached is not None:
                return cached
            bars = tuple(loader())
            with self._guard:
                self._data[key] = bars
                self.loads += 1
            logger.debug(
                "[store] loaded vendor={} symbol={} bars={}", key.vendor, key.symbol, len(bars)
            )
            return bars

    def get(self, key: StoreKey) -> Optional[BarTuple]:
        return self._data.get(key)

    def prefetch(self, requests: Iterable[Tuple[StoreKey, Loader]]) -> int:
        """Load every key not yet present; returns the number of keys loaded."""
        before = self.loads
        for key, loader in requests:
            self.get_or_load(key, loader)
        loaded = self.loads - before
        if loaded:
            logger.info("[store] prefetched {} series ({} cached)", loaded, len(self))
        return loaded

    def clear(self) -> None:
        with self._guard:
            self._data.clear()
            self._locks.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


__all__ = ["BarStore", "StoreKey", "BarTuple"]
