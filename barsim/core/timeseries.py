"""Backward-looking time series: index 0 is the current value."""

from __future__ import annotations

from collections import deque
from typing import Deque, Generic, Iterator, List, TypeVar

from barsim.core.exceptions import InsufficientHistory

T = TypeVar("T")

DEFAULT_MAX_BARS_BACK = 256


class _Gap:
    """Marker for a step on which a derived series had no value (warm-up)."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "<gap>"


GAP = _Gap()


class TimeSeries(Generic[T]):
    """
    Append-only series read by "bars back from now".

    Attributes:
        name (str): Stable identity used in cache keys, e.g. ``SPY.close``.
        max_bars_back (int): Maximum depth retained; older values are dropped.
        stamp (int): Number of appends so far; changes whenever the series
            advances and is used by derived series to detect fresh input.
    """

    def __init__(self, name: str = "", max_bars_back: int = DEFAULT_MAX_BARS_BACK) -> None:
        if max_bars_back < 1:
            raise ValueError("max_bars_back must be >= 1")
        self.name = name
        self.max_bars_back = int(max_bars_back)
        self.stamp = 0
        self._data: Deque[object] = deque(maxlen=self.max_bars_back)

    # ------------------------------------------------------------------ writes
    def append(self, value: T) -> None:
        self._data.appendleft(value)
        self.stamp += 1

    def _append_gap(self) -> None:
        self._data.appendleft(GAP)
        self.stamp += 1

    # ------------------------------------------------------------------- reads
    def get(self, bars_back: int = 0) -> T:
        bars_back = int(bars_back)
        if bars_back < 0 or bars_back >= len(self._data):
            raise InsufficientHistory(self.name, bars_back, len(self._data))
        value = self._data[bars_back]
        if value is GAP:
            raise InsufficientHistory(self.name, bars_back, self._valid_depth())
        return value  # type: ignore[return-value]

    def __getitem__(self, bars_back: int) -> T:
        return self.get(bars_back)

    def __len__(self) -> int:
        return len(self._data)

    def is_ready(self, bars_back: int = 0) -> bool:
        """True when ``get(0..bars_back)`` would all succeed."""
        if bars_back >= len(self._data):
            return False
        return all(self._data[i] is not GAP for i in range(bars_back + 1))

    def values(self, count: int | None = None) -> List[T]:
        """Oldest-to-newest list of the most recent ``count`` values (gaps skipped)."""
        items = list(self._data)[:count] if count is not None else list(self._data)
        return [v for v in reversed(items) if v is not GAP]  # type: ignore[misc]

    def __iter__(self) -> Iterator[T]:
        for value in self._data:
            if value is not GAP:
                yield value  # type: ignore[misc]

    def _valid_depth(self) -> int:
        depth = 0
        for value in self._data:
            if value is GAP:
                break
            depth += 1
        return depth

    def __repr__(self) -> str:
        return f"TimeSeries(name={self.name!r}, bars={len(self._data)})"


__all__ = ["TimeSeries", "GAP", "DEFAULT_MAX_BARS_BACK"]
