from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from barsim.dal.schemas import Bars


@dataclass(frozen=True, slots=True)
class FetchRequest:
    symbol: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    interval: str = "1Day"


class VendorClient(abc.ABC):
    """
    Base class for bar providers.

    Implementations return bars for ``request.symbol`` in ascending timestamp
    order. Repeated calls for the same request must return identical values;
    the optimizer relies on that to produce reproducible fitness values.
    """

    name: str

    def __init__(self, name: str) -> None:
        self.name = name

    @abc.abstractmethod
    def fetch_bars(self, request: FetchRequest) -> Bars:
        """Fetch historical bars synchronously."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
