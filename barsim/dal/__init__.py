"""Market data access: bar schemas, vendors and the shared bar store."""

from .schemas import Bar, Bars
from .store import BarStore, StoreKey

__all__ = [
    "MarketDataDAL",
    "Bar",
    "Bars",
    "BarStore",
    "StoreKey",
]


def __getattr__(name: str):
    if name == "MarketDataDAL":
        from .manager import MarketDataDAL as _MarketDataDAL

        return _MarketDataDAL
    raise AttributeError(f"module {__name__} has no attribute {name!r}")
