"""Simulation core: account, instruments, run context, loop and registry."""

from .account import (
    Account,
    CommissionSchedule,
    FillModel,
    LogEntry,
    Order,
    OrderStatus,
    OrderType,
    Position,
    slippage_model,
)
from .context import RunContext
from .instrument import Instrument
from .loop import SimStep, SimulationLoop
from .registry import Strategy, create_algorithm, get_algorithm, register_algorithm

__all__ = [
    "Account",
    "CommissionSchedule",
    "FillModel",
    "LogEntry",
    "Order",
    "OrderStatus",
    "OrderType",
    "Position",
    "RunContext",
    "Instrument",
    "SimStep",
    "SimulationLoop",
    "Strategy",
    "create_algorithm",
    "get_algorithm",
    "register_algorithm",
    "slippage_model",
]
