from __future__ import annotations

# Importing the modules registers the reference algorithms.
from .buy_and_hold import BuyAndHold
from .momentum import MomentumRotation
from .params import BuyAndHoldParams, MomentumRotationParams, SmaCrossoverParams
from .sma_crossover import SmaCrossover

__all__ = [
    "BuyAndHold",
    "BuyAndHoldParams",
    "SmaCrossover",
    "SmaCrossoverParams",
    "MomentumRotation",
    "MomentumRotationParams",
]
