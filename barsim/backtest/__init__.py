"""Backtesting: single runs, metrics, configuration and parameter sweeps."""

from .config import BacktestConfig, CommissionConfig, ParamRange, SweepConfig
from .runner import Backtest, run_backtest
from .sweeps import GridOptimizer, OptimizationResult, OptimizerReport, expand_param_grid

__all__ = [
    "Backtest",
    "BacktestConfig",
    "CommissionConfig",
    "GridOptimizer",
    "OptimizationResult",
    "OptimizerReport",
    "ParamRange",
    "SweepConfig",
    "expand_param_grid",
    "run_backtest",
]
