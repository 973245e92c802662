"""Explicit name -> constructor registry for trading algorithms."""

from __future__ import annotations

from dataclasses import dataclass, fields, is_dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Type

from loguru import logger

from barsim.core.exceptions import ConfigurationError


class Strategy:
    """
    Behavioral entry point driven by the backtest runner.

    ``on_step`` runs once per simulated step; it reads instruments and
    indicators from ``ctx`` and calls ``Instrument.trade``. ``fitness`` is
    optional; when it returns None the runner falls back to the configured
    metric.
    """

    symbols: Sequence[str] = ()

    def __init__(self, params: Any = None) -> None:
        self.params = params

    def on_start(self, ctx) -> None:
        return None

    def on_step(self, ctx, step) -> None:
        raise NotImplementedError

    def on_finish(self, ctx) -> None:
        return None

    def fitness(self, ctx) -> Optional[float]:
        return None


@dataclass(frozen=True)
class AlgorithmSpec:
    name: str
    params_cls: Type[Any]
    factory: Callable[[Any], Strategy]
    description: str = ""


_REGISTRY: Dict[str, AlgorithmSpec] = {}


def register_algorithm(name: str, params_cls: Type[Any], description: str = ""):
    """Class/function decorator adding ``name`` to the registry."""

    def decorator(factory: Callable[[Any], Strategy]):
        if name in _REGISTRY and _REGISTRY[name].factory is not factory:
            logger.warning("[registry] replacing algorithm {}", name)
        _REGISTRY[name] = AlgorithmSpec(name, params_cls, factory, description)
        return factory

    return decorator


def get_algorithm(name: str) -> AlgorithmSpec:
    _ensure_builtin()
    try:
        return _REGISTRY[name]
    except KeyError as exc:
        known = ", ".join(sorted(_REGISTRY)) or "<none>"
        raise ConfigurationError(f"unknown algorithm {name!r} (known: {known})") from exc


def available_algorithms() -> list[str]:
    _ensure_builtin()
    return sorted(_REGISTRY)


def build_params(params_cls: Type[Any], values: Optional[Mapping[str, Any]] = None) -> Any:
    """
    Instantiate ``params_cls`` from a mapping of overrides.

    Grid values arrive as floats; fields whose default is an int receive an
    int when the value is integral.
    """
    values = dict(values or {})
    if not is_dataclass(params_cls):
        return params_cls(**values)
    known = {f.name: f for f in fields(params_cls)}
    unknown = sorted(set(values) - set(known))
    if unknown:
        raise ConfigurationError(f"{params_cls.__name__} has no parameters {unknown}")
    coerced: Dict[str, Any] = {}
    for key, value in values.items():
        default = known[key].default
        if isinstance(default, bool):
            coerced[key] = bool(value)
        elif isinstance(default, int) and isinstance(value, float):
            if not value.is_integer():
                raise ConfigurationError(f"{params_cls.__name__}.{key} needs an integer, got {value}")
            coerced[key] = int(value)
        else:
            coerced[key] = value
    return params_cls(**coerced)


def create_algorithm(name: str, params: Optional[Mapping[str, Any]] = None) -> Strategy:
    spec = get_algorithm(name)
    return spec.factory(build_params(spec.params_cls, params))


def _ensure_builtin() -> None:
    # reference strategies register themselves on import
    import barsim.strats  # noqa: F401


__all__ = [
    "Strategy",
    "AlgorithmSpec",
    "register_algorithm",
    "get_algorithm",
    "available_algorithms",
    "build_params",
    "create_algorithm",
]
