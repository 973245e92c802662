from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Tuple, TypeVar

from loguru import logger

V = TypeVar("V")


@dataclass(frozen=True, slots=True)
class CacheKey:
    """Identity of a cached computation: owning run, computation name, parameters."""

    run_id: str
    name: str
    params: Tuple[Hashable, ...] = ()

    def __str__(self) -> str:
        args = ",".join(str(p) for p in self.params)
        return f"{self.name}({args})"


class RunCache:
    """
    Per-run cache scope.

    Two kinds of entries live here:

    - objects created once per run (indicators), via ``get_or_create``;
    - scalars memoized for one simulated step, via ``memo``.

    A RunCache is owned by exactly one RunContext and dropped with it; keys
    carry the run id so entries from different runs can never collide even if
    caches were merged for inspection.
    """

    def __init__(self, run_id: str, clock: Callable[[], int]) -> None:
        self.run_id = run_id
        self._clock = clock
        self._objects: Dict[CacheKey, Any] = {}
        self._memo: Dict[CacheKey, Tuple[int, Any]] = {}
        self.hits = 0
        self.misses = 0

    def key(self, name: str, *params: Hashable) -> CacheKey:
        return CacheKey(self.run_id, name, tuple(params))

    def get_or_create(self, key: CacheKey, factory: Callable[[], V]) -> V:
        if key.run_id != self.run_id:
            raise KeyError(f"cache key {key} belongs to run {key.run_id}, not {self.run_id}")
        try:
            value = self._objects[key]
        except KeyError:
            self.misses += 1
            value = factory()
            self._objects[key] = value
            logger.trace("[cache] created {} run={}", key, self.run_id)
            return value
        self.hits += 1
        return value

    def memo(self, key: CacheKey, compute: Callable[[], V]) -> V:
        """Return ``compute()`` at most once per simulated step for ``key``."""
        step = self._clock()
        cached = self._memo.get(key)
        if cached is not None and cached[0] == step:
            self.hits += 1
            return cached[1]
        self.misses += 1
        value = compute()
        self._memo[key] = (step, value)
        return value

    def __contains__(self, key: object) -> bool:
        return key in self._objects or key in self._memo

    def __len__(self) -> int:
        return len(self._objects) + len(self._memo)

    def clear(self) -> None:
        self._objects.clear()
        self._memo.clear()


__all__ = ["CacheKey", "RunCache"]
