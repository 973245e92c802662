from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

from barsim.dal.store import BarStore, StoreKey
from conftest import bars_at


def test_concurrent_loads_initialize_once():
    store = BarStore()
    key = StoreKey("frame", "SPY")
    calls = []
    lock = threading.Lock()

    def loader():
        with lock:
            calls.append(1)
        time.sleep(0.05)
        return bars_at("SPY", [1, 2, 3])

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: store.get_or_load(key, loader), range(16)))

    assert len(calls) == 1
    assert store.loads == 1
    assert all(r is results[0] for r in results)
    assert isinstance(results[0], tuple)


def test_prefetch_skips_cached_keys():
    store = BarStore()
    a = StoreKey("frame", "A")
    b = StoreKey("frame", "B")
    assert store.prefetch([(a, lambda: bars_at("A", [1]))]) == 1
    assert store.prefetch([(a, lambda: bars_at("A", [1])), (b, lambda: bars_at("B", [1]))]) == 1
    assert a in store and b in store
    assert len(store) == 2
    store.clear()
    assert store.get(a) is None
