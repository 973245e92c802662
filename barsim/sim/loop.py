"""Bar-by-bar simulation loop over several instruments merged on time."""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from loguru import logger

from barsim.core.exceptions import DataValidationError, JobTimeout
from barsim.dal.schemas import Bar
from barsim.sim.context import RunContext


@dataclass(frozen=True)
class SimStep:
    time: datetime
    index: int
    advanced: FrozenSet[str]
    is_last: bool


DEFAULT_DELIST_AFTER = timedelta(days=5)

_HeapItem = Tuple[datetime, int, str, Bar, Iterator[Bar]]


class SimulationLoop:
    """
    K-way merge of per-symbol bar streams into simulated steps.

    Each step has the time of the earliest pending bar. Every stream whose
    next bar carries that time advances its instrument; the others keep their
    previous bar. Iterating the loop yields one :class:`SimStep` per step,
    after marks are updated and next-bar orders are filled; when the consumer
    resumes, close-of-bar orders fill, indicators settle and NAV is recorded.

    A stream that runs out while others continue is treated as delisted once
    the simulation is more than ``delist_after`` past its last bar: pending
    orders for it are cancelled and its position closes at the last close.
    """

    def __init__(
        self,
        ctx: RunContext,
        streams: Mapping[str, Iterable[Bar]],
        *,
        end: Optional[datetime] = None,
        delist_after: Optional[timedelta] = DEFAULT_DELIST_AFTER,
    ) -> None:
        if not streams:
            raise ValueError("[loop] no bar streams")
        self.ctx = ctx
        self.end = end
        self.delist_after = delist_after
        self._streams = dict(streams)
        self.steps = 0

    def _prime(self) -> List[_HeapItem]:
        heap: List[_HeapItem] = []
        for seq, (symbol, bars) in enumerate(self._streams.items()):
            self.ctx.add_instrument(symbol)
            it = iter(bars)
            first = next(it, None)
            if first is None:
                logger.warning("[loop] empty bar stream: {}", symbol)
                continue
            heap.append((first.timestamp, seq, symbol, first, it))
        heapq.heapify(heap)
        return heap

    def _delist(self, ended: Dict[str, datetime], now: datetime) -> None:
        if self.delist_after is None:
            return
        for symbol, last in list(ended.items()):
            if now - last <= self.delist_after:
                continue
            del ended[symbol]
            instrument = self.ctx.instruments[symbol]
            self.ctx.account.delist(symbol, instrument.close[0], now)

    def __iter__(self) -> Iterator[SimStep]:
        ctx = self.ctx
        account = ctx.account
        heap = self._prime()
        seq = len(heap)
        step = 0
        ended: Dict[str, datetime] = {}

        while heap:
            now = heap[0][0]
            if self.end is not None and now > self.end:
                break
            if ctx.expired:
                raise JobTimeout(f"run {ctx.run_id} exceeded its deadline at step {step}")

            ctx.step = step
            ctx.time = now
            ctx.sim_time.append(now)

            advanced = set()
            while heap and heap[0][0] == now:
                ts, _, symbol, bar, it = heapq.heappop(heap)
                ctx.instruments[symbol].advance(bar, step)
                advanced.add(symbol)
                nxt = next(it, None)
                if nxt is None:
                    ended[symbol] = ts
                    continue
                if nxt.timestamp <= ts:
                    raise DataValidationError(
                        f"{symbol}: bar at {nxt.timestamp} does not follow {ts}"
                    )
                heapq.heappush(heap, (nxt.timestamp, seq, symbol, nxt, it))
                seq += 1

            for symbol in advanced:
                account.mark(symbol, ctx.instruments[symbol].close[0])
            self._delist(ended, now)

            fresh = ctx.fresh_bars()
            account.process(fresh, now, step, next_bar=True)

            is_last = not heap or (self.end is not None and heap[0][0] > self.end)
            yield SimStep(time=now, index=step, advanced=frozenset(advanced), is_last=is_last)
            if ctx.expired:
                raise JobTimeout(f"run {ctx.run_id} exceeded its deadline at step {step}")

            account.process(fresh, now, step, next_bar=False)
            ctx.settle_indicators()
            ctx.record_equity()
            step += 1
            self.steps = step

        if account.pending:
            account.cancel_all("data ended before the order could execute", ctx.time)
        logger.debug("[loop] run={} finished after {} steps", ctx.run_id, step)


__all__ = ["SimulationLoop", "SimStep"]
