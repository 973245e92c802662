"""Simulated brokerage account: orders, positions, cash and the trade log."""

from __future__ import annotations

import itertools
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterator, List, Mapping, Optional

from loguru import logger

from barsim.core.exceptions import OrderRejected
from barsim.dal.schemas import Bar

_ZERO_EPS = 1e-9


class OrderType(str, Enum):
    CLOSE_THIS_BAR = "close_this_bar"
    OPEN_NEXT_BAR = "open_next_bar"
    STOP_NEXT_BAR = "stop_next_bar"
    LIMIT_NEXT_BAR = "limit_next_bar"
    # closing fill booked by the loop when an instrument stops trading
    DELISTED = "delisted"

    @property
    def next_bar(self) -> bool:
        return self in (OrderType.OPEN_NEXT_BAR, OrderType.STOP_NEXT_BAR, OrderType.LIMIT_NEXT_BAR)


class OrderStatus(str, Enum):
    PENDING = "pending"
    FILLED = "filled"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CommissionSchedule:
    """
    Per-fill cost assumptions.

    Attributes:
        per_share (float): Fee per share traded.
        per_order (float): Flat fee per filled order.
        pct (float): Fraction of traded notional.
        minimum (float): Floor applied to the total.
    """

    per_share: float = 0.0
    per_order: float = 0.0
    pct: float = 0.0
    minimum: float = 0.0

    def __call__(self, quantity: float, price: float) -> float:
        if quantity == 0:
            return 0.0
        qty = abs(quantity)
        raw = self.per_order + self.per_share * qty + self.pct * qty * price
        return max(self.minimum, raw)


@dataclass
class Order:
    id: int
    symbol: str
    quantity: float
    order_type: OrderType = OrderType.CLOSE_THIS_BAR
    stop_price: Optional[float] = None
    limit_price: Optional[float] = None
    submitted_at: Optional[datetime] = None
    submitted_step: int = -1
    status: OrderStatus = OrderStatus.PENDING
    filled_at: Optional[datetime] = None
    fill_price: Optional[float] = None
    commission: float = 0.0
    reason: str = ""

    @property
    def is_buy(self) -> bool:
        return self.quantity > 0


@dataclass
class Position:
    symbol: str
    size: float = 0.0
    avg_cost: float = 0.0
    realized_pnl: float = 0.0

    def market_value(self, mark: float) -> float:
        return self.size * mark

    def unrealized_pnl(self, mark: float) -> float:
        return self.size * (mark - self.avg_cost)

    def apply(self, quantity: float, price: float) -> float:
        """Apply a fill; returns the P&L realized by it."""
        if abs(quantity) < _ZERO_EPS:
            return 0.0
        size = self.size
        new_size = size + quantity
        if abs(new_size) < _ZERO_EPS:
            new_size = 0.0
        realized = 0.0

        if size == 0 or (size > 0) == (quantity > 0):
            self.avg_cost = (self.avg_cost * abs(size) + price * abs(quantity)) / abs(new_size)
        else:
            closed = min(abs(quantity), abs(size))
            direction = 1.0 if size > 0 else -1.0
            realized = closed * (price - self.avg_cost) * direction
            if new_size == 0:
                self.avg_cost = 0.0
            elif (new_size > 0) != (size > 0):
                # flipped: the remainder opens at the fill price
                self.avg_cost = price

        self.size = new_size
        self.realized_pnl += realized
        return realized


@dataclass(frozen=True)
class LogEntry:
    time: Optional[datetime]
    order_id: int
    symbol: str
    quantity: float
    order_type: OrderType
    status: OrderStatus
    price: Optional[float]
    commission: float
    cash: float
    nav: float
    realized_pnl: float = 0.0
    reason: str = ""

    def as_dict(self) -> dict:
        return {
            "time": self.time,
            "order_id": self.order_id,
            "symbol": self.symbol,
            "quantity": self.quantity,
            "order_type": self.order_type.value,
            "status": self.status.value,
            "price": self.price,
            "commission": self.commission,
            "cash": self.cash,
            "nav": self.nav,
            "realized_pnl": self.realized_pnl,
            "reason": self.reason,
        }


FillModel = Callable[[Order, Bar, float], float]


def slippage_model(fraction: float) -> FillModel:
    """Fill model paying ``fraction`` of the price on every fill: buys higher, sells lower."""
    if fraction < 0:
        raise ValueError("slippage fraction must be non-negative")

    def _slip(order: Order, bar: Bar, price: float) -> float:
        return price * (1.0 + fraction) if order.is_buy else price * (1.0 - fraction)

    return _slip


@dataclass
class Account:
    """
    Cash, positions and pending orders of one simulation.

    ``nav`` is recomputed from cash, positions and the latest marks on every
    read. Cash changes exactly once per filled order; cancelled orders leave
    no trace other than their log entry. ``fill_model`` turns the theoretical
    fill price of an order into the price actually paid.
    """

    cash: float = 100_000.0
    commission: CommissionSchedule = field(default_factory=CommissionSchedule)
    fill_model: Optional[FillModel] = field(default=None, repr=False)
    positions: Dict[str, Position] = field(default_factory=dict)
    marks: Dict[str, float] = field(default_factory=dict)
    pending: List[Order] = field(default_factory=list)
    log: List[LogEntry] = field(default_factory=list)
    realized_pnl: float = 0.0
    commissions_paid: float = 0.0
    _ids: Iterator[int] = field(default_factory=lambda: itertools.count(1), repr=False)

    def __post_init__(self) -> None:
        self.initial_cash = float(self.cash)

    # ------------------------------------------------------------------ state
    @property
    def nav(self) -> float:
        value = self.cash
        for symbol, pos in self.positions.items():
            mark = self.marks.get(symbol, pos.avg_cost)
            value += pos.market_value(mark)
        return value

    def position(self, symbol: str) -> Position:
        """Position for ``symbol``; a detached flat position when none is held."""
        return self.positions.get(symbol) or Position(symbol)

    def mark(self, symbol: str, price: float) -> None:
        self.marks[symbol] = float(price)

    def deposit(self, amount: float) -> None:
        if amount <= 0:
            raise ValueError("deposit amount must be positive")
        self.cash += amount

    def withdraw(self, amount: float) -> None:
        if amount <= 0:
            raise ValueError("withdraw amount must be positive")
        self.cash -= amount

    # ----------------------------------------------------------------- orders
    def submit(
        self,
        symbol: str,
        quantity: float,
        order_type: OrderType | str = OrderType.CLOSE_THIS_BAR,
        *,
        stop_price: Optional[float] = None,
        limit_price: Optional[float] = None,
        time: Optional[datetime] = None,
        step: int = -1,
        warmup: bool = False,
    ) -> Order:
        order_type = OrderType(order_type)
        if order_type is OrderType.DELISTED:
            raise ValueError("delisted closing orders are booked by the simulation only")
        if order_type is OrderType.STOP_NEXT_BAR and stop_price is None:
            raise ValueError("stop_next_bar orders need a stop_price")
        if order_type is OrderType.LIMIT_NEXT_BAR and limit_price is None:
            raise ValueError("limit_next_bar orders need a limit_price")
        order = Order(
            id=next(self._ids),
            symbol=symbol,
            quantity=float(quantity),
            order_type=order_type,
            stop_price=None if stop_price is None else float(stop_price),
            limit_price=None if limit_price is None else float(limit_price),
            submitted_at=time,
            submitted_step=step,
        )
        if warmup:
            self.cancel(order, "submitted during warm-up", time)
        elif abs(order.quantity) < _ZERO_EPS:
            self.cancel(order, "zero quantity", time)
        else:
            self.pending.append(order)
        return order

    def cancel(self, order: Order, reason: str, time: Optional[datetime]) -> None:
        order.status = OrderStatus.CANCELLED
        order.reason = reason
        if order in self.pending:
            self.pending.remove(order)
        self.log.append(
            LogEntry(
                time=time,
                order_id=order.id,
                symbol=order.symbol,
                quantity=order.quantity,
                order_type=order.order_type,
                status=order.status,
                price=None,
                commission=0.0,
                cash=self.cash,
                nav=self.nav,
                reason=reason,
            )
        )
        logger.debug("[account] cancelled order={} {} reason={}", order.id, order.symbol, reason)

    def fill(
        self,
        order: Order,
        price: float,
        time: Optional[datetime],
        *,
        commission: Optional[float] = None,
    ) -> LogEntry:
        if not (math.isfinite(price) and price > 0):
            raise OrderRejected(f"invalid fill price {price!r} for {order.symbol}")
        if commission is None:
            commission = self.commission(order.quantity, price)
        # position first: a fill it cannot absorb must leave cash untouched
        pos = self.positions.setdefault(order.symbol, Position(order.symbol))
        realized = pos.apply(order.quantity, price)
        if pos.size == 0:
            del self.positions[order.symbol]
        self.cash -= order.quantity * price + commission
        self.marks.setdefault(order.symbol, price)
        self.realized_pnl += realized
        self.commissions_paid += commission

        order.status = OrderStatus.FILLED
        order.filled_at = time
        order.fill_price = price
        order.commission = commission
        if order in self.pending:
            self.pending.remove(order)

        entry = LogEntry(
            time=time,
            order_id=order.id,
            symbol=order.symbol,
            quantity=order.quantity,
            order_type=order.order_type,
            status=order.status,
            price=price,
            commission=commission,
            cash=self.cash,
            nav=self.nav,
            realized_pnl=realized,
        )
        self.log.append(entry)
        logger.debug(
            "[account] filled order={} {} qty={} px={:.4f} fee={:.4f} cash={:.2f}",
            order.id,
            order.symbol,
            order.quantity,
            price,
            commission,
            self.cash,
        )
        return entry

    def execute(self, order: Order, bar: Optional[Bar], time: Optional[datetime]) -> None:
        """Fill ``order`` against ``bar`` or cancel it with the reason it could not fill."""
        try:
            price = fill_price(order, bar)
            if self.fill_model is not None:
                price = float(self.fill_model(order, bar, price))  # type: ignore[arg-type]
            self.fill(order, price, time)
        except OrderRejected as exc:
            self.cancel(order, str(exc), time)

    def delist(self, symbol: str, price: float, time: Optional[datetime]) -> Optional[LogEntry]:
        """
        Close out ``symbol`` after its data has ended.

        Pending orders for the symbol are cancelled and any open position is
        closed at ``price`` without commission. Returns the closing fill, or
        None when nothing was held.
        """
        for order in [o for o in self.pending if o.symbol == symbol]:
            self.cancel(order, "instrument delisted", time)
        pos = self.positions.get(symbol)
        if pos is None:
            return None
        order = Order(
            id=next(self._ids),
            symbol=symbol,
            quantity=-pos.size,
            order_type=OrderType.DELISTED,
            submitted_at=time,
        )
        logger.info("[account] delisting {} size={} px={:.4f}", symbol, pos.size, price)
        return self.fill(order, price, time, commission=0.0)

    def process(
        self,
        bars: Mapping[str, Bar],
        time: Optional[datetime],
        step: int,
        *,
        next_bar: bool,
    ) -> int:
        """
        Execute pending orders due at ``step``.

        With ``next_bar`` set, executes open/stop orders submitted on earlier
        steps; otherwise executes close-of-bar orders. ``bars`` holds the bars
        that are fresh at this step, keyed by symbol. Returns the number of
        orders processed.
        """
        due = [
            o
            for o in self.pending
            if o.order_type.next_bar == next_bar and (not next_bar or o.submitted_step < step)
        ]
        for order in due:
            self.execute(order, bars.get(order.symbol), time)
        return len(due)

    def cancel_all(self, reason: str, time: Optional[datetime]) -> None:
        for order in list(self.pending):
            self.cancel(order, reason, time)


def fill_price(order: Order, bar: Optional[Bar]) -> float:
    """Price at which ``order`` executes against ``bar``; raises OrderRejected otherwise."""
    if bar is None:
        raise OrderRejected(f"no bar for {order.symbol} at fill time")
    if order.order_type is OrderType.CLOSE_THIS_BAR:
        price = bar.close
    elif order.order_type is OrderType.OPEN_NEXT_BAR:
        price = bar.open
    elif order.order_type is OrderType.LIMIT_NEXT_BAR:
        limit = float(order.limit_price)  # type: ignore[arg-type]
        if order.is_buy:
            if bar.low > limit:
                raise OrderRejected(f"buy limit {limit} not reached (low {bar.low})")
            price = min(limit, bar.open)
        else:
            if bar.high < limit:
                raise OrderRejected(f"sell limit {limit} not reached (high {bar.high})")
            price = max(limit, bar.open)
    elif order.order_type is OrderType.STOP_NEXT_BAR:
        stop = float(order.stop_price)  # type: ignore[arg-type]
        if order.is_buy:
            if bar.high < stop:
                raise OrderRejected(f"buy stop {stop} not reached (high {bar.high})")
            price = max(stop, bar.open)
        else:
            if bar.low > stop:
                raise OrderRejected(f"sell stop {stop} not reached (low {bar.low})")
            price = min(stop, bar.open)
    else:
        raise OrderRejected(f"{order.order_type.value} orders do not fill against bars")
    if not (math.isfinite(price) and price > 0):
        raise OrderRejected(f"invalid fill price {price!r} for {order.symbol}")
    return float(price)


__all__ = [
    "Account",
    "CommissionSchedule",
    "FillModel",
    "LogEntry",
    "Order",
    "OrderStatus",
    "OrderType",
    "Position",
    "fill_price",
    "slippage_model",
]
