"""Gateway Data Models.

Internal, vendor-independent shapes for instruments, quotes, orders and the
local account mirror. Shared maps are lock-protected because the receive
loop, REST reconciliation and caller reads run concurrently.
"""

from collections.abc import MutableMapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterator, Optional
import threading
import uuid


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


def floor_time(value: datetime, span: Optional[timedelta]) -> datetime:
    """Round a timestamp down to the start of its time-frame bucket."""
    if not span or span <= timedelta(0):
        return value
    epoch = datetime(1970, 1, 1, tzinfo=value.tzinfo)
    excess = (value - epoch) % span
    return value - excess


# =============================================================================
# Enums
# =============================================================================

class InstrumentType(str, Enum):
    EQUITY = "equity"
    OPTION = "option"
    FUTURE = "future"
    FUTURE_OPTION = "future_option"
    FOREX = "forex"
    INDEX = "index"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"
    SELL_SHORT = "sell_short"
    BUY_TO_COVER = "buy_to_cover"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"


class TimeSpan(str, Enum):
    DAY = "day"
    GTC = "gtc"


class OrderStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELED = "canceled"
    REJECTED = "rejected"
    EXPIRED = "expired"


class OptionSide(str, Enum):
    PUT = "put"
    CALL = "call"


# =============================================================================
# Market Data
# =============================================================================

@dataclass(frozen=True)
class Point:
    """One normalized quote tick. Immutable once created."""
    instrument: str
    bid: float
    ask: float
    last: float
    bid_size: float = 0.0
    ask_size: float = 0.0
    time: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class PointGroup:
    """Time-bucketed aggregation of points (a bar)."""
    instrument: str
    time: datetime
    open: float
    high: float
    low: float
    close: float
    bid: float = 0.0
    ask: float = 0.0
    bid_size: float = 0.0
    ask_size: float = 0.0
    volume: float = 0.0
    count: int = 0

    @classmethod
    def start(cls, point: Point, bucket: datetime) -> "PointGroup":
        return cls(
            instrument=point.instrument,
            time=bucket,
            open=point.last,
            high=point.last,
            low=point.last,
            close=point.last,
            bid=point.bid,
            ask=point.ask,
            bid_size=point.bid_size,
            ask_size=point.ask_size,
            count=1,
        )

    def merge(self, point: Point) -> "PointGroup":
        """Return a new group with the point folded in."""
        return replace(
            self,
            high=max(self.high, point.last),
            low=min(self.low, point.last),
            close=point.last,
            bid=point.bid,
            ask=point.ask,
            bid_size=point.bid_size,
            ask_size=point.ask_size,
            count=self.count + 1,
        )


@dataclass
class Derivative:
    """Option contract metadata."""
    underlying: str = ""
    strike: float = 0.0
    expiration: Optional[datetime] = None
    side: Optional[OptionSide] = None
    open_interest: float = 0.0
    volatility: float = 0.0
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0


@dataclass
class Instrument:
    """A tradable symbol with its quote history.

    Points are appended only from the stream receive loop. Groups are
    replaced rather than mutated so concurrent readers never see a torn bar.
    """
    name: str
    instrument_type: InstrumentType = InstrumentType.EQUITY
    time_frame: Optional[timedelta] = None
    description: str = ""
    derivative: Optional[Derivative] = None
    points: list[Point] = field(default_factory=list, repr=False)
    point_groups: list[PointGroup] = field(default_factory=list, repr=False)
    point: Optional[PointGroup] = None

    def add_point(self, point: Point) -> PointGroup:
        """Append a point and recompute the current bucket."""
        self.points.append(point)
        bucket = floor_time(point.time, self.time_frame)
        groups = self.point_groups
        if groups and groups[-1].time == bucket:
            group = groups[-1].merge(point)
            groups[-1] = group
        else:
            group = PointGroup.start(point, bucket)
            groups.append(group)
        self.point = group
        return group


@dataclass
class Dom:
    """Depth-of-market snapshot."""
    bids: list[Point] = field(default_factory=list)
    asks: list[Point] = field(default_factory=list)


# =============================================================================
# Orders
# =============================================================================

@dataclass
class Transaction:
    """Remote counterpart of an order."""
    instrument: Instrument
    id: str = ""
    status: OrderStatus = OrderStatus.PENDING
    volume: float = 0.0
    current_volume: float = 0.0
    price: float = 0.0
    time: Optional[datetime] = None


@dataclass
class Order:
    """A trading intent. Also used for open positions (filled orders)."""
    transaction: Transaction
    id: str = field(default_factory=_new_id)
    side: OrderSide = OrderSide.BUY
    type: OrderType = OrderType.MARKET
    time_span: TimeSpan = TimeSpan.DAY
    volume: float = 0.0
    price: Optional[float] = None
    activation_price: Optional[float] = None
    orders: list["Order"] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.transaction.instrument.name

    @property
    def status(self) -> OrderStatus:
        return self.transaction.status


# =============================================================================
# Account Mirror
# =============================================================================

class ConcurrentMap(MutableMapping):
    """Dict guarded by a re-entrant lock; iteration works on a copy."""

    def __init__(self, items: Optional[dict] = None):
        self._lock = threading.RLock()
        self._items: dict[Any, Any] = dict(items or {})

    def __getitem__(self, key: Any) -> Any:
        with self._lock:
            return self._items[key]

    def __setitem__(self, key: Any, value: Any) -> None:
        with self._lock:
            self._items[key] = value

    def __delitem__(self, key: Any) -> None:
        with self._lock:
            del self._items[key]

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __iter__(self) -> Iterator[Any]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __repr__(self) -> str:
        return f"ConcurrentMap({self.snapshot()!r})"

    def add_if_absent(self, key: Any, value: Any) -> bool:
        """Insert only when the key is missing. Returns True if inserted."""
        with self._lock:
            if key in self._items:
                return False
            self._items[key] = value
            return True

    def snapshot(self) -> dict[Any, Any]:
        with self._lock:
            return dict(self._items)


@dataclass
class AccountSnapshot:
    """Local mirror of the remote ledger.

    Balance, orders and positions are swapped together under one lock on
    every sync; callers holding an old map keep a consistent view.
    """
    descriptor: str = ""
    balance: float = 0.0
    orders: ConcurrentMap = field(default_factory=ConcurrentMap)
    positions: ConcurrentMap = field(default_factory=ConcurrentMap)
    instruments: ConcurrentMap = field(default_factory=ConcurrentMap)
    last_sync: Optional[datetime] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def replace(
        self,
        balance: float,
        orders: dict[str, Order],
        positions: dict[str, Order],
    ) -> None:
        """Atomically replace balance, orders and positions."""
        new_orders = ConcurrentMap(orders)
        new_positions = ConcurrentMap(positions)
        with self._lock:
            self.balance = balance
            self.orders = new_orders
            self.positions = new_positions
            self.last_sync = _utc_now()

    def register_instruments(self, instruments: list[Instrument]) -> list[str]:
        """Add unknown instruments; returns the names newly added."""
        added = []
        for instrument in instruments:
            if self.instruments.add_if_absent(instrument.name, instrument):
                added.append(instrument.name)
        return added

    def to_dict(self) -> dict:
        return {
            "descriptor": self.descriptor,
            "balance": self.balance,
            "orders": len(self.orders),
            "positions": len(self.positions),
            "instruments": sorted(self.instruments.snapshot()),
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
        }
