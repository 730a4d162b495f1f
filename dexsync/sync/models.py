"""
Domain records for synchronized exchange data.

Records are immutable; tables replace whole records instead of
mutating fields.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class Side(str, Enum):
    """Order side."""
    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(str, Enum):
    """Order status as reported by the exchange."""
    NEW = "NEW"
    OPEN = "OPEN"
    PENDING = "PENDING"
    PARTIAL_FILLED = "PARTIAL_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    INVALID = "INVALID"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (
            OrderStatus.FILLED,
            OrderStatus.CANCELLED,
            OrderStatus.INVALID,
            OrderStatus.ERROR,
        )


@dataclass(frozen=True)
class Order:
    """An order owned by some user on one pair."""

    id: str
    side: Side
    price: Decimal
    amount: Decimal
    user_address: str
    pair: str
    status: OrderStatus = OrderStatus.OPEN
    nonce: Optional[str] = None
    filled_amount: Decimal = Decimal(0)
    base_token: Optional[str] = None
    quote_token: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def remaining_amount(self) -> Decimal:
        return self.amount - self.filled_amount


@dataclass(frozen=True)
class Trade:
    """A settled or settling trade between a maker and a taker."""

    id: str
    maker: str
    taker: str
    price: Decimal
    amount: Decimal
    pair: str
    trade_nonce: Optional[str] = None
    status: str = "PENDING"
    side: Optional[Side] = None
    order_hash: Optional[str] = None
    taker_order_hash: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Match:
    """
    Exchange-reported pairing of a crossed order with its trade.

    Holds the raw wire halves; they go through the parsers before
    anything reaches a table.
    """

    order: dict
    trade: dict

    @classmethod
    def from_dict(cls, data: Any) -> "Match":
        if not isinstance(data, dict):
            raise ValueError(f"Invalid match: expected object, got {type(data).__name__}")
        order = data.get("order")
        trade = data.get("trade")
        if not isinstance(order, dict) or not isinstance(trade, dict):
            raise ValueError("Invalid match: both 'order' and 'trade' are required")
        return cls(order=order, trade=trade)


@dataclass(frozen=True)
class PriceLevel:
    """Single price level in orderbook."""

    price: Decimal
    size: Decimal


@dataclass
class OrderBookState:
    """
    In-memory orderbook for a single pair.

    Bids are kept highest first, asks lowest first.
    """

    pair: Optional[str]
    bids: list[PriceLevel] = field(default_factory=list)
    asks: list[PriceLevel] = field(default_factory=list)
    last_update: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def best_bid(self) -> Optional[Decimal]:
        """Best bid price (highest buy order)."""
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[Decimal]:
        """Best ask price (lowest sell order)."""
        return self.asks[0].price if self.asks else None

    @property
    def mid_price(self) -> Optional[Decimal]:
        """Mid price between best bid and ask."""
        if self.best_bid is not None and self.best_ask is not None:
            return (self.best_bid + self.best_ask) / 2
        return None

    @property
    def spread(self) -> Optional[Decimal]:
        """Spread between best ask and best bid."""
        if self.best_bid is not None and self.best_ask is not None:
            return self.best_ask - self.best_bid
        return None


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar keyed by its open time."""

    time: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    pair: Optional[str] = None


@dataclass(frozen=True)
class OrderBookDelta:
    """
    Parsed order-book payload.

    A side left as None was absent from the payload and is not touched
    by an update.
    """

    pair: Optional[str]
    bids: Optional[list[PriceLevel]] = None
    asks: Optional[list[PriceLevel]] = None

    @property
    def is_empty(self) -> bool:
        return self.bids is None and self.asks is None
