"""
Synchronized table state.

Maintains the in-memory order, trade, order-book and candle tables.
Tables change only through the batched upsert/replace methods below;
each builds the new collection first and swaps it in, so a failed
merge never leaves a half-applied update.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from .models import Candle, Order, OrderBookState, PriceLevel, Trade

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _trade_sort_key(trade: Trade) -> datetime:
    return trade.created_at or _EPOCH


def _merge_levels(
    current: list[PriceLevel],
    changes: Iterable[PriceLevel],
    descending: bool,
) -> list[PriceLevel]:
    """Upsert levels by price, dropping any whose size is zero."""
    by_price: dict[Decimal, Decimal] = {level.price: level.size for level in current}
    for level in changes:
        if level.size == 0:
            by_price.pop(level.price, None)
        else:
            by_price[level.price] = level.size

    return [
        PriceLevel(price, size)
        for price, size in sorted(by_price.items(), key=lambda x: x[0], reverse=descending)
    ]


class SyncStateManager:
    """
    Manages all synchronized tables.

    Provides:
    - Order table keyed by exchange id
    - Trade table keyed by id, kept in time order
    - One order book per pair
    - OHLCV series keyed by candle open time
    """

    def __init__(self, max_trades: int = 500, max_candles: int = 1000):
        self.max_trades = max_trades
        self.max_candles = max_candles

        # Order ID -> Order
        self.orders: dict[str, Order] = {}

        # Trade ID -> Trade (time ordered)
        self.trades: dict[str, Trade] = {}

        # Pair -> OrderBookState
        self.orderbooks: dict[Optional[str], OrderBookState] = {}

        # Pair of the most recent snapshot, used for deltas without a pair name
        self._last_pair: Optional[str] = None

        # Candles ordered by open time
        self.ohlcv: list[Candle] = []

        # Stats for monitoring (one increment per batched call)
        self.stats = {
            "order_updates": 0,
            "trade_updates": 0,
            "trade_inits": 0,
            "orderbook_inits": 0,
            "orderbook_updates": 0,
            "ohlcv_inits": 0,
            "ohlcv_updates": 0,
        }

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def upsert_orders(self, orders: list[Order]):
        """
        Upsert a batch of orders by id.

        Args:
            orders: Parsed orders; later entries win on duplicate ids
        """
        updated = dict(self.orders)
        for order in orders:
            updated[order.id] = order
        self.orders = updated
        self.stats["order_updates"] += 1

    def get_order(self, order_id: str) -> Optional[Order]:
        return self.orders.get(order_id)

    def get_open_orders(self) -> list[Order]:
        """Orders not yet in a terminal status."""
        return [o for o in self.orders.values() if not o.status.is_terminal]

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def _cap_trades(self, trades: list[Trade]) -> dict[str, Trade]:
        trades.sort(key=_trade_sort_key)
        if self.max_trades and len(trades) > self.max_trades:
            trades = trades[-self.max_trades:]
        return {t.id: t for t in trades}

    def _stamp_arrival(self, trades: Iterable[Trade]) -> list[Trade]:
        """
        Give untimed trades a time so the cap orders them by arrival.

        A trade already in the table keeps its first-seen time.
        """
        now = datetime.now(timezone.utc)
        stamped = []
        for trade in trades:
            if trade.created_at is None:
                known = self.trades.get(trade.id)
                trade = replace(trade, created_at=known.created_at if known and known.created_at else now)
            stamped.append(trade)
        return stamped

    def upsert_trades(self, trades: list[Trade]):
        """Merge a batch of trades by id, keeping time order."""
        merged = dict(self.trades)
        for trade in self._stamp_arrival(trades):
            merged[trade.id] = trade
        self.trades = self._cap_trades(list(merged.values()))
        self.stats["trade_updates"] += 1

    def replace_trades(self, trades: list[Trade]):
        """Replace the whole trade history."""
        deduped = {t.id: t for t in self._stamp_arrival(trades)}
        self.trades = self._cap_trades(list(deduped.values()))
        self.stats["trade_inits"] += 1
        logger.debug(f"Trade history replaced: {len(self.trades)} trades")

    def get_trades(self) -> list[Trade]:
        return list(self.trades.values())

    # ------------------------------------------------------------------
    # Order book
    # ------------------------------------------------------------------

    def _resolve_pair(self, pair: Optional[str]) -> Optional[str]:
        """
        Key for a book update.

        Deltas pushed without a pair name apply to the last snapshot's
        pair, or to the only book held.
        """
        if pair is not None:
            return pair
        if self._last_pair in self.orderbooks:
            return self._last_pair
        if len(self.orderbooks) == 1:
            return next(iter(self.orderbooks))
        return None

    def init_orderbook(
        self,
        pair: Optional[str],
        bids: Optional[list[PriceLevel]],
        asks: Optional[list[PriceLevel]],
    ):
        """Replace the book for a pair with a snapshot."""
        pair = self._resolve_pair(pair)
        if pair is not None:
            self._last_pair = pair

        self.orderbooks[pair] = OrderBookState(
            pair=pair,
            bids=_merge_levels([], bids or [], descending=True),
            asks=_merge_levels([], asks or [], descending=False),
            last_update=datetime.now(timezone.utc),
        )
        self.stats["orderbook_inits"] += 1

        book = self.orderbooks[pair]
        logger.debug(f"Order book initialized for {pair}: {len(book.bids)} bids, {len(book.asks)} asks")

    def update_orderbook(
        self,
        pair: Optional[str],
        bids: Optional[list[PriceLevel]],
        asks: Optional[list[PriceLevel]],
    ):
        """Merge level changes into the book for a pair."""
        pair = self._resolve_pair(pair)
        book = self.orderbooks.get(pair) or OrderBookState(pair=pair)
        self.orderbooks[pair] = OrderBookState(
            pair=pair,
            bids=_merge_levels(book.bids, bids or [], descending=True),
            asks=_merge_levels(book.asks, asks or [], descending=False),
            last_update=datetime.now(timezone.utc),
        )
        self.stats["orderbook_updates"] += 1

    def get_orderbook(self, pair: Optional[str] = None) -> Optional[OrderBookState]:
        """Get the book for a pair (None = the book pairless pushes resolve to)."""
        return self.orderbooks.get(self._resolve_pair(pair))

    # ------------------------------------------------------------------
    # OHLCV
    # ------------------------------------------------------------------

    def _cap_candles(self, by_time: dict[datetime, Candle]) -> list[Candle]:
        candles = [by_time[t] for t in sorted(by_time)]
        if self.max_candles and len(candles) > self.max_candles:
            candles = candles[-self.max_candles:]
        return candles

    def replace_ohlcv(self, candles: list[Candle]):
        """Replace the whole candle series."""
        self.ohlcv = self._cap_candles({c.time: c for c in candles})
        self.stats["ohlcv_inits"] += 1

    def update_ohlcv(self, candles: list[Candle]):
        """Merge candles by open time (same time replaces, newer appends)."""
        by_time = {c.time: c for c in self.ohlcv}
        for candle in candles:
            by_time[candle.time] = candle
        self.ohlcv = self._cap_candles(by_time)
        self.stats["ohlcv_updates"] += 1

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Get statistics for monitoring."""
        return {
            "orders": len(self.orders),
            "open_orders": len(self.get_open_orders()),
            "trades": len(self.trades),
            "orderbooks": len(self.orderbooks),
            "candles": len(self.ohlcv),
            **self.stats,
        }
