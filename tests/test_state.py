"""
Tests for the synchronized table store.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from dexsync.sync.models import Candle, OrderStatus, PriceLevel
from dexsync.sync.parsers import parse_order, parse_trade
from dexsync.sync.state import SyncStateManager

from conftest import order_payload, trade_payload

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _level(price, size):
    return PriceLevel(Decimal(str(price)), Decimal(str(size)))


def _candle(minutes, close="1"):
    return Candle(
        time=T0 + timedelta(minutes=minutes),
        open=Decimal("1"),
        high=Decimal("2"),
        low=Decimal("0.5"),
        close=Decimal(close),
        volume=Decimal("10"),
    )


class TestOrders:
    """Tests for the order table."""

    def test_upsert_is_idempotent(self):
        """Same order twice leaves one row."""
        store = SyncStateManager()
        order = parse_order(order_payload())

        store.upsert_orders([order])
        store.upsert_orders([order])

        assert list(store.orders.values()) == [order]

    def test_upsert_replaces_by_id(self):
        store = SyncStateManager()
        store.upsert_orders([parse_order(order_payload(status="OPEN"))])
        store.upsert_orders([parse_order(order_payload(status="CANCELLED"))])

        assert len(store.orders) == 1
        assert next(iter(store.orders.values())).status == OrderStatus.CANCELLED

    def test_open_orders_exclude_terminal(self):
        store = SyncStateManager()
        store.upsert_orders(
            [
                parse_order(order_payload(hash="a", status="OPEN")),
                parse_order(order_payload(hash="b", status="FILLED")),
                parse_order(order_payload(hash="c", status="PARTIAL_FILLED")),
            ]
        )

        assert sorted(o.id for o in store.get_open_orders()) == ["a", "c"]

    def test_batch_counts_once(self):
        store = SyncStateManager()
        store.upsert_orders([parse_order(order_payload(hash=str(i))) for i in range(5)])
        assert store.stats["order_updates"] == 1


class TestTrades:
    """Tests for the trade table."""

    def test_kept_in_time_order(self):
        store = SyncStateManager()
        store.upsert_trades(
            [
                parse_trade(trade_payload(hash="late", createdAt="2024-01-01T00:00:10Z")),
                parse_trade(trade_payload(hash="early", createdAt="2024-01-01T00:00:01Z")),
            ]
        )

        assert [t.id for t in store.get_trades()] == ["early", "late"]

    def test_upsert_merges_by_id(self):
        store = SyncStateManager()
        store.replace_trades([parse_trade(trade_payload(hash="a", status="PENDING"))])
        store.upsert_trades([parse_trade(trade_payload(hash="a", status="SUCCESS"))])

        trades = store.get_trades()
        assert len(trades) == 1
        assert trades[0].status == "SUCCESS"

    def test_replace_drops_previous(self):
        store = SyncStateManager()
        store.upsert_trades([parse_trade(trade_payload(hash="a"))])
        store.replace_trades([parse_trade(trade_payload(hash="b"))])

        assert [t.id for t in store.get_trades()] == ["b"]

    def test_cap_keeps_newest(self):
        store = SyncStateManager(max_trades=2)
        store.upsert_trades(
            [
                parse_trade(trade_payload(hash=str(i), createdAt=f"2024-01-01T00:00:0{i}Z"))
                for i in range(4)
            ]
        )

        assert [t.id for t in store.get_trades()] == ["2", "3"]

    def test_untimed_trade_survives_cap(self):
        """A trade without createdAt counts as newest on arrival."""
        store = SyncStateManager(max_trades=2)
        store.replace_trades(
            [
                parse_trade(trade_payload(hash="old", createdAt="2024-01-01T00:00:01Z")),
                parse_trade(trade_payload(hash="mid", createdAt="2024-01-01T00:00:02Z")),
            ]
        )
        untimed = trade_payload(hash="new")
        untimed.pop("createdAt", None)
        store.upsert_trades([parse_trade(untimed)])

        assert [t.id for t in store.get_trades()] == ["mid", "new"]
        assert store.trades["new"].created_at is not None

    def test_untimed_trade_keeps_first_seen_time(self):
        store = SyncStateManager()
        untimed = trade_payload(hash="a")
        untimed.pop("createdAt", None)
        store.upsert_trades([parse_trade(untimed)])
        first_seen = store.trades["a"].created_at

        store.upsert_trades([parse_trade(dict(untimed, status="SUCCESS"))])

        assert store.trades["a"].created_at == first_seen
        assert store.trades["a"].status == "SUCCESS"


class TestOrderbook:
    """Tests for order-book snapshot and delta handling."""

    def test_init_replaces_prior_book(self):
        store = SyncStateManager()
        store.init_orderbook("WETH/DAI", [_level(9, 1)], [_level(12, 1)])
        store.init_orderbook("WETH/DAI", [_level(10, 5)], [])

        book = store.get_orderbook("WETH/DAI")
        assert book.bids == [_level(10, 5)]
        assert book.asks == []

    def test_update_zero_size_removes_level(self):
        store = SyncStateManager()
        store.init_orderbook("WETH/DAI", [_level(10, 5)], [])
        store.update_orderbook("WETH/DAI", [_level(10, 0)], None)

        assert store.get_orderbook("WETH/DAI").bids == []

    def test_update_upserts_and_sorts(self):
        store = SyncStateManager()
        store.init_orderbook("WETH/DAI", [_level(10, 5)], [_level(12, 1)])
        store.update_orderbook("WETH/DAI", [_level(11, 2), _level(10, 3)], [_level(11.5, 4)])

        book = store.get_orderbook("WETH/DAI")
        assert book.bids == [_level(11, 2), _level(10, 3)]
        assert book.asks == [_level(11.5, 4), _level(12, 1)]
        assert book.best_bid == Decimal("11")
        assert book.best_ask == Decimal("11.5")
        assert book.spread == Decimal("0.5")

    def test_update_absent_side_untouched(self):
        store = SyncStateManager()
        store.init_orderbook("WETH/DAI", [_level(10, 5)], [_level(12, 1)])
        store.update_orderbook("WETH/DAI", None, [_level(13, 1)])

        assert store.get_orderbook("WETH/DAI").bids == [_level(10, 5)]

    def test_update_without_snapshot_starts_empty(self):
        store = SyncStateManager()
        store.update_orderbook(None, [_level(10, 5)], None)

        assert store.get_orderbook().bids == [_level(10, 5)]

    def test_pairless_update_applies_to_snapshot_pair(self):
        store = SyncStateManager()
        store.init_orderbook("WETH/DAI", [_level(10, 5)], [])
        store.update_orderbook(None, [_level(10, 0)], None)

        assert store.get_orderbook("WETH/DAI").bids == []
        assert list(store.orderbooks) == ["WETH/DAI"]
        assert store.get_orderbook() is store.get_orderbook("WETH/DAI")

    def test_pairless_update_follows_latest_snapshot(self):
        store = SyncStateManager()
        store.init_orderbook("A/B", [_level(1, 1)], [])
        store.init_orderbook("C/D", [_level(2, 1)], [])
        store.update_orderbook(None, [_level(3, 1)], None)

        assert store.get_orderbook("A/B").bids == [_level(1, 1)]
        assert store.get_orderbook("C/D").bids == [_level(3, 1), _level(2, 1)]
        assert None not in store.orderbooks

    def test_books_are_per_pair(self):
        store = SyncStateManager()
        store.init_orderbook("A/B", [_level(1, 1)], [])
        store.init_orderbook("C/D", [_level(2, 1)], [])

        assert store.get_orderbook("A/B").best_bid == Decimal("1")
        assert store.get_orderbook("C/D").best_bid == Decimal("2")


class TestOhlcv:
    """Tests for the candle series."""

    def test_update_replaces_same_time_and_appends(self):
        store = SyncStateManager()
        store.replace_ohlcv([_candle(0), _candle(1)])
        store.update_ohlcv([_candle(1, close="9"), _candle(2)])

        assert [c.time for c in store.ohlcv] == [T0, T0 + timedelta(minutes=1), T0 + timedelta(minutes=2)]
        assert store.ohlcv[1].close == Decimal("9")

    def test_replace_sorts_and_caps(self):
        store = SyncStateManager(max_candles=2)
        store.replace_ohlcv([_candle(2), _candle(0), _candle(1)])

        assert [c.time for c in store.ohlcv] == [T0 + timedelta(minutes=1), T0 + timedelta(minutes=2)]

    def test_stats(self):
        store = SyncStateManager()
        store.replace_ohlcv([_candle(0)])

        stats = store.get_stats()
        assert stats["candles"] == 1
        assert stats["ohlcv_inits"] == 1
