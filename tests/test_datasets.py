"""
Tests for the order-book, trades and OHLCV synchronizers.
"""

from decimal import Decimal

import pytest

from dexsync.sync.context import FaultKind, NoticeLevel
from dexsync.sync.datasets import (
    OHLCVSynchronizer,
    OrderBookSynchronizer,
    TradesSynchronizer,
    is_empty_payload,
)
from dexsync.sync.events import WebsocketEvent
from dexsync.sync.models import PriceLevel

from conftest import fault_kinds, trade_payload

PAIR = "WETH/DAI"


def _candle(time, close="1.5"):
    return {"time": time, "open": "1", "high": "2", "low": "0.5", "close": close, "volume": "3"}


class TestEmptyPayload:
    """Tests for is_empty_payload()."""

    @pytest.mark.parametrize("payload", [None, [], {}, ""])
    def test_empty(self, payload):
        assert is_empty_payload(payload)

    @pytest.mark.parametrize("payload", [[{}], {"bids": []}, 0])
    def test_not_empty(self, payload):
        assert not is_empty_payload(payload)


class TestOrderBookSynchronizer:
    """Tests for order-book INIT/UPDATE."""

    @pytest.mark.asyncio
    async def test_init_then_zero_update_removes_level(self, ctx, store):
        sync = OrderBookSynchronizer(ctx)
        store.init_orderbook(PAIR, [PriceLevel(Decimal("9"), Decimal("1"))], [])

        await sync.handle(
            WebsocketEvent("INIT", {"pairName": PAIR, "bids": [{"price": 10, "qty": 5}], "asks": []})
        )
        book = store.get_orderbook(PAIR)
        assert book.bids == [PriceLevel(Decimal("10"), Decimal("5"))]
        assert book.asks == []

        await sync.handle(WebsocketEvent("UPDATE", {"pairName": PAIR, "bids": [{"price": 10, "qty": 0}]}))
        assert store.get_orderbook(PAIR).bids == []

    @pytest.mark.asyncio
    async def test_update_without_pair_name_hits_snapshot_book(self, ctx, store):
        sync = OrderBookSynchronizer(ctx)
        await sync.handle(
            WebsocketEvent("INIT", {"pairName": PAIR, "bids": [{"price": 10, "qty": 5}], "asks": []})
        )
        await sync.handle(WebsocketEvent("UPDATE", {"bids": [{"price": 10, "qty": 0}]}))

        assert store.get_orderbook(PAIR).bids == []
        assert list(store.orderbooks) == [PAIR]

    @pytest.mark.parametrize("payload", [None, {}, [], {"pairName": PAIR}])
    @pytest.mark.asyncio
    async def test_empty_init_is_noop(self, ctx, store, notices, payload):
        store.init_orderbook(PAIR, [PriceLevel(Decimal("9"), Decimal("1"))], [])
        before = store.get_orderbook(PAIR)

        await OrderBookSynchronizer(ctx).handle(WebsocketEvent("INIT", payload))

        assert store.get_orderbook(PAIR) is before
        assert notices.messages() == []

    @pytest.mark.asyncio
    async def test_malformed_update_keeps_book(self, ctx, store, notices, faults):
        """Bad level anywhere: nothing applied, danger notice."""
        store.init_orderbook(PAIR, [PriceLevel(Decimal("10"), Decimal("5"))], [])
        before = store.get_orderbook(PAIR)

        await OrderBookSynchronizer(ctx).handle(
            WebsocketEvent(
                "UPDATE",
                {"pairName": PAIR, "bids": [{"price": 10, "qty": 0}, {"price": "x", "qty": 1}]},
            )
        )

        assert store.get_orderbook(PAIR) is before
        assert len(notices.messages(NoticeLevel.DANGER)) == 1
        assert fault_kinds(faults) == [FaultKind.PARSE]
        assert faults[0].channel == "orderbook"

    @pytest.mark.asyncio
    async def test_unknown_event_ignored(self, ctx, store, notices, faults):
        await OrderBookSynchronizer(ctx).handle(WebsocketEvent("SNAPSHOT", {"bids": []}))

        assert store.orderbooks == {}
        assert notices.messages() == []
        assert fault_kinds(faults) == [FaultKind.PROTOCOL]


class TestTradesSynchronizer:
    """Tests for trade-history INIT/UPDATE."""

    @pytest.mark.asyncio
    async def test_init_replaces_update_merges(self, ctx, store):
        sync = TradesSynchronizer(ctx)

        await sync.handle(WebsocketEvent("INIT", [trade_payload(hash="a", createdAt="2024-01-01T00:00:05Z")]))
        await sync.handle(
            WebsocketEvent(
                "UPDATE",
                {
                    "trades": [
                        trade_payload(hash="b", createdAt="2024-01-01T00:00:09Z"),
                        trade_payload(hash="c", createdAt="2024-01-01T00:00:01Z"),
                    ]
                },
            )
        )
        assert [t.id for t in store.get_trades()] == ["c", "a", "b"]

        await sync.handle(WebsocketEvent("INIT", [trade_payload(hash="z")]))
        assert [t.id for t in store.get_trades()] == ["z"]

    @pytest.mark.asyncio
    async def test_malformed_list_is_all_or_nothing(self, ctx, store, notices):
        sync = TradesSynchronizer(ctx)
        await sync.handle(WebsocketEvent("INIT", [trade_payload(hash="a")]))

        await sync.handle(WebsocketEvent("UPDATE", [trade_payload(hash="b"), {"hash": "broken"}]))

        assert [t.id for t in store.get_trades()] == ["a"]
        assert "index 1" in notices.messages(NoticeLevel.DANGER)[0]

    @pytest.mark.asyncio
    async def test_empty_update_is_noop(self, ctx, store):
        await TradesSynchronizer(ctx).handle(WebsocketEvent("UPDATE", []))
        assert store.stats["trade_updates"] == 0


class TestOHLCVSynchronizer:
    """Tests for candle INIT/UPDATE."""

    @pytest.mark.asyncio
    async def test_init_then_update(self, ctx, store):
        sync = OHLCVSynchronizer(ctx)

        await sync.handle(
            WebsocketEvent("INIT", [_candle("2024-01-01T00:00:00Z"), _candle("2024-01-01T01:00:00Z")])
        )
        await sync.handle(
            WebsocketEvent(
                "UPDATE",
                {"ohlcv": [_candle("2024-01-01T01:00:00Z", close="1.9"), _candle("2024-01-01T02:00:00Z")]},
            )
        )

        assert len(store.ohlcv) == 3
        assert store.ohlcv[1].close == Decimal("1.9")
        assert store.ohlcv[0].time < store.ohlcv[1].time < store.ohlcv[2].time

    @pytest.mark.asyncio
    async def test_malformed_candle_keeps_series(self, ctx, store, notices):
        sync = OHLCVSynchronizer(ctx)
        await sync.handle(WebsocketEvent("INIT", [_candle("2024-01-01T00:00:00Z")]))
        before = list(store.ohlcv)

        await sync.handle(WebsocketEvent("INIT", [{"time": "2024-01-01T00:00:00Z", "open": "1"}]))

        assert store.ohlcv == before
        assert len(notices.messages(NoticeLevel.DANGER)) == 1
