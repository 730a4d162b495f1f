"""
Order-book, trade-history and candle synchronizers.

Each dataset channel carries two event kinds:
- INIT: snapshot, replaces the local dataset
- UPDATE: delta, merged into the local dataset

An absent or empty payload is a no-op. A payload that fails to parse is
dropped whole and the dataset is left exactly as it was.
"""

from abc import ABC, abstractmethod
from typing import Any

from .context import FaultKind, SyncContext
from .events import Channel, DatasetEventType, WebsocketEvent
from .parsers import parse_ohlcv, parse_orderbook, parse_trades


def is_empty_payload(payload: Any) -> bool:
    """True for None and for empty lists/objects."""
    if payload is None:
        return True
    if isinstance(payload, (list, dict, str)) and len(payload) == 0:
        return True
    return False


class DatasetSynchronizer(ABC):
    """
    Base class for INIT/UPDATE channels.

    Subclasses parse the payload (may raise) and then apply it to the
    store. Parsing always finishes before the store is touched.
    """

    channel: Channel

    def __init__(self, ctx: SyncContext):
        self.ctx = ctx
        self._handlers = {
            DatasetEventType.INIT: self.init,
            DatasetEventType.UPDATE: self.update,
        }

    async def handle(self, event: WebsocketEvent):
        """Handle one dataset event."""
        try:
            event_type = DatasetEventType(event.type)
        except ValueError:
            self.ctx.fault(
                FaultKind.PROTOCOL,
                f"Unknown {self.channel.value} event: {event.type}",
                channel=self.channel.value,
                event_type=event.type,
            )
            return

        if is_empty_payload(event.payload):
            return

        try:
            parsed = self.parse(event.payload)
        except Exception as e:
            self.ctx.fault(FaultKind.PARSE, e, channel=self.channel.value, event_type=event_type.value)
            self.ctx.danger(str(e))
            return

        self._handlers[event_type](parsed)

    @abstractmethod
    def parse(self, payload: Any) -> Any:
        """Convert the raw payload into records (raises ParseError)."""
        pass

    @abstractmethod
    def init(self, parsed: Any):
        """Replace the dataset."""
        pass

    @abstractmethod
    def update(self, parsed: Any):
        """Merge into the dataset."""
        pass


class OrderBookSynchronizer(DatasetSynchronizer):
    """Order book per pair: replace on INIT, level upsert/delete on UPDATE."""

    channel = Channel.ORDERBOOK

    def parse(self, payload):
        return parse_orderbook(payload)

    def init(self, delta):
        if delta.is_empty:
            return
        self.ctx.store.init_orderbook(delta.pair, delta.bids, delta.asks)

    def update(self, delta):
        if delta.is_empty:
            return
        self.ctx.store.update_orderbook(delta.pair, delta.bids, delta.asks)


class TradesSynchronizer(DatasetSynchronizer):
    """Trade history: replace on INIT, merge by id on UPDATE."""

    channel = Channel.TRADES

    def parse(self, payload):
        return parse_trades(payload)

    def init(self, trades):
        self.ctx.store.replace_trades(trades)

    def update(self, trades):
        if trades:
            self.ctx.store.upsert_trades(trades)


class OHLCVSynchronizer(DatasetSynchronizer):
    """Candles: replace on INIT, merge by open time on UPDATE."""

    channel = Channel.OHLCV

    def parse(self, payload):
        return parse_ohlcv(payload)

    def init(self, candles):
        self.ctx.store.replace_ohlcv(candles)

    def update(self, candles):
        if candles:
            self.ctx.store.update_ohlcv(candles)
