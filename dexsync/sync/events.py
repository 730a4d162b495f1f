"""
Wire envelopes and event variants.

Inbound frames look like:
    {"channel": "orders", "event": {"type": "ORDER_ADDED", "payload": {...}}}

Channel and event names are closed sets (str enums). Raw strings are
converted at the routing boundary; anything that does not convert is
a protocol fault.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Channel(str, Enum):
    """Inbound channels."""
    ORDERS = "orders"
    ORDERBOOK = "orderbook"
    TRADES = "trades"
    OHLCV = "ohlcv"


class OrderEventType(str, Enum):
    """Event kinds on the orders channel."""
    ORDER_ADDED = "ORDER_ADDED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_SUCCESS = "ORDER_SUCCESS"
    ORDER_PENDING = "ORDER_PENDING"
    REQUEST_SIGNATURE = "REQUEST_SIGNATURE"
    ERROR = "ERROR"


class DatasetEventType(str, Enum):
    """Event kinds on the orderbook, trades and ohlcv channels."""
    INIT = "INIT"
    UPDATE = "UPDATE"


class OutboundEventType(str, Enum):
    """Event kinds the client sends."""
    SUBSCRIBE = "SUBSCRIBE"
    SUBMIT_SIGNATURE = "SUBMIT_SIGNATURE"


class LifecycleType(str, Enum):
    """Transport lifecycle events."""
    OPEN = "open"
    CLOSE = "close"
    ERROR = "error"


class MessageFormatError(ValueError):
    """Frame is not a {channel, event} envelope."""


@dataclass
class WebsocketEvent:
    """The `event` half of an envelope."""
    type: str
    payload: Any = None
    hash: Optional[str] = None


@dataclass
class WebsocketMessage:
    """Decoded inbound envelope. Channel is kept raw until routing."""
    channel: str
    event: WebsocketEvent

    @classmethod
    def from_dict(cls, data: Any) -> "WebsocketMessage":
        """
        Build an envelope from decoded JSON.

        Raises:
            MessageFormatError: If the frame is not a valid envelope
        """
        if not isinstance(data, dict):
            raise MessageFormatError(f"expected object, got {type(data).__name__}")

        channel = data.get("channel")
        event = data.get("event")
        if not isinstance(channel, str):
            raise MessageFormatError("missing 'channel'")
        if not isinstance(event, dict) or not isinstance(event.get("type"), str):
            raise MessageFormatError("missing 'event.type'")

        return cls(
            channel=channel,
            event=WebsocketEvent(type=event["type"], payload=event.get("payload"), hash=event.get("hash")),
        )


@dataclass
class LifecycleEvent:
    """Transport lifecycle notification."""
    type: LifecycleType
    code: Optional[int] = None
    reason: str = ""
    error: Optional[BaseException] = field(default=None, compare=False)


def outbound(channel: Channel, event_type: OutboundEventType, payload: Any, hash: Optional[str] = None) -> dict:
    """Build an outbound envelope."""
    event = {"type": event_type.value, "payload": payload}
    if hash is not None:
        event["hash"] = hash
    return {"channel": channel.value, "event": event}
