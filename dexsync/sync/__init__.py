"""
Exchange sync client.

One websocket connection, four channels (orders, orderbook, trades,
ohlcv), a local table store and the order co-signing flow. The runner
lives in dexsync.sync.runner and is started with python -m.
"""

from .config import SyncConfig, load_sync_config
from .connection import ConnectionManager, ConnectionState
from .context import (
    FaultKind,
    Notice,
    NoticeLevel,
    NotificationLog,
    SyncContext,
    SyncFault,
    fan_out,
)
from .datasets import OHLCVSynchronizer, OrderBookSynchronizer, TradesSynchronizer
from .dispatcher import SyncDispatcher
from .events import (
    Channel,
    DatasetEventType,
    LifecycleEvent,
    LifecycleType,
    OrderEventType,
    WebsocketEvent,
    WebsocketMessage,
)
from .exceptions import ConnectionNotOpenError, ParseError, SigningError
from .models import Candle, Order, OrderBookState, OrderStatus, PriceLevel, Side, Trade
from .orders import OrderLifecycleHandler
from .router import ChannelRouter
from .signer import BaseSigner, EthSigner, get_random_nonce
from .state import SyncStateManager

__all__ = [
    # Config
    "SyncConfig",
    "load_sync_config",
    # Connection
    "ConnectionManager",
    "ConnectionState",
    # Context
    "FaultKind",
    "Notice",
    "NoticeLevel",
    "NotificationLog",
    "SyncContext",
    "SyncFault",
    "fan_out",
    # Events
    "Channel",
    "DatasetEventType",
    "LifecycleEvent",
    "LifecycleType",
    "OrderEventType",
    "WebsocketEvent",
    "WebsocketMessage",
    # Errors
    "ConnectionNotOpenError",
    "ParseError",
    "SigningError",
    # Models
    "Candle",
    "Order",
    "OrderBookState",
    "OrderStatus",
    "PriceLevel",
    "Side",
    "Trade",
    # Handlers
    "ChannelRouter",
    "OrderLifecycleHandler",
    "OrderBookSynchronizer",
    "TradesSynchronizer",
    "OHLCVSynchronizer",
    # Signing
    "BaseSigner",
    "EthSigner",
    "get_random_nonce",
    # State
    "SyncStateManager",
    # Dispatcher
    "SyncDispatcher",
]
