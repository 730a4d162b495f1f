"""
Sync dispatcher: the single entry point.

open_connection() builds a connection, wires the channel router and the
lifecycle policy, and returns a teardown handle.

Lifecycle policy:
- close: warn the user, schedule exactly one full reconnect after
  reconnect_delay. The reconnect starts from scratch with a brand-new
  connection; nothing in flight is resumed. The server's next INIT is
  the resync.
- open after a close: "Reconnected" notice (observational only).
- error: log and report; the server decides whether to close.

Teardown closes the connection, cancels in-flight handlers and clears
any pending reconnect timer.
"""

import asyncio
from collections import deque
from typing import Callable, Optional

import structlog

from .config import SyncConfig
from .connection import ConnectionManager
from .context import (
    FaultKind,
    FaultSink,
    Notice,
    NoticeLevel,
    NoticeSink,
    NotificationLog,
    SyncContext,
    SyncFault,
)
from .datasets import OHLCVSynchronizer, OrderBookSynchronizer, TradesSynchronizer
from .events import Channel, LifecycleEvent, LifecycleType, MessageFormatError, WebsocketMessage
from .exceptions import ConnectionNotOpenError
from .orders import OrderLifecycleHandler
from .router import ChannelRouter
from .signer import BaseSigner
from .state import SyncStateManager

logger = structlog.get_logger()

ConnectionFactory = Callable[[], ConnectionManager]


class SyncDispatcher:
    """
    Composes connection, router and handlers.

    Exactly one connection is live at a time. Handlers get their
    capabilities through a SyncContext; the signer is injected here.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        signer: BaseSigner,
        store: Optional[SyncStateManager] = None,
        notify: Optional[NoticeSink] = None,
        on_fault: Optional[FaultSink] = None,
        config: Optional[SyncConfig] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            connection_factory: Builds a fresh ConnectionManager per attempt
            signer: Local signing credential
            store: Table store (new empty store if None)
            notify: Notice sink (in-process NotificationLog if None)
            on_fault: Optional observer for caught faults
            config: Sync configuration (defaults if None)
        """
        self.config = config or SyncConfig()
        self.connection_factory = connection_factory
        self.signer = signer
        self.store = store or SyncStateManager(
            max_trades=self.config.max_trades,
            max_candles=self.config.max_candles,
        )
        self.notifications = NotificationLog(maxlen=self.config.notice_history)
        self._notify = notify or self.notifications
        self._on_fault = on_fault
        self.faults: deque[SyncFault] = deque(maxlen=self.config.fault_history)

        self.ctx = SyncContext(
            store=self.store,
            signer=signer,
            notify=self._emit_notice,
            report=self._report,
            submit_signatures=self._submit_signatures,
        )
        self.orders = OrderLifecycleHandler(self.ctx)
        self.orderbook = OrderBookSynchronizer(self.ctx)
        self.trades = TradesSynchronizer(self.ctx)
        self.ohlcv = OHLCVSynchronizer(self.ctx)
        self.router = ChannelRouter(
            self.ctx,
            {
                Channel.ORDERS: self.orders.handle,
                Channel.ORDERBOOK: self.orderbook.handle,
                Channel.TRADES: self.trades.handle,
                Channel.OHLCV: self.ohlcv.handle,
            },
        )

        self.connection: Optional[ConnectionManager] = None
        self._close_connection: Optional[Callable[[], None]] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._reconnect_delay = self.config.reconnect_delay
        self._connection_lost = False
        self._active = False
        self._tasks: set[asyncio.Task] = set()

        self.stats = {
            "connects": 0,
            "reconnects": 0,
            "messages_routed": 0,
            "faults": 0,
        }

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def _emit_notice(self, notice: Notice):
        if self._notify is not self.notifications:
            self.notifications(notice)
        self._notify(notice)

    def _report(self, fault: SyncFault):
        self.faults.append(fault)
        self.stats["faults"] += 1
        if self._on_fault is not None:
            try:
                self._on_fault(fault)
            except Exception as e:
                logger.error("Fault observer failed", error=str(e))

    async def _submit_signatures(self, hash, order, remaining_order, matches):
        if self.connection is None:
            raise ConnectionNotOpenError("No active connection")
        await self.connection.send_submit_signature(hash, order, remaining_order, matches)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._active

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def open_connection(self) -> Callable[[], None]:
        """
        Connect and start synchronizing.

        Must be called from a running event loop. If a connection is
        already live its teardown runs first.

        Returns:
            teardown handle
        """
        if self._active:
            logger.warning("open_connection called while active; tearing down previous connection")
            self.close()

        self._active = True
        self._connection_lost = False
        self._reconnect_delay = self.config.reconnect_delay
        self._start()
        return self.close

    def close(self):
        """Teardown: stop the connection, in-flight handlers and any pending reconnect."""
        self._active = False
        self._cancel_reconnect()
        self._release_connection()

        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        logger.info("Sync dispatcher closed")

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _start(self):
        """Build a fresh connection and wire routing and lifecycle handling."""
        self._release_connection()

        connection = self.connection_factory()
        connection.create_connection()
        self.connection = connection
        self.stats["connects"] += 1

        connection.on_message(self._on_message)
        self._close_connection = connection.open_connection(
            lambda event: self._on_lifecycle(connection, event)
        )

    def _release_connection(self):
        if self._close_connection is not None:
            self._close_connection()
        self._close_connection = None
        self.connection = None

    def _on_lifecycle(self, connection: ConnectionManager, event: LifecycleEvent):
        # Events from a superseded connection are ignored
        if connection is not self.connection or not self._active:
            return

        if event.type == LifecycleType.OPEN:
            self._handle_open()
        elif event.type == LifecycleType.CLOSE:
            self._handle_close(event)
        elif event.type == LifecycleType.ERROR:
            self._handle_error(event)

    def _handle_open(self):
        self._reconnect_delay = self.config.reconnect_delay
        if self._connection_lost:
            self._connection_lost = False
            self._emit_notice(Notice(NoticeLevel.SUCCESS, "Reconnected"))
        self._spawn(self._subscribe_pairs())

    def _handle_close(self, event: LifecycleEvent):
        logger.warning("Connection lost", code=event.code, reason=event.reason)
        self._connection_lost = True
        self._emit_notice(Notice(NoticeLevel.DANGER, "Connection lost"))

        if self._reconnect_handle is not None:
            return

        delay = self._reconnect_delay
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._reconnect)
        logger.info("Reconnecting in seconds", delay=delay)

        if self.config.reconnect_backoff > 1:
            self._reconnect_delay = min(
                self._reconnect_delay * self.config.reconnect_backoff,
                self.config.max_reconnect_delay,
            )

    def _handle_error(self, event: LifecycleEvent):
        self.ctx.fault(FaultKind.TRANSPORT, event.error or event.reason)

    def _reconnect(self):
        self._reconnect_handle = None
        if not self._active:
            return
        self.stats["reconnects"] += 1
        logger.info("Reconnecting")
        self._start()

    def _cancel_reconnect(self):
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    async def _subscribe_pairs(self):
        """Subscribe dataset channels for every configured pair."""
        connection = self.connection
        if connection is None:
            return

        for pair in self.config.pairs:
            try:
                await connection.subscribe(Channel.ORDERBOOK, {"pairName": pair})
                await connection.subscribe(Channel.TRADES, {"pairName": pair})
                await connection.subscribe(
                    Channel.OHLCV,
                    {
                        "pairName": pair,
                        "units": self.config.ohlcv_units,
                        "duration": self.config.ohlcv_duration,
                    },
                )
            except Exception as e:
                self.ctx.fault(FaultKind.TRANSPORT, e)
                return

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def _on_message(self, data):
        """Turn one decoded frame into its own handler task."""
        try:
            message = WebsocketMessage.from_dict(data)
        except MessageFormatError as e:
            self.ctx.fault(FaultKind.PROTOCOL, f"Malformed message: {e}")
            return

        self.stats["messages_routed"] += 1
        self._spawn(self.router.route(message))

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self):
        """Wait for all in-flight handlers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_stats(self) -> dict:
        """Get dispatcher, connection and store statistics."""
        return {
            "active": self._active,
            "reconnect_pending": self.reconnect_pending,
            "in_flight": len(self._tasks),
            **self.stats,
            "connection": self.connection.get_stats() if self.connection else None,
            "store": self.store.get_stats(),
        }
