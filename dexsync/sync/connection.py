"""
WebSocket connection manager.

Owns one websocket to the exchange. Exposes connect/close, a send
primitive and a single inbound-message callback. Lifecycle changes
(open/close/error) are reported to the callback given to
open_connection, once per occurrence and in order.

The manager never reconnects on its own; reconnection policy lives in
the dispatcher, which builds a fresh manager for every attempt.
"""

import asyncio
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

import structlog
import websockets
from websockets.exceptions import ConnectionClosed

from .events import Channel, LifecycleEvent, LifecycleType, OutboundEventType, outbound
from .exceptions import ConnectionNotOpenError

logger = structlog.get_logger()

MessageHandler = Callable[[Any], None]
LifecycleHandler = Callable[[LifecycleEvent], None]


class ConnectionState(str, Enum):
    """Connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class ConnectionManager:
    """
    Single websocket connection to the exchange.

    Inbound frames are decoded from JSON and handed, one at a time, to
    the handler registered with on_message. Frames that arrive before a
    handler is registered are dropped.
    """

    def __init__(
        self,
        url: str,
        ping_interval: Optional[float] = 30,
        ping_timeout: Optional[float] = 10,
        close_timeout: float = 5,
    ):
        """
        Initialize connection manager.

        Args:
            url: Exchange websocket endpoint
            ping_interval: Keepalive ping interval in seconds (None disables)
            ping_timeout: Seconds to wait for a pong before failing
            close_timeout: Seconds to wait for the closing handshake
        """
        self.url = url
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.close_timeout = close_timeout

        self.ws = None
        self.state = ConnectionState.DISCONNECTED
        self._task: Optional[asyncio.Task] = None
        self._message_handler: Optional[MessageHandler] = None
        self._lifecycle_handler: Optional[LifecycleHandler] = None

        # Stats
        self.stats = {
            "messages_received": 0,
            "messages_sent": 0,
            "messages_dropped": 0,
            "errors": 0,
        }
        self.last_message_at: Optional[datetime] = None

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.OPEN

    def create_connection(self):
        """
        Prepare a fresh connection without touching the network.

        Raises:
            RuntimeError: If a connection from this manager is still running
        """
        if self._task is not None and not self._task.done():
            raise RuntimeError("Connection already running; close it first")

        self.ws = None
        self._task = None
        self.state = ConnectionState.DISCONNECTED
        logger.debug("Connection created", url=self.url)

    def open_connection(self, on_lifecycle: LifecycleHandler) -> Callable[[], None]:
        """
        Start the handshake in a background task.

        Must be called from a running event loop.

        Args:
            on_lifecycle: Receives open/close/error events

        Returns:
            close capability (idempotent)
        """
        if self._task is not None:
            raise RuntimeError("open_connection called twice; call create_connection first")

        self._lifecycle_handler = on_lifecycle
        self.state = ConnectionState.CONNECTING
        self._task = asyncio.create_task(self._connect_and_run(), name="dexsync-websocket")
        return self.close

    def on_message(self, handler: MessageHandler):
        """Register the inbound-message callback (last registration wins)."""
        self._message_handler = handler

    def close(self):
        """Close the connection and stop the reader task."""
        if self._task is None or self._task.done():
            return

        logger.info("Closing websocket", url=self.url)
        self.state = ConnectionState.CLOSING
        self._task.cancel()

    async def wait_closed(self):
        """Wait until the reader task has finished."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _connect_and_run(self):
        """Connect to WebSocket and process messages."""
        code: Optional[int] = None
        reason = ""

        logger.info("Connecting to websocket", url=self.url)
        try:
            async with websockets.connect(
                self.url,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
                close_timeout=self.close_timeout,
            ) as ws:
                self.ws = ws
                self.state = ConnectionState.OPEN
                logger.info("Websocket connected", url=self.url)
                self._emit(LifecycleEvent(LifecycleType.OPEN))

                async for message in ws:
                    self._handle_message(message)

                code, reason = ws.close_code, ws.close_reason or ""

        except ConnectionClosed as e:
            if e.rcvd is not None:
                code, reason = e.rcvd.code, e.rcvd.reason
            logger.warning("Websocket connection closed", code=code, reason=reason)
        except asyncio.CancelledError:
            reason = "closed by client"
            raise
        except Exception as e:
            self.stats["errors"] += 1
            reason = str(e)
            logger.error("Websocket error", url=self.url, error=str(e))
            self._emit(LifecycleEvent(LifecycleType.ERROR, reason=str(e), error=e))
        finally:
            self.ws = None
            self.state = ConnectionState.DISCONNECTED
            self._emit(LifecycleEvent(LifecycleType.CLOSE, code=code, reason=reason))

    def _handle_message(self, message: str | bytes):
        """
        Decode one frame and hand it to the message handler.

        Text heartbeats ("PING"/"PONG") are skipped. A frame that is not
        JSON is reported as a lifecycle error; the connection stays up.
        """
        self.stats["messages_received"] += 1
        self.last_message_at = datetime.now(timezone.utc)

        if isinstance(message, bytes):
            try:
                message = message.decode("utf-8")
            except UnicodeDecodeError as e:
                self.stats["errors"] += 1
                logger.warning("Failed to decode message", error=str(e))
                self._emit(LifecycleEvent(LifecycleType.ERROR, reason=f"Invalid UTF-8 frame: {e}", error=e))
                return
        if message in ("PING", "PONG"):
            return

        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            self.stats["errors"] += 1
            logger.warning("Failed to parse message", error=str(e))
            self._emit(LifecycleEvent(LifecycleType.ERROR, reason=f"Invalid JSON frame: {e}", error=e))
            return

        if self._message_handler is None:
            self.stats["messages_dropped"] += 1
            return

        try:
            self._message_handler(data)
        except Exception as e:
            self.stats["errors"] += 1
            logger.error("Message handler failed", error=str(e), exc_info=True)

    def _emit(self, event: LifecycleEvent):
        if self._lifecycle_handler is None:
            return
        try:
            self._lifecycle_handler(event)
        except Exception as e:
            logger.error("Lifecycle handler failed", event=event.type.value, error=str(e), exc_info=True)

    async def send(self, message: dict):
        """
        Send one JSON message.

        Raises:
            ConnectionNotOpenError: If the socket is not open
        """
        if self.ws is None or self.state != ConnectionState.OPEN:
            raise ConnectionNotOpenError("Websocket is not open")

        await self.ws.send(json.dumps(message, default=str))
        self.stats["messages_sent"] += 1

    async def subscribe(self, channel: Channel, payload: dict):
        """Subscribe to a dataset channel for one pair."""
        await self.send(outbound(channel, OutboundEventType.SUBSCRIBE, payload))
        logger.info("Subscribed", channel=channel.value, payload=payload)

    async def send_submit_signature(
        self,
        hash: Optional[str],
        order: Optional[dict],
        remaining_order: Optional[dict],
        matches: Optional[list],
    ):
        """Send signed order/trades back in answer to REQUEST_SIGNATURE."""
        payload = {
            "order": order,
            "remainingOrder": remaining_order,
            "matches": matches,
        }
        await self.send(outbound(Channel.ORDERS, OutboundEventType.SUBMIT_SIGNATURE, payload, hash=hash))

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "url": self.url,
            "state": self.state.value,
            "messages_received": self.stats["messages_received"],
            "messages_sent": self.stats["messages_sent"],
            "messages_dropped": self.stats["messages_dropped"],
            "errors": self.stats["errors"],
            "last_message": (
                self.last_message_at.isoformat() if self.last_message_at else None
            ),
        }
