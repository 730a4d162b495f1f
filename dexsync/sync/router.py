"""
Channel router.

Pure dispatch table from channel to channel handler. No payload is
transformed here.
"""

from typing import Awaitable, Callable, Mapping

from .context import FaultKind, SyncContext
from .events import Channel, WebsocketEvent, WebsocketMessage

ChannelHandler = Callable[[WebsocketEvent], Awaitable[None]]


class ChannelRouter:
    """Demultiplexes envelopes by channel."""

    def __init__(self, ctx: SyncContext, handlers: Mapping[Channel, ChannelHandler]):
        """
        Args:
            ctx: Capabilities (only fault reporting is used here)
            handlers: One handler per Channel member

        Raises:
            ValueError: If any channel has no handler
        """
        missing = [c.value for c in Channel if c not in handlers]
        if missing:
            raise ValueError(f"No handler for channels: {', '.join(missing)}")

        self.ctx = ctx
        self.handlers = dict(handlers)

    async def route(self, message: WebsocketMessage):
        """Dispatch one envelope. Unknown channels are logged and dropped."""
        try:
            channel = Channel(message.channel)
        except ValueError:
            self.ctx.fault(
                FaultKind.PROTOCOL,
                f"Unknown channel: {message.channel}",
                channel=message.channel,
                event_type=message.event.type,
            )
            return

        await self.handlers[channel](message.event)
