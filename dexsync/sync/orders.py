"""
Order lifecycle handler.

Interprets events on the orders channel:
- ORDER_ADDED / ORDER_CANCELLED: upsert one order
- ORDER_SUCCESS / ORDER_PENDING: batch-upsert the matches that concern
  the local wallet (as order owner, maker or taker)
- REQUEST_SIGNATURE: co-sign the remaining order and matched trades,
  then submit them back to the exchange
- ERROR: surface the exchange's error to the user

Every event is handled independently. Failures are caught at the event
boundary, reported as faults and shown as danger notices; the handler
and the connection keep running.
"""

import asyncio
from typing import Any, Iterable

import structlog

from .context import FaultKind, SyncContext
from .events import Channel, OrderEventType, WebsocketEvent
from .exceptions import ParseError, SigningError
from .models import Match, Order, Trade
from .parsers import canonical_address, parse_order, parse_trade
from .signer import get_random_nonce

logger = structlog.get_logger()


def _fault_kind(error: BaseException, default: FaultKind) -> FaultKind:
    if isinstance(error, SigningError):
        return FaultKind.SIGNING
    if isinstance(error, ConnectionError):
        return FaultKind.TRANSPORT
    if isinstance(error, (ParseError, ValueError, TypeError, KeyError)):
        return FaultKind.PARSE
    return default


def _matches(payload: Any) -> list[Match]:
    """Extract the match list from an ORDER_SUCCESS/ORDER_PENDING payload."""
    if not isinstance(payload, dict) or not isinstance(payload.get("matches"), list):
        raise ParseError("Invalid matches payload: expected {'matches': [...]}")
    return [Match.from_dict(m) for m in payload["matches"]]


class OrderLifecycleHandler:
    """
    Handler for the orders channel.

    Every OrderEventType member must have a handler; construction fails
    otherwise.
    """

    def __init__(self, ctx: SyncContext):
        self.ctx = ctx
        self._handlers = {
            OrderEventType.ORDER_ADDED: self._handle_order_added,
            OrderEventType.ORDER_CANCELLED: self._handle_order_cancelled,
            OrderEventType.ORDER_SUCCESS: self._handle_order_success,
            OrderEventType.ORDER_PENDING: self._handle_order_pending,
            OrderEventType.REQUEST_SIGNATURE: self._handle_request_signature,
            OrderEventType.ERROR: self._handle_order_error,
        }
        missing = [t.value for t in OrderEventType if t not in self._handlers]
        if missing:
            raise ValueError(f"No handler for order events: {', '.join(missing)}")

    async def handle(self, event: WebsocketEvent):
        """Handle one orders-channel event."""
        try:
            event_type = OrderEventType(event.type)
        except ValueError:
            self.ctx.fault(
                FaultKind.PROTOCOL,
                f"Unknown order event: {event.type}",
                channel=Channel.ORDERS.value,
                event_type=event.type,
            )
            return

        await self._handlers[event_type](event)

    def _fail(self, error: BaseException, event_type: OrderEventType, default: FaultKind):
        self.ctx.fault(
            _fault_kind(error, default),
            error,
            channel=Channel.ORDERS.value,
            event_type=event_type.value,
        )
        self.ctx.danger(str(error))

    # ------------------------------------------------------------------
    # Single-order events
    # ------------------------------------------------------------------

    def _upsert_single(self, event: WebsocketEvent, event_type: OrderEventType, notice: str):
        try:
            order = parse_order(event.payload)
        except Exception as e:
            self._fail(e, event_type, FaultKind.PARSE)
            return

        self.ctx.store.upsert_orders([order])
        self.ctx.success(notice)

    async def _handle_order_added(self, event: WebsocketEvent):
        self._upsert_single(event, OrderEventType.ORDER_ADDED, "Order added")

    async def _handle_order_cancelled(self, event: WebsocketEvent):
        self._upsert_single(event, OrderEventType.ORDER_CANCELLED, "Order cancelled")

    # ------------------------------------------------------------------
    # Match events
    # ------------------------------------------------------------------

    async def _collect_own(self, payload: Any) -> tuple[list[Order], list[Trade]]:
        """
        Split matches into the orders and trades that concern the local wallet.

        Addresses are checksum-normalized on both sides before comparing.
        Only matching halves are parsed.
        """
        address = canonical_address(await self.ctx.signer.get_address())
        orders: list[Order] = []
        trades: list[Trade] = []

        for match in _matches(payload):
            owner = match.order.get("userAddress", match.order.get("user_address"))
            if canonical_address(owner) == address:
                orders.append(parse_order(match.order))

            maker = canonical_address(match.trade.get("maker"))
            taker = canonical_address(match.trade.get("taker"))
            if address in (maker, taker):
                trades.append(parse_trade(match.trade))

        return orders, trades

    async def _apply_matches(self, event: WebsocketEvent, event_type: OrderEventType, notice: str):
        try:
            orders, trades = await self._collect_own(event.payload)
        except Exception as e:
            self._fail(e, event_type, FaultKind.PARSE)
            return

        # One batched update per table, however many matches there were
        if orders:
            self.ctx.store.upsert_orders(orders)
        if trades:
            self.ctx.store.upsert_trades(trades)

        logger.debug(
            "Matches applied",
            event_type=event_type.value,
            orders=len(orders),
            trades=len(trades),
        )
        self.ctx.success(notice)

    async def _handle_order_success(self, event: WebsocketEvent):
        await self._apply_matches(event, OrderEventType.ORDER_SUCCESS, "Order success")

    async def _handle_order_pending(self, event: WebsocketEvent):
        await self._apply_matches(event, OrderEventType.ORDER_PENDING, "Order pending")

    # ------------------------------------------------------------------
    # Signature protocol
    # ------------------------------------------------------------------

    async def _sign_all(self, trades: Iterable[dict]) -> list[dict]:
        """
        Sign trades concurrently; all must succeed.

        On the first failure the outstanding signing tasks are cancelled
        and the error propagates.
        """
        tasks = [asyncio.ensure_future(self.ctx.signer.sign_trade(t)) for t in trades]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _handle_request_signature(self, event: WebsocketEvent):
        """
        Co-sign a match on the exchange's request.

        Steps (each only if the field is present):
        1. Upsert the original taker order
        2. Re-nonce and sign the remaining (unfilled) part of the taker order
        3. Re-nonce and sign every matched trade, concurrently
        4. Submit {hash, order, remainingOrder, matches}

        Any failure stops the flow before submission; nothing partially
        signed is ever sent.
        """
        try:
            payload = event.payload
            if not isinstance(payload, dict):
                raise ParseError("Invalid signature request: payload must be an object")

            hash_ = event.hash or payload.get("hash")
            order = payload.get("order")
            remaining_order = payload.get("remainingOrder")
            matches = payload.get("matches")

            # The order originally sent goes into the orders table
            if order:
                self.ctx.store.upsert_orders([parse_order(order)])

            # Sign the remaining order in case the taker order was partially filled
            if remaining_order:
                if not isinstance(remaining_order, dict):
                    raise ParseError("Invalid signature request: remainingOrder must be an object")
                remaining_order = await self.ctx.signer.sign_order(
                    dict(remaining_order, nonce=get_random_nonce())
                )

            # Sign every individual trade
            if matches:
                if not isinstance(matches, list):
                    raise ParseError("Invalid signature request: matches must be a list")
                parsed = [Match.from_dict(m) for m in matches]
                signed = await self._sign_all(
                    dict(m.trade, tradeNonce=get_random_nonce()) for m in parsed
                )
                matches = [dict(raw, trade=trade) for raw, trade in zip(matches, signed)]

            self.ctx.success("Signing trade")
            await self.ctx.submit_signatures(hash_, order, remaining_order, matches)
            logger.info(
                "Signatures submitted",
                hash=hash_,
                remaining_order=bool(remaining_order),
                matches=len(matches or []),
            )

        except Exception as e:
            self._fail(e, OrderEventType.REQUEST_SIGNATURE, FaultKind.SIGNING)

    # ------------------------------------------------------------------
    # Exchange-side errors
    # ------------------------------------------------------------------

    async def _handle_order_error(self, event: WebsocketEvent):
        logger.warning("Exchange reported order error", payload=event.payload)
        self.ctx.danger(f"Error: {event.payload}")
