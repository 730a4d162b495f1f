"""
Wire payload parsers.

Pure functions converting raw exchange payloads into domain records.
Every parser either returns fully-built records or raises ParseError;
inputs are never mutated.

Payloads use the exchange's camelCase names (pairName, userAddress,
pricepoint, ...). Snake-case and a few alternate names are accepted too.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from eth_utils import to_checksum_address
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ParseError
from .models import (
    Candle,
    Order,
    OrderBookDelta,
    OrderStatus,
    PriceLevel,
    Side,
    Trade,
)


def canonical_address(value: Any) -> str:
    """
    Checksum-normalize an account address.

    Raises:
        ValueError: If value is not a 20-byte hex address
    """
    if not isinstance(value, str):
        raise ValueError(f"address must be a string, got {type(value).__name__}")
    return to_checksum_address(value)


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class OrderPayload(_WireModel):
    """Order as pushed by the exchange."""
    id: str = Field(validation_alias=AliasChoices("hash", "id"))
    side: Side
    price: Decimal = Field(ge=0, validation_alias=AliasChoices("pricepoint", "price"))
    amount: Decimal = Field(gt=0)
    filled_amount: Decimal = Field(
        default=Decimal(0), ge=0, validation_alias=AliasChoices("filledAmount", "filled_amount")
    )
    user_address: str = Field(validation_alias=AliasChoices("userAddress", "user_address"))
    pair: str = Field(min_length=1, validation_alias=AliasChoices("pairName", "pair"))
    status: OrderStatus = OrderStatus.OPEN
    nonce: Optional[str] = None
    base_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("baseToken", "base_token"))
    quote_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("quoteToken", "quote_token"))
    created_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("createdAt", "created_at"))

    @field_validator("side", "status", mode="before")
    @classmethod
    def normalize_upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("id", "nonce", mode="before")
    @classmethod
    def stringify(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) and not isinstance(value, bool) else value

    @field_validator("user_address")
    @classmethod
    def checksum(cls, value: str) -> str:
        return canonical_address(value)

    @field_validator("created_at")
    @classmethod
    def utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _to_utc(value)

    @model_validator(mode="after")
    def check_fill(self) -> "OrderPayload":
        if self.filled_amount > self.amount:
            raise ValueError("filledAmount exceeds amount")
        return self


class TradePayload(_WireModel):
    """Trade as pushed by the exchange."""
    id: str = Field(validation_alias=AliasChoices("hash", "id"))
    maker: str
    taker: str
    price: Decimal = Field(ge=0, validation_alias=AliasChoices("pricepoint", "price"))
    amount: Decimal = Field(gt=0)
    pair: str = Field(min_length=1, validation_alias=AliasChoices("pairName", "pair"))
    trade_nonce: Optional[str] = Field(default=None, validation_alias=AliasChoices("tradeNonce", "trade_nonce"))
    status: str = "PENDING"
    side: Optional[Side] = None
    order_hash: Optional[str] = Field(default=None, validation_alias=AliasChoices("orderHash", "order_hash"))
    taker_order_hash: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("takerOrderHash", "taker_order_hash")
    )
    created_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("createdAt", "created_at"))

    @field_validator("side", "status", mode="before")
    @classmethod
    def normalize_upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("id", "trade_nonce", mode="before")
    @classmethod
    def stringify(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) and not isinstance(value, bool) else value

    @field_validator("maker", "taker")
    @classmethod
    def checksum(cls, value: str) -> str:
        return canonical_address(value)

    @field_validator("created_at")
    @classmethod
    def utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _to_utc(value)


class LevelPayload(_WireModel):
    """One order-book level. Zero size means 'remove' in an update."""
    price: Decimal = Field(ge=0, validation_alias=AliasChoices("price", "pricepoint"))
    size: Decimal = Field(ge=0, validation_alias=AliasChoices("qty", "amount", "size"))


class OrderBookPayload(_WireModel):
    pair: Optional[str] = Field(default=None, validation_alias=AliasChoices("pairName", "pair"))
    bids: Optional[list[LevelPayload]] = None
    asks: Optional[list[LevelPayload]] = None


class CandlePayload(_WireModel):
    time: datetime = Field(validation_alias=AliasChoices("time", "timestamp", "openTime"))
    open: Decimal = Field(ge=0)
    high: Decimal = Field(ge=0)
    low: Decimal = Field(ge=0)
    close: Decimal = Field(ge=0)
    volume: Decimal = Field(default=Decimal(0), ge=0)
    pair: Optional[str] = Field(default=None, validation_alias=AliasChoices("pairName", "pair"))

    @field_validator("time")
    @classmethod
    def utc(cls, value: datetime) -> datetime:
        return _to_utc(value)

    @model_validator(mode="after")
    def check_range(self) -> "CandlePayload":
        if self.high < self.low:
            raise ValueError("high is below low")
        return self


def _describe(entity: str, exc: ValidationError) -> str:
    """Build a one-line message from the first validation error."""
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    where = f" ({loc})" if loc else ""
    return f"Invalid {entity} payload{where}: {err.get('msg', 'validation failed')}"


def _validate(model: type[BaseModel], raw: Any, entity: str):
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise ParseError(_describe(entity, e)) from e


def _unwrap_list(payload: Any, key: str, entity: str) -> list:
    """Accept either a bare list or an object wrapping it under `key`."""
    if isinstance(payload, dict) and key in payload:
        payload = payload[key]
    if not isinstance(payload, list):
        raise ParseError(f"Invalid {entity} payload: expected a list, got {type(payload).__name__}")
    return payload


def parse_order(raw: Any) -> Order:
    """
    Parse a single order payload.

    Raises:
        ParseError: On any missing or malformed field
    """
    p = _validate(OrderPayload, raw, "order")
    return Order(
        id=p.id,
        side=p.side,
        price=p.price,
        amount=p.amount,
        user_address=p.user_address,
        pair=p.pair,
        status=p.status,
        nonce=p.nonce,
        filled_amount=p.filled_amount,
        base_token=p.base_token,
        quote_token=p.quote_token,
        created_at=p.created_at,
    )


def parse_trade(raw: Any) -> Trade:
    """
    Parse a single trade payload.

    Raises:
        ParseError: On any missing or malformed field
    """
    p = _validate(TradePayload, raw, "trade")
    return Trade(
        id=p.id,
        maker=p.maker,
        taker=p.taker,
        price=p.price,
        amount=p.amount,
        pair=p.pair,
        trade_nonce=p.trade_nonce,
        status=p.status,
        side=p.side,
        order_hash=p.order_hash,
        taker_order_hash=p.taker_order_hash,
        created_at=p.created_at,
    )


def parse_trades(payload: Any) -> list[Trade]:
    """Parse a trade list (`[trade]` or `{"trades": [trade]}`)."""
    items = _unwrap_list(payload, "trades", "trade list")
    trades = []
    for i, item in enumerate(items):
        try:
            trades.append(parse_trade(item))
        except ParseError as e:
            raise ParseError(f"{e} at index {i}") from e
    return trades


def _levels(levels: Optional[list[LevelPayload]]) -> Optional[list[PriceLevel]]:
    if levels is None:
        return None
    return [PriceLevel(price=level.price, size=level.size) for level in levels]


def parse_orderbook(payload: Any) -> OrderBookDelta:
    """
    Parse an order-book snapshot or delta.

    Levels are returned in wire order; sorting is the store's job.
    """
    p = _validate(OrderBookPayload, payload, "orderbook")
    return OrderBookDelta(pair=p.pair, bids=_levels(p.bids), asks=_levels(p.asks))


def parse_ohlcv(payload: Any) -> list[Candle]:
    """Parse a candle series (`[candle]` or `{"ohlcv": [candle]}`)."""
    items = _unwrap_list(payload, "ohlcv", "ohlcv")
    candles = []
    for i, item in enumerate(items):
        try:
            p = _validate(CandlePayload, item, "candle")
        except ParseError as e:
            raise ParseError(f"{e} at index {i}") from e
        candles.append(
            Candle(
                time=p.time,
                open=p.open,
                high=p.high,
                low=p.low,
                close=p.close,
                volume=p.volume,
                pair=p.pair,
            )
        )
    return candles
