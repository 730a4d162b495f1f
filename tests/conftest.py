"""
Shared fixtures for sync client tests.

Addresses are the EIP-55 reference vectors so checksum handling is
exercised with real mixed-case values.
"""

import asyncio
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from dexsync.sync.context import FaultKind, NotificationLog, SyncContext
from dexsync.sync.events import LifecycleEvent, LifecycleType
from dexsync.sync.exceptions import SigningError
from dexsync.sync.signer import BaseSigner
from dexsync.sync.state import SyncStateManager

LOCAL_ADDRESS = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
OTHER_ADDRESS = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
THIRD_ADDRESS = "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB"
BASE_TOKEN = "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb"
QUOTE_TOKEN = "0x52908400098527886E0F7030069857D2E4169EE7"

ORDER_HASH = "0x" + "ab" * 32


def order_payload(**overrides) -> dict:
    """Wire-format order as the exchange sends it."""
    payload = {
        "hash": ORDER_HASH,
        "side": "BUY",
        "pricepoint": "100",
        "amount": "10",
        "filledAmount": "0",
        "userAddress": LOCAL_ADDRESS.lower(),
        "pairName": "WETH/DAI",
        "status": "OPEN",
        "nonce": "1",
        "baseToken": BASE_TOKEN,
        "quoteToken": QUOTE_TOKEN,
        "createdAt": "2024-01-01T00:00:00Z",
    }
    payload.update(overrides)
    return payload


def trade_payload(**overrides) -> dict:
    """Wire-format trade as the exchange sends it."""
    payload = {
        "hash": "0x" + "cd" * 32,
        "orderHash": ORDER_HASH,
        "maker": OTHER_ADDRESS,
        "taker": LOCAL_ADDRESS,
        "pricepoint": "100",
        "amount": "5",
        "pairName": "WETH/DAI",
        "tradeNonce": "7",
        "status": "PENDING",
        "createdAt": "2024-01-01T00:00:01Z",
    }
    payload.update(overrides)
    return payload


def match_payload(order: Optional[dict] = None, trade: Optional[dict] = None) -> dict:
    return {"order": order or order_payload(), "trade": trade or trade_payload()}


class FakeSigner(BaseSigner):
    """Signer stand-in that tags payloads instead of signing them."""

    def __init__(self, address: str = LOCAL_ADDRESS, fail_trades=(), fail_orders: bool = False):
        self.address = address
        self.fail_trades = set(fail_trades)
        self.fail_orders = fail_orders
        self.signed_orders: list[dict] = []
        self.signed_trades: list[dict] = []

    async def get_address(self) -> str:
        return self.address

    async def sign_order(self, order: dict) -> dict:
        await asyncio.sleep(0)
        if self.fail_orders:
            raise SigningError("order signing rejected")
        self.signed_orders.append(order)
        return dict(order, signature="signed-order")

    async def sign_trade(self, trade: dict) -> dict:
        await asyncio.sleep(0)
        if trade.get("hash") in self.fail_trades:
            raise SigningError(f"trade signing rejected: {trade['hash']}")
        self.signed_trades.append(trade)
        return dict(trade, signature="signed-trade")


class FakeConnection:
    """ConnectionManager stand-in driven by the test."""

    def __init__(self):
        self.created = False
        self.closed = False
        self.message_handler = None
        self.lifecycle_handler = None
        self.subscribe = AsyncMock()
        self.send_submit_signature = AsyncMock()

    def create_connection(self):
        self.created = True

    def open_connection(self, on_lifecycle):
        self.lifecycle_handler = on_lifecycle
        return self.close

    def on_message(self, handler):
        self.message_handler = handler

    def close(self):
        self.closed = True

    def get_stats(self) -> dict:
        return {"state": "closed" if self.closed else "open"}

    # Test drivers

    def emit(self, event_type: LifecycleType, **kwargs):
        self.lifecycle_handler(LifecycleEvent(event_type, **kwargs))

    def deliver(self, data):
        self.message_handler(data)


class FakeConnectionFactory:
    """Records every connection the dispatcher builds."""

    def __init__(self):
        self.connections: list[FakeConnection] = []

    def __call__(self) -> FakeConnection:
        connection = FakeConnection()
        self.connections.append(connection)
        return connection

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]


def fault_kinds(faults) -> list[FaultKind]:
    return [f.kind for f in faults]


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def store():
    return SyncStateManager()


@pytest.fixture
def notices():
    return NotificationLog()


@pytest.fixture
def faults():
    return []


@pytest.fixture
def submit():
    return AsyncMock()


@pytest.fixture
def ctx(store, signer, notices, faults, submit):
    """Context wired to a real store and recording sinks."""
    return SyncContext(
        store=store,
        signer=signer,
        notify=notices,
        report=faults.append,
        submit_signatures=submit,
    )


@pytest.fixture
def spy_store():
    """Real store wrapped so batched calls can be counted."""
    return MagicMock(wraps=SyncStateManager())
