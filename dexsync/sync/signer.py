"""
Order and trade signing.

The exchange asks the client to co-sign matches mid-flow. Signing is a
capability object injected into the dispatcher, never looked up from
module state.

Digest layout (keccak-256 over packed fields):
- order: [exchangeAddress], userAddress, baseToken, quoteToken,
  amount, pricepoint, side, nonce
- trade: orderHash, taker, amount, tradeNonce

Addresses pack as 20 bytes, integers as 32-byte big-endian words, side
as UTF-8. The digest is signed as an EIP-191 personal message.
"""

import asyncio
import logging
import secrets
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_bytes, to_canonical_address, to_checksum_address

from .exceptions import SigningError

logger = logging.getLogger(__name__)

NONCE_BITS = 256


def get_random_nonce() -> str:
    """
    Generate a fresh order/trade nonce.

    Returns:
        256-bit value from the OS CSPRNG as a decimal string
    """
    return str(secrets.randbits(NONCE_BITS))


class BaseSigner(ABC):
    """Signs orders and trades on behalf of the local user."""

    @abstractmethod
    async def get_address(self) -> str:
        """Checksummed address bound to the signing credential."""
        pass

    @abstractmethod
    async def sign_order(self, order: dict) -> dict:
        """Return a signed copy of the order. Raises SigningError."""
        pass

    @abstractmethod
    async def sign_trade(self, trade: dict) -> dict:
        """Return a signed copy of the trade. Raises SigningError."""
        pass


def _require(data: dict, *names: str) -> Any:
    for name in names:
        if data.get(name) is not None:
            return data[name]
    raise SigningError(f"missing '{names[0]}'")


def _address(value: Any) -> bytes:
    try:
        return to_canonical_address(value)
    except (TypeError, ValueError) as e:
        raise SigningError(f"invalid address {value!r}") from e


def _uint(value: Any, decimals: int = 0) -> bytes:
    try:
        scaled = Decimal(str(value)) * (Decimal(10) ** decimals)
    except InvalidOperation as e:
        raise SigningError(f"invalid number {value!r}") from e

    if scaled < 0 or scaled != scaled.to_integral_value():
        raise SigningError(f"{value!r} is not a non-negative integer in base units")
    return int(scaled).to_bytes(32, "big")


def _bytes32(value: Any) -> bytes:
    try:
        raw = to_bytes(hexstr=value)
    except (TypeError, ValueError) as e:
        raise SigningError(f"invalid hash {value!r}") from e
    if len(raw) != 32:
        raise SigningError(f"hash must be 32 bytes, got {len(raw)}")
    return raw


def order_digest(order: dict, decimals: int = 0) -> bytes:
    """Compute the keccak digest an order signature commits to."""
    parts = []
    if order.get("exchangeAddress"):
        parts.append(_address(order["exchangeAddress"]))
    parts += [
        _address(_require(order, "userAddress", "user_address")),
        _address(_require(order, "baseToken", "base_token")),
        _address(_require(order, "quoteToken", "quote_token")),
        _uint(_require(order, "amount"), decimals),
        _uint(_require(order, "pricepoint", "price"), decimals),
        str(_require(order, "side")).upper().encode("utf-8"),
        _uint(_require(order, "nonce")),
    ]
    return keccak(b"".join(parts))


def trade_digest(trade: dict, decimals: int = 0) -> bytes:
    """Compute the keccak digest a trade signature commits to."""
    return keccak(
        b"".join(
            [
                _bytes32(_require(trade, "orderHash", "order_hash")),
                _address(_require(trade, "taker")),
                _uint(_require(trade, "amount"), decimals),
                _uint(_require(trade, "tradeNonce", "trade_nonce")),
            ]
        )
    )


class EthSigner(BaseSigner):
    """
    Signer backed by a locally held Ethereum private key.

    Signing runs in a worker thread so the event loop keeps reading
    frames while a batch of trades is being signed.
    """

    def __init__(self, private_key: str, decimals: int = 0):
        """
        Initialize signer.

        Args:
            private_key: Hex private key (with or without 0x prefix)
            decimals: Scale applied to amount/price before packing
                      (0 means values are already in base units)
        """
        if not private_key:
            raise SigningError("No private key provided. Set PRIVATE_KEY in .env or pass to constructor.")

        try:
            self._account = Account.from_key(private_key)
        except Exception as e:
            raise SigningError(f"Invalid private key: {e}") from e

        self.decimals = decimals
        self.address = to_checksum_address(self._account.address)
        logger.info(f"EthSigner initialized for wallet: {self.address}")

    async def get_address(self) -> str:
        return self.address

    def _sign_digest(self, digest: bytes) -> dict:
        signed = self._account.sign_message(encode_defunct(primitive=digest))
        return {
            "v": signed.v,
            "r": "0x" + signed.r.to_bytes(32, "big").hex(),
            "s": "0x" + signed.s.to_bytes(32, "big").hex(),
        }

    def _sign(self, data: dict, digest: bytes) -> dict:
        signed = dict(data)
        signed["hash"] = "0x" + digest.hex()
        signed["signature"] = self._sign_digest(digest)
        return signed

    async def sign_order(self, order: dict) -> dict:
        digest = order_digest(order, self.decimals)
        return await asyncio.to_thread(self._sign, order, digest)

    async def sign_trade(self, trade: dict) -> dict:
        digest = trade_digest(trade, self.decimals)
        return await asyncio.to_thread(self._sign, trade, digest)


def recover_signer(data: dict) -> str:
    """
    Recover the address that produced `data["signature"]`.

    Lets callers check a signed order or trade against the expected wallet.
    """
    sig = data.get("signature") or {}
    try:
        digest = to_bytes(hexstr=data["hash"])
        return Account.recover_message(
            encode_defunct(primitive=digest),
            vrs=(sig["v"], int(sig["r"], 16), int(sig["s"], 16)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SigningError(f"Cannot recover signer: {e}") from e
