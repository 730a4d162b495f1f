"""
dexsync - client-side synchronization for a signing DEX.

Keeps a local view of orders, trades, the order book and OHLCV candles
in step with the exchange over one websocket connection.
"""

__version__ = "0.1.0"
