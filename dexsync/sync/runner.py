"""
Sync client runner.

Main entry point that orchestrates:
1. Settings and sync.yaml loading
2. Signer construction from the configured private key
3. Dispatcher + websocket connection (with reconnect policy)
4. Periodic stats logging
5. Graceful shutdown on SIGINT/SIGTERM

Usage:
    python -m dexsync.sync.runner [--config sync.yaml] [--url ws://...]
"""

import argparse
import asyncio
import logging
import signal as sig
import sys
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Callable, Optional

import structlog

from dexsync.alerts import TelegramNotifier
from dexsync.config.settings import settings

from .config import SyncConfig, load_sync_config
from .connection import ConnectionManager
from .context import NotificationLog, fan_out
from .dispatcher import SyncDispatcher
from .signer import BaseSigner, EthSigner

logger = logging.getLogger(__name__)

STATS_INTERVAL_SECONDS = 30


class SyncRunner:
    """
    Main runner for the sync client.

    Owns the dispatcher and keeps the process alive until stopped.
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        url: Optional[str] = None,
        signer: Optional[BaseSigner] = None,
    ):
        """
        Initialize runner.

        Args:
            config: Optional config override (loads from YAML if None)
            url: Websocket endpoint override
            signer: Signer override (EthSigner from PRIVATE_KEY if None)
        """
        self.config = config or load_sync_config(Path(settings.sync_config_path))
        self.url = url or settings.websocket_url
        self.signer = signer or EthSigner(settings.private_key)

        self.notifications = NotificationLog(maxlen=self.config.notice_history)
        sinks = [self.notifications, self._log_notice]
        if self.config.forward_danger_notices:
            sinks.append(TelegramNotifier())

        self.dispatcher = SyncDispatcher(
            connection_factory=partial(
                ConnectionManager,
                self.url,
                ping_interval=self.config.ping_interval,
                ping_timeout=self.config.ping_timeout,
            ),
            signer=self.signer,
            notify=fan_out(*sinks),
            config=self.config,
        )

        self.running = False
        self.start_time: Optional[datetime] = None
        self._teardown: Optional[Callable[[], None]] = None
        self._stop_event: Optional[asyncio.Event] = None

    @staticmethod
    def _log_notice(notice):
        logger.info(f"[{notice.level.value}] {notice.message}")

    async def run(self):
        """
        Main run loop.

        Opens the connection and runs until stop() is called.
        """
        self.running = True
        self.start_time = datetime.now(timezone.utc)
        self._stop_event = asyncio.Event()

        address = await self.signer.get_address()
        logger.info(f"Starting sync client for wallet {address}")
        logger.info(f"Endpoint: {self.url}, pairs: {self.config.pairs or 'none'}")

        self._teardown = self.dispatcher.open_connection()
        stats_task = asyncio.create_task(self._stats_loop(), name="stats")

        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            logger.info("Runner cancelled")
        finally:
            stats_task.cancel()
            await asyncio.gather(stats_task, return_exceptions=True)

            if self._teardown is not None:
                self._teardown()
            logger.info("Sync client stopped")

    async def _stats_loop(self):
        """Periodically log stats for monitoring."""
        while self.running:
            await asyncio.sleep(STATS_INTERVAL_SECONDS)
            if self.running:
                stats = self.dispatcher.get_stats()
                store = stats["store"]
                logger.info(
                    f"Stats: active={stats['active']}, reconnects={stats['reconnects']}, "
                    f"messages={stats['messages_routed']}, faults={stats['faults']}, "
                    f"orders={store['orders']}, trades={store['trades']}, "
                    f"books={store['orderbooks']}, candles={store['candles']}"
                )

    def stop(self):
        """Stop the runner."""
        logger.info("Stopping sync client")
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Exchange sync client")
    parser.add_argument("--config", type=Path, default=None, help="Path to sync.yaml")
    parser.add_argument("--url", default=None, help="Websocket endpoint override")
    return parser.parse_args(argv)


async def main(argv: Optional[list[str]] = None):
    """Entry point for the sync client."""
    args = parse_args(argv)
    config = load_sync_config(args.config) if args.config else None
    runner = SyncRunner(config=config, url=args.url)

    loop = asyncio.get_running_loop()
    for signum in (sig.SIGTERM, sig.SIGINT):
        loop.add_signal_handler(signum, runner.stop)

    await runner.run()


def setup_logging():
    """Configure logging for the sync client."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    # Basic logging
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )

    # Structlog
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Reduce noise from websockets library
    logging.getLogger("websockets").setLevel(logging.WARNING)


def cli():
    """Console script entry point."""
    setup_logging()
    logger.info("Starting dexsync client...")
    asyncio.run(main())


if __name__ == "__main__":
    cli()
