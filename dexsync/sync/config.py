"""
Sync client configuration.

Loads configuration from sync.yaml under the `sync` section.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

# Default config path
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "sync.yaml"


@dataclass
class SyncConfig:
    """Configuration for the exchange sync client."""

    # Pairs to subscribe to after every (re)connect
    pairs: list = field(default_factory=list)

    # Reconnect policy
    reconnect_delay: float = 5.0  # Delay after a close before reconnecting
    reconnect_backoff: float = 1.0  # 1.0 = fixed delay
    max_reconnect_delay: float = 60.0  # Cap when backoff > 1

    # WebSocket keepalive
    ping_interval: float = 30.0
    ping_timeout: float = 10.0

    # History caps (oldest entries dropped beyond these)
    max_trades: int = 500
    max_candles: int = 1000

    # Bounded in-memory logs
    notice_history: int = 100
    fault_history: int = 200

    # OHLCV subscription parameters
    ohlcv_units: str = "hour"
    ohlcv_duration: int = 1

    # Forward danger notices to Telegram (if credentials are set)
    forward_danger_notices: bool = False


def load_sync_config(config_path: Optional[Path] = None) -> SyncConfig:
    """
    Load sync configuration from sync.yaml.

    Args:
        config_path: Path to sync.yaml (uses default if None)

    Returns:
        SyncConfig with loaded settings
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.warning(f"Config file not found: {path}, using defaults")
        return SyncConfig()

    try:
        with open(path) as f:
            config_data = yaml.safe_load(f) or {}

        sync_config = config_data.get("sync")

        if not sync_config:
            logger.warning("No sync config found, using defaults")
            return SyncConfig()

        return _parse_config(sync_config)

    except Exception as e:
        logger.error(f"Failed to load sync config: {e}")
        return SyncConfig()


def _parse_config(cfg: dict) -> SyncConfig:
    """Parse config dict into SyncConfig."""
    return SyncConfig(
        pairs=list(cfg.get("pairs", [])),
        reconnect_delay=float(cfg.get("reconnect_delay", 5.0)),
        reconnect_backoff=float(cfg.get("reconnect_backoff", 1.0)),
        max_reconnect_delay=float(cfg.get("max_reconnect_delay", 60.0)),
        ping_interval=float(cfg.get("ping_interval", 30.0)),
        ping_timeout=float(cfg.get("ping_timeout", 10.0)),
        max_trades=int(cfg.get("max_trades", 500)),
        max_candles=int(cfg.get("max_candles", 1000)),
        notice_history=int(cfg.get("notice_history", 100)),
        fault_history=int(cfg.get("fault_history", 200)),
        ohlcv_units=cfg.get("ohlcv_units", "hour"),
        ohlcv_duration=int(cfg.get("ohlcv_duration", 1)),
        forward_danger_notices=bool(cfg.get("forward_danger_notices", False)),
    )
