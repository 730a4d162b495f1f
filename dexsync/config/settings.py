"""
Application configuration using Pydantic Settings.

All settings loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ===========================================
    # Exchange
    # ===========================================
    websocket_url: str = "ws://localhost:8081/socket"

    # Path to sync.yaml (pairs, history caps, reconnect policy)
    sync_config_path: str = "sync.yaml"

    # ===========================================
    # Wallet
    # ===========================================
    # Hex private key used to co-sign orders and trades
    private_key: str = ""

    # ===========================================
    # Application
    # ===========================================
    log_level: str = "INFO"

    # ===========================================
    # Telegram Alerts
    # ===========================================
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience access
settings = get_settings()
