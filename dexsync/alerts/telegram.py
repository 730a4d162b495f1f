"""
Telegram forwarding for sync notices.

Setup:
1. Create bot via @BotFather -> get token
2. Message bot, GET https://api.telegram.org/bot<TOKEN>/getUpdates -> find chat_id
3. Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID in .env
"""

import asyncio
import logging
from typing import Optional

import httpx

from dexsync.config.settings import settings
from dexsync.sync.context import Notice, NoticeLevel

logger = logging.getLogger(__name__)

LEVEL_EMOJI = {
    NoticeLevel.SUCCESS: "🟢",
    NoticeLevel.WARNING: "🟡",
    NoticeLevel.DANGER: "🚨",
}


class TelegramNotifier:
    """
    Notice sink that forwards selected notices to a Telegram chat.

    Delivery is fire-and-forget: the HTTP call runs in a worker thread
    and failures are only logged.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        chat_id: Optional[str] = None,
        levels: tuple[NoticeLevel, ...] = (NoticeLevel.DANGER,),
    ):
        self.token = token if token is not None else settings.telegram_bot_token
        self.chat_id = chat_id if chat_id is not None else settings.telegram_chat_id
        self.levels = levels
        self.enabled = bool(self.token and self.chat_id)
        self.base_url = f"https://api.telegram.org/bot{self.token}"

    def send(self, message: str, parse_mode: str = "HTML") -> bool:
        """
        Send a message to Telegram.

        Args:
            message: Message text (supports HTML formatting)
            parse_mode: Parse mode (HTML or Markdown)

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.enabled:
            logger.debug("Telegram alerts disabled (no token/chat_id configured)")
            return False

        try:
            response = httpx.post(
                f"{self.base_url}/sendMessage",
                json={
                    "chat_id": self.chat_id,
                    "text": message,
                    "parse_mode": parse_mode,
                },
                timeout=10,
            )
            response.raise_for_status()
            return True
        except httpx.HTTPStatusError as e:
            logger.error(f"Telegram API error: {e.response.status_code} - {e.response.text}")
            return False
        except Exception as e:
            logger.error(f"Failed to send Telegram message: {e}")
            return False

    @staticmethod
    def format(notice: Notice) -> str:
        emoji = LEVEL_EMOJI.get(notice.level, "")
        return f"{emoji} <b>dexsync</b>\n<code>{notice.message[:500]}</code>"

    def __call__(self, notice: Notice) -> None:
        if not self.enabled or notice.level not in self.levels:
            return

        text = self.format(notice)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.send(text)
            return
        loop.run_in_executor(None, self.send, text)
