"""Telegram sender - delivers alert text through the Bot API."""
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramSender:
    """Notification sink posting HTML messages to a Telegram chat."""

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        timeout: float = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def send(self, text: str) -> bool:
        """Send a message. Returns True on success, False on failure."""
        if not self.configured:
            logger.warning("Telegram not configured - missing bot token or chat id")
            return False

        url = f"{TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload)
            if response.is_success:
                return True
            logger.warning(f"Telegram returned {response.status_code}")
            return False
        except Exception as e:
            logger.error(f"Failed to send Telegram message: {type(e).__name__}: {e}")
            return False
