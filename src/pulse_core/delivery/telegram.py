"""Telegram Bot API delivery channel."""
import logging
from typing import Optional

import aiohttp

from ..exceptions import NotificationDeliveryError


logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class TelegramNotifier:
    """Sends Markdown messages to one operator chat."""

    channel = "telegram"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        bot_token: Optional[str],
        chat_id: Optional[str],
    ) -> None:
        """Initialize notifier.

        Args:
            session: Shared aiohttp session
            bot_token: Bot API token (None disables delivery)
            chat_id: Target chat id
        """
        self.session = session
        self.bot_token = bot_token
        self.chat_id = chat_id

    def is_configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def _redact(self, text: str) -> str:
        if self.bot_token:
            return text.replace(self.bot_token, "[REDACTED]")
        return text

    async def _send_message(self, text: str) -> dict:
        url = f"{TELEGRAM_API}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }

        async with self.session.post(url, json=payload) as response:
            if response.status != 200:
                error_body = self._redact((await response.text())[:500])
                logger.error("Telegram API error (%s): %s", response.status, error_body)
                raise NotificationDeliveryError(response.status, error_body)
            return await response.json(content_type=None)

    async def send(self, text: str) -> bool:
        """Deliver a message.

        Returns:
            True only when the Bot API acknowledged the message (``ok: true``)
        """
        if not self.is_configured():
            logger.warning("Telegram not configured, skipping notification")
            return False

        try:
            data = await self._send_message(text)
        except (NotificationDeliveryError, aiohttp.ClientError) as exc:
            logger.error("Failed to send Telegram message: %s", self._redact(str(exc)))
            return False

        if data.get("ok") is not True:
            logger.error(
                "Telegram rejected message: %s", data.get("description", "unknown error")
            )
            return False
        return True
