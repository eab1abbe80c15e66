"""Telegram Bot API delivery."""

import asyncio
import logging
import time
from typing import Optional

import httpx

from config.settings import settings
from .formatter import TelegramMessage

logger = logging.getLogger(__name__)


class TelegramSender:
    """
    Telegram bot sender.

    One sender serves every Telegram sink; the chat id is passed per call.
    Messages go out with HTML parse mode and an optional inline button.
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        rate_limit_per_minute: int = 20,
        max_flood_retries: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.bot_token = bot_token or settings.telegram_bot_token
        self.rate_limit = rate_limit_per_minute
        self.max_flood_retries = max_flood_retries
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._semaphore = asyncio.Semaphore(3)
        self._sent_count = 0
        self._error_count = 0
        self._last_reset = 0
        self._minute_count = 0

    @property
    def api_url(self) -> str:
        """Get Telegram Bot API URL."""
        return f"https://api.telegram.org/bot{self.bot_token}"

    async def start(self):
        """Start the Telegram sender."""
        if not self.bot_token:
            logger.warning("Telegram bot not configured")
            return

        self._http_client = httpx.AsyncClient(timeout=30.0, transport=self._transport)
        logger.info("Telegram sender started")

    async def stop(self):
        """Stop the Telegram sender."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.info("Telegram sender stopped")

    @staticmethod
    def build_payload(chat_id: str, message: TelegramMessage) -> tuple:
        """Return the API method and JSON body for a message."""
        payload = {"chat_id": chat_id, "parse_mode": "HTML"}
        if message.button_url:
            payload["reply_markup"] = {
                "inline_keyboard": [[{
                    "text": message.button_text or "Open",
                    "url": message.button_url,
                }]]
            }

        if message.photo_url:
            payload["photo"] = message.photo_url
            payload["caption"] = message.text
            return "sendPhoto", payload

        payload["text"] = message.text
        payload["disable_web_page_preview"] = True
        return "sendMessage", payload

    async def send(self, chat_id: str, message: TelegramMessage) -> bool:
        """
        Send a message to a chat.

        Returns True if successful. Raises nothing; failures are logged
        and counted.
        """
        if not self.bot_token or not chat_id or not self._http_client:
            return False

        if not self._check_rate_limit():
            logger.warning("Telegram rate limit reached, skipping message")
            self._error_count += 1
            return False

        method, payload = self.build_payload(chat_id, message)

        async with self._semaphore:
            for attempt in range(self.max_flood_retries + 1):
                try:
                    response = await self._http_client.post(f"{self.api_url}/{method}", json=payload)
                    data = response.json()
                except (httpx.HTTPError, ValueError) as e:
                    self._error_count += 1
                    logger.error(f"Telegram send error: {e}")
                    return False

                if data.get("ok"):
                    self._sent_count += 1
                    logger.debug(f"Telegram {method} delivered to {chat_id}")
                    return True

                error_desc = data.get("description", "Unknown error")
                retry_after = (data.get("parameters") or {}).get("retry_after")
                if retry_after and attempt < self.max_flood_retries:
                    logger.warning(f"Telegram flood control, retry after {retry_after}s")
                    await asyncio.sleep(float(retry_after))
                    continue

                self._error_count += 1
                logger.error(f"Telegram API error: {error_desc}")
                return False

        return False

    def _check_rate_limit(self) -> bool:
        """Check if we're within rate limit."""
        minute = int(time.time()) // 60

        if minute != self._last_reset:
            self._last_reset = minute
            self._minute_count = 0

        if self._minute_count >= self.rate_limit:
            return False

        self._minute_count += 1
        return True

    async def get_bot_info(self) -> Optional[dict]:
        """Get bot information to verify token."""
        if not self.bot_token or not self._http_client:
            return None

        try:
            response = await self._http_client.get(f"{self.api_url}/getMe")
            data = response.json()
            if data.get("ok"):
                return data.get("result")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to get bot info: {e}")

        return None

    def is_configured(self) -> bool:
        """Check if Telegram delivery is configured."""
        return bool(self.bot_token)

    def get_stats(self) -> dict:
        """Get sender statistics."""
        return {
            "configured": self.is_configured(),
            "sent_count": self._sent_count,
            "error_count": self._error_count,
            "error_rate_pct": (
                self._error_count / (self._sent_count + self._error_count) * 100
                if (self._sent_count + self._error_count) > 0
                else 0
            ),
        }
