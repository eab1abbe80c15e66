"""Discord webhook delivery."""

import asyncio
import logging
import time
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class DiscordSender:
    """
    Discord webhook sender.

    Posts prebuilt payloads (embeds or plain content) to a webhook.
    Retries with backoff on network errors, 5xx responses and 429s.
    """

    def __init__(
        self,
        rate_limit_per_minute: int = 30,
        retry_delays: tuple = (1, 2, 4),
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rate_limit = rate_limit_per_minute
        self.retry_delays = retry_delays
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._semaphore = asyncio.Semaphore(5)
        self._sent_count = 0
        self._error_count = 0
        self._last_reset = 0
        self._minute_count = 0

    async def start(self):
        """Start the Discord sender."""
        self._http_client = httpx.AsyncClient(timeout=30.0, transport=self._transport)
        logger.info("Discord sender started")

    async def stop(self):
        """Stop the Discord sender."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.info("Discord sender stopped")

    async def send(self, webhook_url: str, payload: dict) -> bool:
        """
        Post a payload to a webhook.

        Returns True if successful.
        """
        if not webhook_url or not self._http_client:
            return False

        if not self._check_rate_limit():
            logger.warning("Discord rate limit reached, skipping message")
            self._error_count += 1
            return False

        max_retries = len(self.retry_delays)

        async with self._semaphore:
            for attempt in range(max_retries):
                last_attempt = attempt == max_retries - 1
                try:
                    response = await self._http_client.post(webhook_url, json=payload)

                    if response.status_code == 429:
                        retry_after = float(response.json().get("retry_after", 5))
                        if last_attempt:
                            break
                        logger.warning(f"Discord rate limited, retry after {retry_after}s")
                        await asyncio.sleep(retry_after)
                        continue

                    if response.status_code >= 500:
                        if last_attempt:
                            logger.error(f"Discord server error after {max_retries} attempts: {response.status_code}")
                            break
                        logger.warning(
                            f"Discord server error {response.status_code}, "
                            f"retrying in {self.retry_delays[attempt]}s"
                        )
                        await asyncio.sleep(self.retry_delays[attempt])
                        continue

                    response.raise_for_status()
                    self._sent_count += 1
                    logger.debug("Discord message delivered")
                    return True

                except (httpx.ConnectError, httpx.TimeoutException) as e:
                    if last_attempt:
                        logger.error(f"Discord send failed after {max_retries} attempts: {e}")
                        break
                    logger.warning(f"Discord network error, retrying in {self.retry_delays[attempt]}s: {e}")
                    await asyncio.sleep(self.retry_delays[attempt])
                except httpx.HTTPStatusError as e:
                    # 4xx other than 429: not retryable
                    logger.error(f"Discord webhook error: {e.response.status_code}")
                    break
                except (httpx.HTTPError, ValueError) as e:
                    logger.error(f"Discord send error: {e}")
                    break

        self._error_count += 1
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

    def get_stats(self) -> dict:
        """Get sender statistics."""
        return {
            "sent_count": self._sent_count,
            "error_count": self._error_count,
            "error_rate_pct": (
                self._error_count / (self._sent_count + self._error_count) * 100
                if (self._sent_count + self._error_count) > 0
                else 0
            ),
        }
