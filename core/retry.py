"""Retry with exponential backoff and full jitter."""

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from config.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transient HTTP statuses worth another attempt
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class HTTPError(Exception):
    """Non-2xx response from an external API."""

    def __init__(
        self,
        status_code: int,
        message: str = "",
        retry_after: Optional[float] = None,
        provider: str = "",
    ):
        self.status_code = status_code
        self.retry_after = retry_after
        self.provider = provider
        super().__init__(f"[{provider or 'http'}] HTTP {status_code}: {message[:200]}")

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUSES


@dataclass
class RetryOptions:
    """Backoff policy. Total attempts = 1 + max_retries."""
    max_retries: int = 3
    base_delay: float = 0.3
    max_delay: float = 5.0
    backoff: float = 2.0

    @classmethod
    def from_settings(cls) -> "RetryOptions":
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            backoff=settings.retry_backoff,
        )

    def delay_for(self, attempt: int) -> float:
        """Full-jitter delay before retry number `attempt` (0-based)."""
        ceiling = min(self.base_delay * (self.backoff ** attempt), self.max_delay)
        if ceiling <= 0:
            return 0.0
        return random.uniform(0, ceiling)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a Retry-After header.

    Accepts integer seconds or an HTTP date. Returns None when absent or
    unparsable, and never a negative value.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def is_retryable(exc: BaseException) -> bool:
    """Transient failures: retryable statuses and transport errors."""
    if isinstance(exc, HTTPError):
        return exc.retryable
    if isinstance(exc, httpx.TimeoutException):
        return False
    return isinstance(exc, httpx.TransportError)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    name: str = "request",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run `operation` until it succeeds or the retry budget is spent.

    Only transient failures are retried. A 429 carrying Retry-After waits
    that long instead of the jittered delay, capped at max_delay.
    Cancellation and timeouts propagate immediately.
    """
    opts = options or RetryOptions()
    attempts = 1 + max(0, opts.max_retries)
    last_error: Optional[BaseException] = None

    for attempt in range(attempts):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(f"{name} timed out on attempt {attempt + 1}, giving up")
            raise
        except Exception as e:
            last_error = e
            if not is_retryable(e) or attempt == attempts - 1:
                raise

            delay = opts.delay_for(attempt)
            if isinstance(e, HTTPError) and e.status_code == 429 and e.retry_after is not None:
                delay = min(e.retry_after, opts.max_delay)

            logger.warning(
                f"{name} failed (attempt {attempt + 1}/{attempts}): {e}; "
                f"retrying in {delay:.2f}s"
            )
            await sleep(delay)

    # Unreachable: the loop either returns or raises
    raise last_error  # type: ignore[misc]
