"""Token-bucket rate limiter."""

import asyncio
import time
from typing import Callable, Optional


class TokenBucket:
    """
    Async token bucket.

    Refills at `rate` tokens per second up to `burst`. `acquire()` waits until
    a token is available; the wait is a plain sleep and can be cancelled.
    """

    def __init__(
        self,
        rate: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.burst = max(1, burst)
        self._clock = clock
        self._tokens = float(self.burst)
        self._last_refill = clock()
        self._lock = asyncio.Lock()
        self._waits = 0

    def _refill(self):
        now = self._clock()
        elapsed = now - self._last_refill
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._last_refill = now

    def try_acquire(self) -> float:
        """Take a token if one is available. Returns seconds to wait otherwise."""
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return 0.0
        return (1.0 - self._tokens) / self.rate

    async def acquire(self):
        """Wait for and take one token."""
        async with self._lock:
            while True:
                wait = self.try_acquire()
                if wait <= 0:
                    return
                self._waits += 1
                await asyncio.sleep(wait)

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def get_stats(self) -> dict:
        return {
            "rate": self.rate,
            "burst": self.burst,
            "available": round(self.available, 2),
            "waits": self._waits,
        }
