"""HOT token detection over the recent swap window."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from config.settings import settings
from models.events import HotTokenEvent
from models.swaps import SwapRecord
from storage.token_lists import TokenListStore
from stream.flashnet import FlashnetClient

logger = logging.getLogger(__name__)

MAX_WINDOW = 1000


def scan_pool(window: Sequence[SwapRecord], pool_id: str, min_swaps: int) -> Tuple[int, List[str]]:
    """
    Walk the window in feed order and stop at `min_swaps` swaps for the pool.

    Returns the matched swap count and the distinct swappers among them.
    """
    count = 0
    swappers: List[str] = []
    if not pool_id:
        return 0, swappers

    for swap in window:
        if swap.pool_id != pool_id:
            continue
        count += 1
        if swap.swapper and swap.swapper not in swappers:
            swappers.append(swap.swapper)
        if count >= min_swaps:
            break
    return count, swappers


@dataclass
class HotTokenResult:
    """Scan result for one pool."""
    pool_id: str
    swap_count: int
    swappers: List[str] = field(default_factory=list)
    hot: bool = False

    @property
    def unique_swappers(self) -> int:
        return len(self.swappers)

    def to_event(self) -> HotTokenEvent:
        return HotTokenEvent(
            pool_id=self.pool_id,
            swap_count=self.swap_count,
            unique_swappers=self.unique_swappers,
            swappers=list(self.swappers),
        )


class HotTokenDetector:
    """
    Flags pools with at least K swaps from at least A distinct swappers
    among the most recent swaps.

    One window is fetched per cycle and shared by every pool in it.
    Pools marked as reported go into a per-pool cooldown held in memory.
    """

    def __init__(
        self,
        feed: FlashnetClient,
        token_lists: TokenListStore,
        min_swaps: Optional[int] = None,
        min_unique: Optional[int] = None,
        cooldown_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.feed = feed
        self.token_lists = token_lists
        self.min_swaps = min_swaps or settings.hot_min_swaps
        self.min_unique = min_unique or settings.hot_min_unique
        self.cooldown_seconds = (
            settings.hot_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        )
        self._clock = clock
        self._last_reported: Dict[str, float] = {}

        # Stats
        self._cycles = 0
        self._hot_found = 0
        self._suppressed = 0

    @property
    def window_size(self) -> int:
        return min(self.min_swaps * 100, MAX_WINDOW)

    def evaluate(self, window: Sequence[SwapRecord]) -> List[HotTokenResult]:
        """Scan every distinct pool in the window, in first-seen order."""
        pools: List[str] = []
        seen = set()
        for swap in window:
            if swap.pool_id and swap.pool_id not in seen:
                seen.add(swap.pool_id)
                pools.append(swap.pool_id)

        results = []
        for pool_id in pools:
            count, swappers = scan_pool(window, pool_id, self.min_swaps)
            results.append(HotTokenResult(
                pool_id=pool_id,
                swap_count=count,
                swappers=swappers,
                hot=count >= self.min_swaps and len(swappers) >= self.min_unique,
            ))
        return results

    def in_cooldown(self, pool_id: str) -> bool:
        last = self._last_reported.get(pool_id)
        if last is None:
            return False
        return self._clock() - last < self.cooldown_seconds

    def mark_reported(self, pool_id: str):
        self._last_reported[pool_id] = self._clock()

    def _prune_cooldowns(self):
        now = self._clock()
        expired = [
            pool for pool, last in self._last_reported.items()
            if now - last >= self.cooldown_seconds
        ]
        for pool in expired:
            del self._last_reported[pool]

    async def detect(self, window: Optional[Sequence[SwapRecord]] = None) -> List[HotTokenResult]:
        """
        Run one detection cycle.

        Returns hot pools that are neither blocked nor cooling down. The
        caller arms a pool's cooldown with `mark_reported` once a
        notification for it was delivered. Fetch errors propagate.
        """
        self._cycles += 1
        if window is None:
            snapshot = await self.feed.list_recent_swaps(self.window_size)
            window = snapshot.records

        self._prune_cooldowns()
        reported = []
        for result in self.evaluate(window):
            if not result.hot:
                continue
            if await self.token_lists.is_blocked(result.pool_id):
                logger.debug(f"Hot pool {result.pool_id[:12]} is blocked")
                continue
            if self.in_cooldown(result.pool_id):
                self._suppressed += 1
                continue
            reported.append(result)

        self._hot_found += len(reported)
        for result in reported:
            logger.info(
                f"HOT token {result.pool_id[:12]}: {result.swap_count} swaps, "
                f"{result.unique_swappers} unique swappers"
            )
        return reported

    def get_stats(self) -> dict:
        return {
            "cycles": self._cycles,
            "hot_found": self._hot_found,
            "suppressed_by_cooldown": self._suppressed,
            "cooldowns_active": len(self._last_reported),
        }
