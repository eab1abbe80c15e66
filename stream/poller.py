"""Swap feed poller: fetch the recent window and yield unseen swaps."""

import logging
from typing import List, Optional

from config.settings import settings
from models.swaps import SwapRecord, SwapSnapshot
from storage.state_store import StateStore, StateStoreError
from .dedup import DedupFilter
from .flashnet import FlashnetClient

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "swaps:snapshot"


class SwapPoller:
    """
    Owns the swap snapshot.

    Each `poll()` fetches one window, diffs it against the retained snapshot,
    replaces the snapshot and persists it. A failed fetch changes nothing.
    """

    def __init__(
        self,
        feed: FlashnetClient,
        store: StateStore,
        limit: Optional[int] = None,
        dedup: Optional[DedupFilter] = None,
    ):
        self.feed = feed
        self.store = store
        self.limit = limit or settings.swap_poll_limit
        self.dedup = dedup or DedupFilter()
        self._snapshot: Optional[SwapSnapshot] = None
        self._loaded = False

        # Stats
        self._polls = 0
        self._fetch_errors = 0
        self._new_swaps = 0

    @property
    def snapshot(self) -> Optional[SwapSnapshot]:
        return self._snapshot

    async def load(self):
        """Restore the persisted snapshot so restarts do not re-announce."""
        if self._loaded:
            return
        try:
            self._snapshot = SwapSnapshot.from_dict(await self.store.load(SNAPSHOT_KEY))
        except StateStoreError as e:
            logger.error(f"Ignoring unreadable swap snapshot: {e}")
            self._snapshot = None
        self._loaded = True
        if self._snapshot:
            logger.info(f"Restored swap snapshot with {len(self._snapshot.records)} records")

    async def fetch_recent(self, limit: Optional[int] = None) -> SwapSnapshot:
        """Fetch the most recent window. Raises on failure."""
        return await self.feed.list_recent_swaps(limit or self.limit)

    async def poll(self) -> List[SwapRecord]:
        """
        Run one cycle and return new swaps in feed order.

        Fetch errors propagate and leave the snapshot untouched.
        """
        await self.load()
        self._polls += 1
        try:
            current = await self.fetch_recent()
        except Exception:
            self._fetch_errors += 1
            raise

        new_records = self.dedup.filter_new(self._snapshot, current)
        self._snapshot = current

        async with self.store.lock(SNAPSHOT_KEY):
            await self.store.save(SNAPSHOT_KEY, current.to_dict())

        self._new_swaps += len(new_records)
        if new_records:
            logger.info(f"Found {len(new_records)} new swaps (window {len(current.records)})")
        return new_records

    def get_stats(self) -> dict:
        return {
            "polls": self._polls,
            "fetch_errors": self._fetch_errors,
            "new_swaps": self._new_swaps,
            "snapshot_size": len(self._snapshot.records) if self._snapshot else 0,
            "dedup": self.dedup.get_stats(),
        }
