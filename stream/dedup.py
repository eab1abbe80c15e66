"""Swap deduplication against the previous snapshot."""

import logging
from typing import List, Optional

from models.swaps import SwapRecord, SwapSnapshot

logger = logging.getLogger(__name__)


def diff(previous: Optional[SwapSnapshot], current: SwapSnapshot) -> List[SwapRecord]:
    """
    Records in `current` whose id is not in `previous`.

    Novelty is id membership only; order and counts do not matter. With no
    previous snapshot everything is new. Feed order is preserved.
    """
    if previous is None:
        return list(current.records)
    seen = previous.ids
    return [r for r in current.records if r.id not in seen]


class DedupFilter:
    """
    Snapshot-based dedup with stats.

    The baseline is only the last window, so a swap that ages out of two
    consecutive windows without being fetched is never seen.
    """

    def __init__(self):
        self._checked = 0
        self._duplicates = 0
        self._window_gaps = 0

    def filter_new(
        self,
        previous: Optional[SwapSnapshot],
        current: SwapSnapshot,
    ) -> List[SwapRecord]:
        """Return unseen records and track the possible window gap."""
        new_records = diff(previous, current)
        self._checked += len(current.records)
        self._duplicates += len(current.records) - len(new_records)

        if (
            previous is not None
            and previous.records
            and current.records
            and not (previous.ids & current.ids)
        ):
            # No overlap at all: swaps may have scrolled past between polls
            self._window_gaps += 1
            logger.warning(
                f"No overlap with previous swap window ({len(current.records)} fetched); "
                f"swaps between polls may have been missed"
            )

        return new_records

    def get_stats(self) -> dict:
        """Get dedup statistics."""
        dup_rate = (self._duplicates / self._checked * 100) if self._checked > 0 else 0

        return {
            "checked": self._checked,
            "duplicates": self._duplicates,
            "duplicate_rate_pct": dup_rate,
            "window_gaps": self._window_gaps,
        }

    def reset_stats(self):
        """Reset statistics counters."""
        self._checked = 0
        self._duplicates = 0
        self._window_gaps = 0
