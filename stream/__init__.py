"""Stream module for the Flashnet swap feed."""

from .flashnet import FlashnetClient, SwapFilters
from .dedup import DedupFilter, diff
from .poller import SwapPoller

__all__ = [
    "FlashnetClient",
    "SwapFilters",
    "DedupFilter",
    "diff",
    "SwapPoller",
]
