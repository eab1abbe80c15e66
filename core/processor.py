"""Swap ingestion cycle: poll, reconcile holders, dispatch notifications."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, List, Optional

from models.events import HolderTransition, SwapEvent
from models.swaps import SwapRecord
from .monitoring import MetricsCollector

if TYPE_CHECKING:
    from alerting.dispatcher import NotificationDispatcher
    from detection.holders import HolderReconciler
    from enrichment.luminex import LuminexClient
    from storage.token_lists import TickerRegistry
    from stream.poller import SwapPoller

logger = logging.getLogger(__name__)


class SwapProcessor:
    """
    Runs one ingestion cycle per call.

    New swaps are handled in feed order. Every swap on a tracked ticker is
    reconciled, whether or not any sink ends up delivering it. A failure on
    one swap is logged and does not stop the rest of the cycle.
    """

    def __init__(
        self,
        poller: SwapPoller,
        reconciler: HolderReconciler,
        dispatcher: NotificationDispatcher,
        luminex: LuminexClient,
        registry: TickerRegistry,
        metrics: MetricsCollector,
    ):
        self.poller = poller
        self.reconciler = reconciler
        self.dispatcher = dispatcher
        self.luminex = luminex
        self.registry = registry
        self.metrics = metrics

        self._processed = 0
        self._errors = 0

    async def resolve_ticker(self, swap: SwapRecord) -> Optional[str]:
        """Ticker of the swap's pool from enrichment, or None."""
        try:
            metadata = await self.luminex.get_pool_metadata(swap.pool_id)
        except Exception as e:
            logger.debug(f"Ticker lookup failed for pool {swap.pool_id[:12]}: {e}")
            return None
        if metadata is None or not metadata.ticker:
            return None
        await self.registry.remember(swap.pool_id, metadata.ticker, metadata.name)
        return metadata.ticker

    async def _reconcile(self, swap: SwapRecord, ticker: Optional[str]) -> Optional[HolderTransition]:
        if not self.reconciler.is_tracked(ticker):
            return None
        try:
            transition = await self.reconciler.reconcile_from_swap(swap, ticker)
        except Exception as e:
            logger.warning(f"Holder reconcile failed for {ticker} swap {swap.id}: {e}")
            return None
        if transition:
            self.metrics.record_transition(transition.ticker, transition.action.value)
        return transition

    async def process_swap(self, swap: SwapRecord) -> SwapEvent:
        ticker = await self.resolve_ticker(swap)
        transition = await self._reconcile(swap, ticker)

        event = SwapEvent(swap=swap, ticker=ticker, transition=transition)
        results = await self.dispatcher.dispatch(event)
        for sink, delivered in results.items():
            self.metrics.record_notification(sink, delivered)

        self._processed += 1
        return event

    async def run_cycle(self) -> List[SwapEvent]:
        """
        Poll once and process every new swap.

        A failed fetch ends the cycle with no effects.
        """
        started = time.monotonic()
        try:
            new_swaps = await self.poller.poll()
        except Exception as e:
            self.metrics.record_poll_error()
            logger.warning(f"Swap fetch failed, skipping cycle: {e}")
            return []

        self.metrics.record_poll(len(new_swaps), time.monotonic() - started)
        snapshot = self.poller.snapshot
        self.metrics.set_snapshot_size(len(snapshot.records) if snapshot else 0)

        events = []
        for swap in new_swaps:
            try:
                events.append(await self.process_swap(swap))
            except Exception as e:
                self._errors += 1
                logger.error(f"Error processing swap {swap.id}: {e}")

        return events

    def get_stats(self) -> dict:
        return {
            "processed": self._processed,
            "errors": self._errors,
            "poller": self.poller.get_stats(),
            "reconciler": self.reconciler.get_stats(),
        }
