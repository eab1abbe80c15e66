"""API dependencies and shared state."""

import logging
from typing import Callable, Optional

from core.monitoring import HealthChecker, MetricsCollector, metrics as global_metrics
from detection.flow import FlowAggregator
from detection.holders import HolderReconciler
from detection.holders_report import HoldersReporter
from enrichment.luminex import LuminexClient
from storage.state_store import StateStore, create_state_store
from storage.token_lists import TickerRegistry, TokenListStore
from stream.flashnet import FlashnetClient

logger = logging.getLogger(__name__)

# Shared components (bound by the running application or built on startup)
_store: Optional[StateStore] = None
_token_lists: Optional[TokenListStore] = None
_registry: Optional[TickerRegistry] = None
_flow: Optional[FlowAggregator] = None
_reconciler: Optional[HolderReconciler] = None
_flashnet: Optional[FlashnetClient] = None
_health: Optional[HealthChecker] = None
_metrics: Optional[MetricsCollector] = None
_stats_provider: Optional[Callable[[], dict]] = None

# Components created by init_clients() and closed by close_clients()
_owned_store: Optional[StateStore] = None
_owned_luminex: Optional[LuminexClient] = None


def bind(
    store: StateStore,
    token_lists: TokenListStore,
    registry: TickerRegistry,
    flow: FlowAggregator,
    reconciler: HolderReconciler,
    metrics: Optional[MetricsCollector] = None,
    health: Optional[HealthChecker] = None,
    stats_provider: Optional[Callable[[], dict]] = None,
    flashnet: Optional[FlashnetClient] = None,
):
    """Share components of a running application with the API."""
    global _store, _token_lists, _registry, _flow, _reconciler, _health, _metrics, _stats_provider, _flashnet
    _store = store
    _token_lists = token_lists
    _registry = registry
    _flow = flow
    _reconciler = reconciler
    _metrics = metrics or global_metrics
    _health = health
    _stats_provider = stats_provider
    _flashnet = flashnet


def unbind():
    global _store, _token_lists, _registry, _flow, _reconciler, _health, _metrics, _stats_provider, _flashnet
    _store = _token_lists = _registry = _flow = _reconciler = _flashnet = None
    _health = _metrics = _stats_provider = None


async def init_clients():
    """Build standalone components unless an application already bound them."""
    global _owned_store, _owned_luminex

    if _store is not None:
        return

    logger.info("Initializing API clients...")

    _owned_store = create_state_store()
    await _owned_store.start()

    _owned_luminex = LuminexClient()
    await _owned_luminex.start()

    flow = FlowAggregator(_owned_store)
    bind(
        store=_owned_store,
        token_lists=TokenListStore(_owned_store),
        registry=TickerRegistry(_owned_store),
        flow=flow,
        reconciler=HolderReconciler(_owned_store, _owned_luminex, flow),
    )

    logger.info("API clients initialized")


async def close_clients():
    """Close components created by init_clients()."""
    global _owned_store, _owned_luminex

    if _owned_store is None:
        return

    if _owned_luminex:
        await _owned_luminex.stop()
        _owned_luminex = None

    await _owned_store.stop()
    _owned_store = None
    unbind()

    logger.info("API clients closed")


def get_token_lists() -> TokenListStore:
    if _token_lists is None:
        raise RuntimeError("Token lists not initialized")
    return _token_lists


def get_registry() -> TickerRegistry:
    if _registry is None:
        raise RuntimeError("Ticker registry not initialized")
    return _registry


def get_flow() -> FlowAggregator:
    if _flow is None:
        raise RuntimeError("Flow aggregator not initialized")
    return _flow


def get_reconciler() -> HolderReconciler:
    if _reconciler is None:
        raise RuntimeError("Holder reconciler not initialized")
    return _reconciler


def get_holders_reporter() -> HoldersReporter:
    return HoldersReporter(get_reconciler(), get_registry(), flashnet=_flashnet)


def get_metrics() -> MetricsCollector:
    return _metrics or global_metrics


def get_health() -> Optional[HealthChecker]:
    return _health


def get_stats_provider() -> Optional[Callable[[], dict]]:
    return _stats_provider
