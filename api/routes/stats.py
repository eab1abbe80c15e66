"""Stats and health endpoints."""

import logging

from fastapi import APIRouter

from api.deps import get_health, get_metrics, get_stats_provider
from api.models import HealthResponse, StatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stats"])


@router.get("/health", response_model=HealthResponse)
async def health():
    """Health status; `degraded` lists the failing checks."""
    checker = get_health()
    if checker is None:
        return HealthResponse(status="ok")

    result = checker.check_health()
    return HealthResponse(
        status="ok" if result["healthy"] else "degraded",
        issues=result["issues"],
    )


@router.get("/stats", response_model=StatsResponse)
async def stats():
    """Metrics summary, per-component statistics and raw metrics."""
    components = {}
    provider = get_stats_provider()
    if provider is not None:
        try:
            components = provider()
        except Exception as e:
            logger.error(f"Failed to collect component stats: {e}")

    collector = get_metrics()
    return StatsResponse(
        summary=collector.get_summary(),
        components=components,
        metrics=collector.get_all_metrics(),
    )
