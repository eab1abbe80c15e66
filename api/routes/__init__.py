"""API route modules."""

from .flow import router as flow_router
from .holders import router as holders_router
from .stats import router as stats_router
from .tokens import router as tokens_router

__all__ = ["flow_router", "holders_router", "stats_router", "tokens_router"]
