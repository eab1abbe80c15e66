"""Core application modules."""

from .monitoring import HealthChecker, MetricsCollector
from .processor import SwapProcessor

__all__ = [
    "HealthChecker",
    "MetricsCollector",
    "SwapProcessor",
]
