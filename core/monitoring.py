"""Metrics collection and monitoring."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.auth import CredentialProvider
from core.circuit_breaker import CircuitBreaker, CircuitState

logger = logging.getLogger(__name__)


@dataclass
class Counter:
    """Simple counter metric."""
    name: str
    value: int = 0
    labels: Dict[str, str] = field(default_factory=dict)

    def inc(self, amount: int = 1):
        self.value += amount


@dataclass
class Gauge:
    """Simple gauge metric."""
    name: str
    value: float = 0.0
    labels: Dict[str, str] = field(default_factory=dict)

    def set(self, value: float):
        self.value = value


@dataclass
class Histogram:
    """Simple histogram metric with buckets."""
    name: str
    buckets: List[float] = field(default_factory=lambda: [0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0])
    counts: List[int] = None
    sum: float = 0.0
    count: int = 0
    labels: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.counts is None:
            self.counts = [0] * (len(self.buckets) + 1)

    def observe(self, value: float):
        self.sum += value
        self.count += 1
        for i, bucket in enumerate(self.buckets):
            if value <= bucket:
                self.counts[i] += 1
                return
        self.counts[-1] += 1  # +Inf bucket


class MetricsCollector:
    """
    Collects and exposes application metrics.

    Counters, gauges and histograms keyed by name and labels. The stats
    loop logs `get_summary()`; `/api/stats` returns both views.
    """

    def __init__(self):
        self._counters: Dict[str, Counter] = {}
        self._gauges: Dict[str, Gauge] = {}
        self._histograms: Dict[str, Histogram] = {}
        self._start_time = time.time()
        self._last_poll_at: Optional[float] = None

    # === Counters ===

    def counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> Counter:
        """Get or create a counter."""
        key = f"{name}:{sorted(labels.items())}" if labels else name
        if key not in self._counters:
            self._counters[key] = Counter(name=name, labels=labels or {})
        return self._counters[key]

    def inc(self, name: str, amount: int = 1, labels: Optional[Dict[str, str]] = None):
        """Increment a counter."""
        self.counter(name, labels).inc(amount)

    # === Gauges ===

    def gauge(self, name: str, labels: Optional[Dict[str, str]] = None) -> Gauge:
        """Get or create a gauge."""
        key = f"{name}:{sorted(labels.items())}" if labels else name
        if key not in self._gauges:
            self._gauges[key] = Gauge(name=name, labels=labels or {})
        return self._gauges[key]

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Set a gauge value."""
        self.gauge(name, labels).set(value)

    # === Histograms ===

    def histogram(self, name: str, labels: Optional[Dict[str, str]] = None) -> Histogram:
        """Get or create a histogram."""
        key = f"{name}:{sorted(labels.items())}" if labels else name
        if key not in self._histograms:
            self._histograms[key] = Histogram(name=name, labels=labels or {})
        return self._histograms[key]

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Record an observation in a histogram."""
        self.histogram(name, labels=labels).observe(value)

    # === Convenience methods ===

    def record_poll(self, new_swaps: int, seconds: float):
        """Record a successful swap poll."""
        self._last_poll_at = time.time()
        self.inc("polls_total")
        self.inc("swaps_new_total", new_swaps)
        self.observe("poll_cycle_seconds", seconds)

    def record_poll_error(self):
        self.inc("poll_errors_total")

    def record_transition(self, ticker: str, action: str):
        """Record a classified holder transition."""
        self.inc("holder_transitions_total", labels={"ticker": ticker, "action": action})

    def record_hot_token(self):
        self.inc("hot_tokens_total")

    def record_notification(self, sink: str, delivered: bool):
        name = "notifications_sent_total" if delivered else "notifications_failed_total"
        self.inc(name, labels={"sink": sink})

    def set_snapshot_size(self, size: int):
        self.set_gauge("snapshot_size", size)

    @property
    def last_poll_age(self) -> Optional[float]:
        """Seconds since the last successful poll, None before the first one."""
        if self._last_poll_at is None:
            return None
        return time.time() - self._last_poll_at

    # === Export ===

    def get_all_metrics(self) -> Dict[str, Any]:
        """Get all metrics as a dictionary."""
        return {
            "uptime_seconds": time.time() - self._start_time,
            "counters": [
                {"name": c.name, "value": c.value, "labels": c.labels}
                for c in self._counters.values()
            ],
            "gauges": [
                {"name": g.name, "value": g.value, "labels": g.labels}
                for g in self._gauges.values()
            ],
            "histograms": [
                {
                    "name": h.name,
                    "sum": h.sum,
                    "count": h.count,
                    "buckets": {str(b): c for b, c in zip(h.buckets + [float("inf")], h.counts)},
                    "labels": h.labels,
                }
                for h in self._histograms.values()
            ],
        }

    def _sum_counters(self, name: str) -> int:
        """Sum counters with the same base name across all label sets."""
        return sum(counter.value for counter in self._counters.values() if counter.name == name)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of key metrics."""
        uptime = time.time() - self._start_time
        snapshot_gauge = self._gauges.get("snapshot_size", Gauge("snapshot_size"))

        return {
            "uptime_seconds": uptime,
            "uptime_human": self._format_duration(uptime),
            "polls": self._sum_counters("polls_total"),
            "poll_errors": self._sum_counters("poll_errors_total"),
            "swaps_new": self._sum_counters("swaps_new_total"),
            "holder_transitions": self._sum_counters("holder_transitions_total"),
            "hot_tokens": self._sum_counters("hot_tokens_total"),
            "notifications_sent": self._sum_counters("notifications_sent_total"),
            "notifications_failed": self._sum_counters("notifications_failed_total"),
            "snapshot_size": int(snapshot_gauge.value),
            "last_poll_age_seconds": self.last_poll_age,
        }

    @staticmethod
    def _format_duration(seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.0f}s"
        elif seconds < 3600:
            return f"{seconds / 60:.0f}m"
        elif seconds < 86400:
            return f"{seconds / 3600:.1f}h"
        else:
            return f"{seconds / 86400:.1f}d"


# Global metrics instance
metrics = MetricsCollector()


class HealthChecker:
    """
    System health checker.

    Unhealthy when polling has stalled, a circuit is open, or the feed
    credential is missing or expired.
    """

    def __init__(
        self,
        metrics_collector: MetricsCollector,
        breakers: Optional[List[CircuitBreaker]] = None,
        credentials: Optional[CredentialProvider] = None,
        max_poll_age: float = 60.0,
    ):
        self.metrics = metrics_collector
        self.breakers = breakers or []
        self.credentials = credentials
        self.max_poll_age = max_poll_age
        self._is_healthy = True
        self._health_issues: List[str] = []

    def check_health(self) -> Dict[str, Any]:
        """Run health checks and return status."""
        issues = []

        age = self.metrics.last_poll_age
        if age is not None and age > self.max_poll_age:
            issues.append(f"No successful poll for {age:.0f}s")

        for breaker in self.breakers:
            if breaker.state == CircuitState.OPEN:
                issues.append(f"Circuit {breaker.name} is open")

        if self.credentials is not None and not self.credentials.is_valid():
            issues.append("Feed credential missing or expired")

        self._health_issues = issues
        self._is_healthy = not issues

        return {
            "healthy": self._is_healthy,
            "issues": issues,
            "summary": self.metrics.get_summary(),
        }

    async def health_check_loop(self, interval: float = 60.0):
        """Log health issues periodically."""
        while True:
            try:
                await asyncio.sleep(interval)
                health = self.check_health()

                if not health["healthy"]:
                    logger.warning(f"Health issues: {health['issues']}")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Health check error: {e}")

    @property
    def is_healthy(self) -> bool:
        """Get current health status."""
        return self._is_healthy
