"""Detection module: holder reconciliation and reports, daily flow and hot tokens."""

from .flow import FlowAggregator, parse_ddmm, render_report
from .holders import HolderReconciler, SweepResult, classify
from .holders_report import HoldersReport, HoldersReporter
from .hot_tokens import HotTokenDetector, HotTokenResult, scan_pool

__all__ = [
    "FlowAggregator",
    "parse_ddmm",
    "render_report",
    "HolderReconciler",
    "SweepResult",
    "classify",
    "HoldersReport",
    "HoldersReporter",
    "HotTokenDetector",
    "HotTokenResult",
    "scan_pool",
]
