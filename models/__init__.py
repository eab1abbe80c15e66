"""Data models for Sparkwatch."""

from .swaps import (
    NATIVE_TOKEN_ADDRESS,
    SwapRecord,
    SwapSide,
    SwapSnapshot,
)
from .holders import (
    BalanceChangeRecord,
    DailyFlow,
    HolderAction,
    HolderLedger,
)
from .events import (
    EventKind,
    HolderTransition,
    HotTokenEvent,
    ReportEvent,
    SwapEvent,
)

__all__ = [
    "NATIVE_TOKEN_ADDRESS",
    "SwapRecord",
    "SwapSide",
    "SwapSnapshot",
    "BalanceChangeRecord",
    "DailyFlow",
    "HolderAction",
    "HolderLedger",
    "EventKind",
    "HolderTransition",
    "HotTokenEvent",
    "ReportEvent",
    "SwapEvent",
]
