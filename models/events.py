"""Events routed through the notification dispatcher."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .holders import HolderAction
from .swaps import SwapRecord


class EventKind(str, Enum):
    """Notification event type, matched against a sink's `events` list."""
    SWAP = "swap"
    HOT_TOKEN = "hot_token"
    REPORT = "report"


@dataclass
class HolderTransition:
    """Outcome of reconciling one address after a swap."""
    ticker: str
    address: str
    previous: float
    current: float
    action: HolderAction
    value: float = 0.0

    @property
    def delta(self) -> float:
        if self.action == HolderAction.LIQUIDATED:
            return -self.previous
        return self.current - self.previous


@dataclass
class SwapEvent:
    """A newly observed swap, with its holder transition when tracked."""
    swap: SwapRecord
    ticker: Optional[str] = None
    transition: Optional[HolderTransition] = None
    kind: EventKind = EventKind.SWAP

    @property
    def pool_id(self) -> str:
        return self.swap.pool_id

    @property
    def value_btc(self) -> float:
        return self.swap.value_btc


@dataclass
class HotTokenEvent:
    """A pool that crossed the hot-token thresholds."""
    pool_id: str
    swap_count: int
    unique_swappers: int
    swappers: List[str] = field(default_factory=list)
    kind: EventKind = EventKind.HOT_TOKEN

    @property
    def value_btc(self) -> float:
        return 0.0


@dataclass
class ReportEvent:
    """Preformatted report text (daily flow)."""
    text: str
    pool_id: str = ""
    kind: EventKind = EventKind.REPORT

    @property
    def value_btc(self) -> float:
        return 0.0
