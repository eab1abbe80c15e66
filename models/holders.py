"""Holder ledger and flow models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class HolderAction(str, Enum):
    """Classified balance transition."""
    INVESTED = "invested"
    SOLD = "sold"
    LIQUIDATED = "liquidated"


@dataclass(frozen=True)
class BalanceChangeRecord:
    """One append-only ledger entry for an address."""
    amount: float
    delta: float
    action: HolderAction
    value: float
    date: str  # YYYY-MM-DD

    def to_dict(self) -> dict:
        return {
            "amount": self.amount,
            "delta": self.delta,
            "action": self.action.value,
            "value": self.value,
            "date": self.date,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "BalanceChangeRecord":
        return cls(
            amount=float(d.get("amount", 0.0)),
            delta=float(d.get("delta", 0.0)),
            action=HolderAction(d["action"]),
            value=float(d.get("value", 0.0)),
            date=d.get("date", ""),
        )


@dataclass
class HolderLedger:
    """
    Per-ticker change ledger.

    `daily_counts` counts events per address for `last_check_date` only and
    is reset whenever the date rolls over. `last_sweep_date` records the last
    full balance sweep and only guards against redundant fetches.
    """
    ticker: str
    last_check_date: str = ""
    last_sweep_date: str = ""
    changes: Dict[str, List[BalanceChangeRecord]] = field(default_factory=dict)
    daily_counts: Dict[str, int] = field(default_factory=dict)

    def append(self, address: str, record: BalanceChangeRecord):
        """Append a record and bump the address's counter for that day."""
        if record.date != self.last_check_date:
            self.daily_counts = {}
            self.last_check_date = record.date
        self.changes.setdefault(address, []).append(record)
        self.daily_counts[address] = self.daily_counts.get(address, 0) + 1

    def records_for_date(self, date: str) -> List[BalanceChangeRecord]:
        return [
            r
            for records in self.changes.values()
            for r in records
            if r.date == date
        ]

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "lastCheckDate": self.last_check_date,
            "lastSweepDate": self.last_sweep_date,
            "changes": {
                addr: [r.to_dict() for r in records]
                for addr, records in self.changes.items()
            },
            "dailyCounts": dict(self.daily_counts),
        }

    @classmethod
    def from_dict(cls, ticker: str, d: Optional[dict]) -> "HolderLedger":
        if not d:
            return cls(ticker=ticker)
        return cls(
            ticker=ticker,
            last_check_date=d.get("lastCheckDate", ""),
            last_sweep_date=d.get("lastSweepDate", ""),
            changes={
                addr: [BalanceChangeRecord.from_dict(r) for r in records]
                for addr, records in (d.get("changes") or {}).items()
            },
            daily_counts=dict(d.get("dailyCounts") or {}),
        )


@dataclass
class DailyFlow:
    """Per-day buy/sell counters for a ticker."""
    date: str
    buy_count: int = 0
    sell_count: int = 0
    buy_value_btc: float = 0.0
    sell_value_btc: float = 0.0

    def apply(self, action: HolderAction, value: float):
        """Fold one classified transition into the counters."""
        if action == HolderAction.INVESTED:
            self.buy_count += 1
            self.buy_value_btc = round(self.buy_value_btc + value, 8)
        elif action == HolderAction.SOLD:
            self.sell_count += 1
            self.sell_value_btc = round(self.sell_value_btc + value, 8)

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "buyCount": self.buy_count,
            "sellCount": self.sell_count,
            "buyValueBTC": self.buy_value_btc,
            "sellValueBTC": self.sell_value_btc,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "DailyFlow":
        return cls(
            date=d.get("date", ""),
            buy_count=int(d.get("buyCount", 0)),
            sell_count=int(d.get("sellCount", 0)),
            buy_value_btc=float(d.get("buyValueBTC", 0.0)),
            sell_value_btc=float(d.get("sellValueBTC", 0.0)),
        )
