"""Per-date holders report: who changed position on a day, and where they stand now."""

import asyncio
import html
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from config.settings import settings
from models.holders import HolderAction
from storage.token_lists import TickerRegistry
from stream.flashnet import FlashnetClient
from .flow import MONTHS, format_btc_value, parse_ddmm
from .holders import HolderReconciler

logger = logging.getLogger(__name__)

ACTION_EMOJI = {
    HolderAction.INVESTED: "\U0001F7E2",
    HolderAction.SOLD: "\U0001F7E0",
    HolderAction.LIQUIDATED: "\U0001F534",
}


def format_balance(balance: float) -> str:
    if balance >= 1_000_000:
        return f"{balance / 1_000_000:.2f}M"
    if balance >= 1_000:
        return f"{balance / 1_000:.2f}K"
    return f"{balance:.2f}"


@dataclass
class HolderReportEntry:
    """One address that changed position on the report date."""
    address: str
    action: HolderAction
    changes: int
    value: float
    balance: float
    share: Optional[float] = None  # percent of total supply
    first_buy: Optional[datetime] = None
    username: Optional[str] = None
    spark_address: str = ""

    @property
    def action_label(self) -> str:
        if self.action == HolderAction.INVESTED:
            return f"BUY ×{self.changes}"
        if self.action == HolderAction.SOLD:
            return f"SELL ×{self.changes}"
        return "LIQUIDATED"

    def first_buy_label(self) -> str:
        if self.first_buy is None:
            return "N/A"
        local = self.first_buy.astimezone(ZoneInfo(settings.display_timezone))
        return f"{local.day:02d} {MONTHS[local.month - 1]}"

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "action": self.action.value,
            "changes": self.changes,
            "value": self.value,
            "balance": self.balance,
            "share": self.share,
            "first_buy": self.first_buy.isoformat() if self.first_buy else None,
            "username": self.username,
            "spark_address": self.spark_address,
        }


@dataclass
class HoldersReport:
    ticker: str
    date: str  # YYYY-MM-DD
    entries: List[HolderReportEntry] = field(default_factory=list)

    def render(self) -> str:
        """Telegram HTML report."""
        if not self.entries:
            return f"Report for {self.date} ({self.ticker}):\n\nNo data for the specified date"

        lines = [f"Report for {self.date} ({self.ticker}):\n", "<blockquote>"]
        for entry in self.entries:
            label = html.escape(entry.username or "wallet")
            link = f"https://luminex.io/spark/address/{entry.spark_address or entry.address}"
            balance = format_balance(entry.balance)
            if entry.share is not None:
                balance += f" ({entry.share:.2f}%)"

            lines.append(
                f"{ACTION_EMOJI.get(entry.action, '')} "
                f"<a href=\"{link}\">{label}</a> ({entry.address[-3:]})"
            )
            lines.append(
                f"Balance: {balance} | First buy: {entry.first_buy_label()} | "
                f"Value: <code>{format_btc_value(entry.value)}</code> | "
                f"Action: <b>{entry.action_label}</b>\n"
            )
        lines.append("</blockquote>")
        return "\n".join(lines)


class HoldersReporter:
    """
    Builds holders reports from the ledger and saved balances.

    Wallet details (username, spark address, first buy) and the token's
    total supply are best-effort; a failed lookup leaves the field empty.
    """

    def __init__(
        self,
        reconciler: HolderReconciler,
        registry: TickerRegistry,
        flashnet: Optional[FlashnetClient] = None,
    ):
        self.reconciler = reconciler
        self.luminex = reconciler.balances
        self.registry = registry
        self.flashnet = flashnet

    async def _total_supply(self, pool_id: Optional[str]) -> float:
        if not pool_id:
            return 0.0
        try:
            metadata = await self.luminex.get_pool_metadata(pool_id)
        except Exception as e:
            logger.debug(f"Total supply unavailable for {pool_id[:12]}: {e}")
            return 0.0
        return metadata.total_supply if metadata else 0.0

    async def _spark_address(self, address: str) -> str:
        try:
            holdings = await self.luminex.get_address_holdings(address)
        except Exception as e:
            logger.debug(f"Spark address unavailable for {address[:8]}: {e}")
            return ""
        return holdings.spark_address

    async def _first_buy(self, address: str, pool_id: Optional[str]) -> Optional[datetime]:
        if not self.flashnet or not pool_id:
            return None
        return await self.flashnet.first_buy_time(address, pool_id)

    async def _describe(self, entry: HolderReportEntry, pool_id: Optional[str]):
        entry.username, entry.spark_address, entry.first_buy = await asyncio.gather(
            self.luminex.get_username(entry.address),
            self._spark_address(entry.address),
            self._first_buy(entry.address, pool_id),
        )

    async def build_holders_report(self, ticker: str, ddmm: str) -> HoldersReport:
        """
        Holders report for a `DDMM` date in the current year.

        Lists every address with a ledger change on that date: its last
        change, how many changes it made, and its current balance. Raises
        ValueError for an untracked ticker or a malformed date.
        """
        ticker = ticker.upper()
        if not self.reconciler.is_tracked(ticker):
            raise ValueError(f"ticker {ticker} is not tracked")
        day = parse_ddmm(ddmm).strftime("%Y-%m-%d")

        ledger = await self.reconciler.load_ledger(ticker)
        holders = await self.reconciler.load_holders(ticker)

        entries = []
        for address, records in ledger.changes.items():
            on_day = [r for r in records if r.date == day]
            if not on_day:
                continue
            last = on_day[-1]
            entries.append(HolderReportEntry(
                address=address,
                action=last.action,
                changes=len(on_day),
                value=last.value,
                balance=holders.get(address, last.amount),
            ))

        report = HoldersReport(ticker=ticker, date=day, entries=entries)
        if not entries:
            return report

        pool_id = await self.registry.find_pool(ticker)
        supply = await self._total_supply(pool_id)
        for entry in entries:
            if supply > 0:
                entry.share = entry.balance / supply * 100
        await asyncio.gather(*(self._describe(entry, pool_id) for entry in entries))

        logger.info(f"Built {ticker} holders report for {day}: {len(entries)} addresses")
        return report
