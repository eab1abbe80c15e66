"""Daily buy/sell flow per ticker, derived from the holder ledger."""

import logging
from datetime import datetime
from typing import Dict, Iterable, Optional
from zoneinfo import ZoneInfo

from config.settings import settings
from models.holders import DailyFlow, HolderAction, HolderLedger
from storage.state_store import StateStore

logger = logging.getLogger(__name__)

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def flow_key(ticker: str) -> str:
    return f"flow:{ticker.upper()}"


def ledger_key(ticker: str) -> str:
    return f"ledger:{ticker.upper()}"


def parse_ddmm(ddmm: str, year: Optional[int] = None) -> datetime:
    """Parse a `DDMM` date in the given (default: current) year."""
    if len(ddmm) != 4 or not ddmm.isdigit():
        raise ValueError("date must be 4 digits (DDMM format)")
    day, month = int(ddmm[:2]), int(ddmm[2:])
    if not 1 <= month <= 12:
        raise ValueError(f"invalid month: {month}")
    if year is None:
        year = datetime.now(ZoneInfo(settings.display_timezone)).year
    try:
        return datetime(year, month, day)
    except ValueError:
        raise ValueError(f"invalid date: {day:02d}/{month:02d}")


def format_btc_value(value: float) -> str:
    if value == 0:
        return "0"
    return f"{value:.8f}".rstrip("0").rstrip(".")


def format_ratio(numerator: float, denominator: float) -> str:
    """`n/d` with 2 decimals; infinity when only the numerator is non-zero."""
    if denominator > 0:
        return f"{numerator / denominator:.2f}"
    if numerator > 0:
        return "∞"
    return "0.00"


def render_report(ticker: str, date: datetime, flow: DailyFlow) -> str:
    """Telegram HTML report for one day of flow."""
    count_ratio = format_ratio(flow.buy_count, flow.sell_count)
    value_ratio = format_ratio(flow.buy_value_btc, flow.sell_value_btc)
    if count_ratio != "∞":
        count_ratio = f"<code>{count_ratio}</code>"
    if value_ratio != "∞":
        value_ratio = f"<code>{value_ratio}</code>"

    return (
        f"{ticker.upper()} for {date.day:02d} {MONTHS[date.month - 1]}:\n\n"
        "<blockquote>"
        f"Buys: {flow.buy_count} ({format_btc_value(flow.buy_value_btc)} btc)\n"
        f"Sells: {flow.sell_count} ({format_btc_value(flow.sell_value_btc)} btc)\n\n"
        f"– B/S = {count_ratio}\n"
        f"– B/S$ = {value_ratio}"
        "</blockquote>"
    )


class FlowAggregator:
    """
    Maintains `DailyFlow` per ticker and date.

    Incremental updates come from the holder reconciler; `recompute_for_date`
    rebuilds a day from the ledger and overwrites whatever was stored.
    """

    def __init__(self, store: StateStore, tickers: Optional[Iterable[str]] = None):
        self.store = store
        self.tickers = {t.upper() for t in (tickers or settings.tracked_tickers)}
        self._events_recorded = 0
        self._recomputes = 0

    def _check_ticker(self, ticker: str) -> str:
        ticker = ticker.upper()
        if ticker not in self.tickers:
            raise ValueError(f"ticker {ticker} is not tracked")
        return ticker

    async def _load_flows(self, ticker: str) -> Dict[str, DailyFlow]:
        data = await self.store.load(flow_key(ticker), {}) or {}
        return {
            date: DailyFlow.from_dict({**raw, "date": date})
            for date, raw in (data.get("dailyFlows") or {}).items()
        }

    async def _save_flows(self, ticker: str, flows: Dict[str, DailyFlow]):
        await self.store.save(
            flow_key(ticker),
            {"dailyFlows": {date: flow.to_dict() for date, flow in flows.items()}},
        )

    async def record_event(self, ticker: str, date: str, action: HolderAction, value: float):
        """Fold one classified transition into the day's flow."""
        ticker = ticker.upper()
        async with self.store.lock(flow_key(ticker)):
            flows = await self._load_flows(ticker)
            flow = flows.setdefault(date, DailyFlow(date=date))
            flow.apply(action, value)
            await self._save_flows(ticker, flows)
        self._events_recorded += 1

    async def recompute_for_date(self, ticker: str, date: str) -> DailyFlow:
        """Rebuild one day from the full ledger and store it."""
        ticker = ticker.upper()
        # Lock order matches the reconciler: ledger, then flow
        async with self.store.lock(ledger_key(ticker)):
            ledger = HolderLedger.from_dict(ticker, await self.store.load(ledger_key(ticker)))

            flow = DailyFlow(date=date)
            for record in ledger.records_for_date(date):
                flow.apply(record.action, record.value)

            async with self.store.lock(flow_key(ticker)):
                flows = await self._load_flows(ticker)
                flows[date] = flow
                await self._save_flows(ticker, flows)

        self._recomputes += 1
        logger.debug(
            f"Recomputed {ticker} flow for {date}: "
            f"{flow.buy_count} buys / {flow.sell_count} sells"
        )
        return flow

    async def get_flow(self, ticker: str, date: str) -> DailyFlow:
        flows = await self._load_flows(ticker.upper())
        return flows.get(date) or DailyFlow(date=date)

    async def build_report(self, ticker: str, ddmm: str) -> str:
        """
        Report text for a `DDMM` date in the current year.

        Raises ValueError for an untracked ticker or a malformed date.
        """
        ticker = self._check_ticker(ticker)
        date = parse_ddmm(ddmm)
        flow = await self.get_flow(ticker, date.strftime("%Y-%m-%d"))
        return render_report(ticker, date, flow)

    def get_stats(self) -> dict:
        return {
            "events_recorded": self._events_recorded,
            "recomputes": self._recomputes,
        }
