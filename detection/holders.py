"""
Holder balance reconciliation.

For each tracked ticker the reconciler keeps the last known balance of every
address holding at least `holder_min_balance` tokens, plus an append-only
ledger of classified balance changes. Balances are refreshed either right
after a swap by that address or by a daily sweep over all holders.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from config.settings import settings
from enrichment.luminex import LuminexClient
from models.events import HolderTransition
from models.holders import BalanceChangeRecord, HolderAction, HolderLedger
from models.swaps import SwapRecord, SwapSide
from storage.state_store import StateStore
from .flow import FlowAggregator, ledger_key

logger = logging.getLogger(__name__)

SWEEP_CONCURRENCY = 5


def holders_key(ticker: str) -> str:
    return f"holders:{ticker.upper()}"


def today_in_display_tz() -> str:
    return datetime.now(ZoneInfo(settings.display_timezone)).strftime("%Y-%m-%d")


def classify(
    saved: float,
    current: float,
    tracked: bool,
    side: Optional[SwapSide] = None,
    epsilon: float = 0.0001,
    threshold: float = 10.0,
) -> Optional[HolderAction]:
    """
    Classify a balance change, or return None when nothing happened.

    `side` is the swap direction for event-driven checks and None for
    sweeps. A first sighting follows the swap direction (plain swaps count
    as investing); sweeps default to investing.
    """
    if abs(current - saved) <= epsilon:
        return None

    if current == 0 or current < threshold:
        # Nothing was held by an untracked address
        return HolderAction.LIQUIDATED if tracked else None

    if not tracked:
        return HolderAction.SOLD if side == SwapSide.SELL else HolderAction.INVESTED

    return HolderAction.INVESTED if current > saved else HolderAction.SOLD


@dataclass
class SweepResult:
    """Outcome of one sweep over a ticker's holders."""
    ticker: str
    skipped: bool = False
    checked: int = 0
    failed: int = 0
    transitions: List[HolderTransition] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "skipped": self.skipped,
            "checked": self.checked,
            "failed": self.failed,
            "transitions": [
                {
                    "address": t.address,
                    "action": t.action.value,
                    "previous": t.previous,
                    "current": t.current,
                }
                for t in self.transitions
            ],
        }


class HolderReconciler:
    """
    Balance state machine for tracked tickers.

    All load-modify-save cycles for a ticker's holders and ledger run under
    the ticker's ledger lock. Balance fetches happen outside the lock, so a
    reconcile applies whatever balance was observed last.
    """

    def __init__(
        self,
        store: StateStore,
        balances: LuminexClient,
        flow: FlowAggregator,
        tickers: Optional[Iterable[str]] = None,
        min_balance: Optional[float] = None,
        epsilon: Optional[float] = None,
        today: Callable[[], str] = today_in_display_tz,
    ):
        self.store = store
        self.balances = balances
        self.flow = flow
        self.tickers = [t.upper() for t in (tickers or settings.tracked_tickers)]
        self.min_balance = settings.holder_min_balance if min_balance is None else min_balance
        self.epsilon = settings.holder_epsilon if epsilon is None else epsilon
        self.today = today

        # Stats
        self._reconciled = 0
        self._transitions = 0
        self._balance_errors = 0
        self._sweeps = 0

    def is_tracked(self, ticker: Optional[str]) -> bool:
        return bool(ticker) and ticker.upper() in self.tickers

    # --- persistence ---

    async def load_holders(self, ticker: str) -> Dict[str, float]:
        data = await self.store.load(holders_key(ticker), {}) or {}
        holders = {}
        for address, raw in (data.get("holders") or {}).items():
            try:
                holders[address] = float(raw)
            except (TypeError, ValueError):
                logger.warning(f"Skipping unparsable {ticker} balance for {address[:8]}: {raw!r}")
        return holders

    async def _save_holders(self, ticker: str, holders: Dict[str, float]):
        await self.store.save(
            holders_key(ticker),
            {"holders": {address: f"{balance:.8f}" for address, balance in holders.items()}},
        )

    async def load_ledger(self, ticker: str) -> HolderLedger:
        return HolderLedger.from_dict(ticker.upper(), await self.store.load(ledger_key(ticker)))

    # --- balances ---

    async def fetch_balance(self, address: str, ticker: str) -> float:
        """Live whole-token balance; 0 when the address holds none."""
        holdings = await self.balances.get_address_holdings(address)
        holding = holdings.find(ticker)
        if holding is None:
            return 0.0
        return holding.amount

    # --- transitions ---

    def _apply(
        self,
        ticker: str,
        holders: Dict[str, float],
        ledger: HolderLedger,
        address: str,
        current: float,
        side: Optional[SwapSide],
        value: float,
        date: str,
    ) -> Optional[HolderTransition]:
        tracked = address in holders
        saved = holders.get(address, 0.0)
        action = classify(
            saved, current, tracked, side,
            epsilon=self.epsilon, threshold=self.min_balance,
        )
        if action is None:
            return None

        transition = HolderTransition(
            ticker=ticker,
            address=address,
            previous=saved,
            current=current,
            action=action,
            value=value,
        )
        ledger.append(address, BalanceChangeRecord(
            amount=current,
            delta=transition.delta,
            action=action,
            value=value,
            date=date,
        ))

        if current >= self.min_balance:
            holders[address] = current
        else:
            holders.pop(address, None)

        return transition

    async def _commit(
        self,
        ticker: str,
        updates: Dict[str, float],
        side: Optional[SwapSide],
        value: float,
        sweep: bool,
    ) -> List[HolderTransition]:
        """Apply observed balances under the ticker lock and feed the flow."""
        date = self.today()
        transitions = []

        async with self.store.lock(ledger_key(ticker)):
            holders = await self.load_holders(ticker)
            ledger = await self.load_ledger(ticker)

            for address, current in updates.items():
                transition = self._apply(ticker, holders, ledger, address, current, side, value, date)
                if transition:
                    transitions.append(transition)

            if sweep:
                ledger.last_sweep_date = date

            if transitions or sweep:
                await self._save_holders(ticker, holders)
                await self.store.save(ledger_key(ticker), ledger.to_dict())

            for transition in transitions:
                await self.flow.record_event(ticker, date, transition.action, transition.value)

        self._transitions += len(transitions)
        return transitions

    async def reconcile_from_swap(self, swap: SwapRecord, ticker: str) -> Optional[HolderTransition]:
        """
        Re-check the swapper's balance after a swap.

        Returns the transition, or None for untracked tickers and no-ops.
        Balance fetch errors propagate.
        """
        if not self.is_tracked(ticker):
            return None
        ticker = ticker.upper()

        try:
            current = await self.fetch_balance(swap.swapper, ticker)
        except Exception:
            self._balance_errors += 1
            raise

        self._reconciled += 1
        transitions = await self._commit(
            ticker,
            {swap.swapper: current},
            side=swap.side,
            value=swap.value_btc,
            sweep=False,
        )
        if not transitions:
            return None

        transition = transitions[0]
        logger.info(
            f"{ticker} holder {swap.swapper[:8]} {transition.action.value}: "
            f"{transition.previous:.4f} -> {transition.current:.4f}"
        )
        return transition

    async def _fetch_all(self, ticker: str, addresses: List[str]) -> Dict[str, float]:
        semaphore = asyncio.Semaphore(SWEEP_CONCURRENCY)

        async def fetch_one(address: str) -> Optional[float]:
            async with semaphore:
                try:
                    return await self.fetch_balance(address, ticker)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._balance_errors += 1
                    logger.warning(f"Sweep skipped {ticker} holder {address[:8]}: {e}")
                    return None

        results = await asyncio.gather(*(fetch_one(a) for a in addresses))
        return {
            address: balance
            for address, balance in zip(addresses, results)
            if balance is not None
        }

    async def sweep(self, ticker: str, force: bool = False) -> SweepResult:
        """
        Re-fetch every held address of a ticker.

        Skipped when a sweep already ran today unless `force`. A failure on
        one address skips only that address.
        """
        ticker = ticker.upper()
        if ticker not in self.tickers:
            raise ValueError(f"ticker {ticker} is not tracked")

        today = self.today()
        ledger = await self.load_ledger(ticker)
        if not force and ledger.last_sweep_date == today:
            logger.debug(f"{ticker} holders already swept today")
            return SweepResult(ticker=ticker, skipped=True)

        addresses = list(await self.load_holders(ticker))
        balances = await self._fetch_all(ticker, addresses)

        transitions = await self._commit(ticker, balances, side=None, value=0.0, sweep=True)
        self._sweeps += 1

        result = SweepResult(
            ticker=ticker,
            checked=len(balances),
            failed=len(addresses) - len(balances),
            transitions=transitions,
        )
        logger.info(
            f"Swept {ticker}: {result.checked} checked, {result.failed} failed, "
            f"{len(transitions)} changes"
        )
        return result

    async def sweep_all(self, force: bool = False) -> Dict[str, SweepResult]:
        results = {}
        for ticker in self.tickers:
            try:
                results[ticker] = await self.sweep(ticker, force=force)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Sweep failed for {ticker}: {e}")
        return results

    def get_stats(self) -> dict:
        return {
            "tickers": list(self.tickers),
            "reconciled": self._reconciled,
            "transitions": self._transitions,
            "balance_errors": self._balance_errors,
            "sweeps": self._sweeps,
        }
