"""
Notification fan-out.

Sinks are declared in `config/sinks.yaml`. For each event every sink is
checked on its own (event kind, BTC threshold, allow/block lists, hot-token
cooldown), messages are built once per format and delivered concurrently.
"""

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import yaml
from dotenv import dotenv_values

from config.settings import settings
from enrichment.luminex import LuminexClient, PoolMetadata
from models.events import EventKind, HotTokenEvent, ReportEvent, SwapEvent
from storage.token_lists import TokenListStore
from stream.flashnet import FlashnetClient
from .discord import DiscordSender
from .formatter import MessageFormatter, SwapContext
from .telegram import TelegramSender

logger = logging.getLogger(__name__)

Event = Union[SwapEvent, HotTokenEvent, ReportEvent]

_ENV_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class SinkKind(str, Enum):
    TELEGRAM = "telegram"
    DISCORD = "discord"


class ListMode(str, Enum):
    ALL = "all"
    ALLOW_LIST = "allow_list"


def sink_environment(env_file: str = ".env") -> Dict[str, str]:
    """Variables from `.env` overlaid with the process environment."""
    values = {k: v for k, v in dotenv_values(env_file).items() if v is not None}
    values.update(os.environ)
    return values


def substitute_env(value: str, env: Optional[Dict[str, str]] = None) -> str:
    """
    Replace `${NAME}` with the variable NAME from `env`.

    `env` defaults to `sink_environment()`. Names missing there fall back to
    the matching settings field (lowercase name). Unknown names become
    empty strings.
    """
    env = sink_environment() if env is None else env

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if env.get(name):
            return env[name]
        fallback = getattr(settings, name.lower(), None)
        if fallback:
            return str(fallback)
        logger.debug(f"Sink variable {name} is not set")
        return ""

    return _ENV_RE.sub(replace, value)


@dataclass
class SinkConfig:
    """One delivery target and its rules."""
    name: str
    kind: SinkKind
    target: str
    events: List[EventKind] = field(default_factory=lambda: [EventKind.SWAP])
    min_btc: float = 0.0
    list_mode: ListMode = ListMode.ALL
    respect_block_list: bool = True
    cooldown_seconds: float = 0.0
    include_holder: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> "SinkConfig":
        """Build from a YAML mapping. Raises ValueError on invalid entries."""
        if not d.get("name"):
            raise ValueError("sink without name")
        try:
            return cls(
                name=str(d["name"]),
                kind=SinkKind(d.get("kind", "telegram")),
                target=substitute_env(str(d.get("target") or ""), env),
                events=[EventKind(e) for e in d.get("events") or ["swap"]],
                min_btc=float(d.get("min_btc", 0.0)),
                list_mode=ListMode(d.get("list_mode", "all")),
                respect_block_list=bool(d.get("respect_block_list", True)),
                cooldown_seconds=float(d.get("cooldown_seconds", 0.0)),
                include_holder=bool(d.get("include_holder", False)),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"invalid sink {d.get('name')}: {e}")

    @property
    def enabled(self) -> bool:
        return bool(self.target)

    @property
    def format_key(self) -> Tuple[SinkKind, bool]:
        return self.kind, self.include_holder


def load_sinks(path: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> List[SinkConfig]:
    """Load enabled sinks from YAML. A missing file yields no sinks."""
    path = path or settings.sinks_file
    file = Path(path)
    if not file.exists():
        logger.warning(f"Sinks file {path} not found, notifications disabled")
        return []

    with open(file, "r") as f:
        config = yaml.safe_load(f) or {}

    if env is None:
        env = sink_environment()

    sinks = []
    for raw in config.get("sinks", []):
        try:
            sink = SinkConfig.from_dict(raw, env)
        except ValueError as e:
            logger.warning(f"Skipping sink definition: {e}")
            continue
        if not sink.enabled:
            logger.info(f"Sink {sink.name} has no target, disabled")
            continue
        sinks.append(sink)

    logger.info(f"Loaded {len(sinks)} notification sinks: {[s.name for s in sinks]}")
    return sinks


class NotificationDispatcher:
    """
    Routes events to sinks.

    Delivery failures stay local to their sink. The per-(sink, pool)
    hot-token cooldown lives in memory and is armed only on success.
    """

    def __init__(
        self,
        sinks: List[SinkConfig],
        token_lists: TokenListStore,
        telegram: Optional[TelegramSender] = None,
        discord: Optional[DiscordSender] = None,
        luminex: Optional[LuminexClient] = None,
        flashnet: Optional[FlashnetClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sinks = sinks
        self.token_lists = token_lists
        self.telegram = telegram or TelegramSender()
        self.discord = discord or DiscordSender()
        self.luminex = luminex
        self.flashnet = flashnet
        self._clock = clock
        self._cooldowns: Dict[Tuple[str, str], float] = {}

        # Stats
        self._dispatched = 0
        self._delivered: Dict[str, int] = {s.name: 0 for s in sinks}
        self._failed: Dict[str, int] = {s.name: 0 for s in sinks}
        self._enrichment_errors = 0

    async def start(self):
        if any(s.kind == SinkKind.TELEGRAM for s in self.sinks):
            await self.telegram.start()
            bot = await self.telegram.get_bot_info()
            if bot:
                logger.info(f"Telegram bot @{bot.get('username')} ready")
        if any(s.kind == SinkKind.DISCORD for s in self.sinks):
            await self.discord.start()

    async def stop(self):
        await self.telegram.stop()
        await self.discord.stop()

    # --- sink rules ---

    def in_cooldown(self, sink: SinkConfig, pool_id: str) -> bool:
        last = self._cooldowns.get((sink.name, pool_id))
        if last is None:
            return False
        return self._clock() - last < sink.cooldown_seconds

    def _arm_cooldown(self, sink: SinkConfig, pool_id: str):
        if sink.cooldown_seconds > 0:
            self._cooldowns[(sink.name, pool_id)] = self._clock()

    def _prune_cooldowns(self):
        now = self._clock()
        windows = {s.name: s.cooldown_seconds for s in self.sinks}
        expired = [
            key for key, last in self._cooldowns.items()
            if now - last >= windows.get(key[0], 0)
        ]
        for key in expired:
            del self._cooldowns[key]

    async def is_eligible(self, sink: SinkConfig, event: Event) -> bool:
        """Apply one sink's rules to an event."""
        if event.kind not in sink.events:
            return False

        if event.kind == EventKind.SWAP and event.value_btc < sink.min_btc:
            return False

        pool_id = event.pool_id
        if pool_id:
            if sink.respect_block_list and await self.token_lists.is_blocked(pool_id):
                return False
            if sink.list_mode == ListMode.ALLOW_LIST and not await self.token_lists.is_allowed(pool_id):
                return False

        if event.kind == EventKind.HOT_TOKEN and self.in_cooldown(sink, pool_id):
            return False

        return True

    # --- enrichment ---

    async def _metadata(self, pool_id: str) -> Optional[PoolMetadata]:
        if not self.luminex or not pool_id:
            return None
        try:
            return await self.luminex.get_pool_metadata(pool_id)
        except Exception as e:
            self._enrichment_errors += 1
            logger.debug(f"Pool metadata unavailable for {pool_id[:12]}: {e}")
            return None

    async def enrich_swap(self, event: SwapEvent, full: bool) -> SwapContext:
        """
        Collect best-effort context for a swap message.

        `full` adds wallet holdings, username and first buy date. Any part
        that fails is left empty.
        """
        swap = event.swap
        ctx = SwapContext(metadata=await self._metadata(swap.pool_id))
        if not full:
            return ctx

        async def none():
            return None

        holdings, username, first_buy = await asyncio.gather(
            self.luminex.get_address_holdings(swap.swapper) if self.luminex else none(),
            self.luminex.get_username(swap.swapper) if self.luminex else none(),
            self.flashnet.first_buy_display(swap.swapper, swap.pool_id) if self.flashnet else none(),
            return_exceptions=True,
        )
        for part, value in (("holdings", holdings), ("username", username), ("first buy", first_buy)):
            if isinstance(value, Exception):
                self._enrichment_errors += 1
                logger.debug(f"Swap {swap.id} {part} enrichment failed: {value}")

        ctx.holdings = None if isinstance(holdings, Exception) else holdings
        ctx.username = None if isinstance(username, Exception) else username
        ctx.first_buy = None if isinstance(first_buy, Exception) else first_buy
        return ctx

    # --- formatting ---

    async def _build_payloads(self, event: Event, sinks: List[SinkConfig]) -> Dict[Tuple[SinkKind, bool], Any]:
        """One payload per (kind, include_holder) among the eligible sinks."""
        keys = {s.format_key for s in sinks}
        payloads = {}

        if isinstance(event, SwapEvent):
            ctx = await self.enrich_swap(event, full=any(holder for _, holder in keys))
            for kind, holder in keys:
                if kind == SinkKind.TELEGRAM:
                    payloads[(kind, holder)] = MessageFormatter.format_swap_telegram(event, ctx, holder)
                else:
                    payloads[(kind, holder)] = MessageFormatter.format_swap_discord(event, ctx, holder)

        elif isinstance(event, HotTokenEvent):
            metadata = await self._metadata(event.pool_id)
            for kind, holder in keys:
                if kind == SinkKind.TELEGRAM:
                    payloads[(kind, holder)] = MessageFormatter.format_hot_telegram(event, metadata)
                else:
                    payloads[(kind, holder)] = MessageFormatter.format_hot_discord(event, metadata)

        else:
            for kind, holder in keys:
                if kind == SinkKind.TELEGRAM:
                    payloads[(kind, holder)] = MessageFormatter.format_report_telegram(event)
                else:
                    payloads[(kind, holder)] = MessageFormatter.format_report_discord(event)

        return payloads

    async def _deliver(self, sink: SinkConfig, payload: Any) -> bool:
        if sink.kind == SinkKind.TELEGRAM:
            return await self.telegram.send(sink.target, payload)
        return await self.discord.send(sink.target, payload)

    # --- fan-out ---

    async def dispatch(self, event: Event, only: Optional[Iterable[str]] = None) -> Dict[str, bool]:
        """
        Deliver an event to every eligible sink.

        Returns delivery success per attempted sink; sinks filtered out by
        their rules are absent. `only` restricts the candidate sinks by name.
        """
        self._dispatched += 1
        if event.kind == EventKind.HOT_TOKEN:
            self._prune_cooldowns()
        names = set(only) if only is not None else None
        candidates = [s for s in self.sinks if names is None or s.name in names]

        eligible = [s for s in candidates if await self.is_eligible(s, event)]
        if not eligible:
            return {}

        payloads = await self._build_payloads(event, eligible)
        outcomes = await asyncio.gather(
            *(self._deliver(s, payloads[s.format_key]) for s in eligible),
            return_exceptions=True,
        )

        results = {}
        for sink, outcome in zip(eligible, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Sink {sink.name} delivery raised: {outcome}")
                outcome = False
            results[sink.name] = bool(outcome)

            if outcome:
                self._delivered[sink.name] += 1
                if event.kind == EventKind.HOT_TOKEN:
                    self._arm_cooldown(sink, event.pool_id)
            else:
                self._failed[sink.name] += 1
                logger.warning(f"Sink {sink.name} failed to deliver {event.kind.value} event")

        return results

    def get_stats(self) -> dict:
        return {
            "sinks": [s.name for s in self.sinks],
            "dispatched": self._dispatched,
            "delivered": dict(self._delivered),
            "failed": dict(self._failed),
            "enrichment_errors": self._enrichment_errors,
            "cooldowns_active": len(self._cooldowns),
            "telegram": self.telegram.get_stats(),
            "discord": self.discord.get_stats(),
        }
