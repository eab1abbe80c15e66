"""Allow/block token lists and the pool -> ticker registry."""

import logging
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from .state_store import StateStore

logger = logging.getLogger(__name__)


class ListName(str, Enum):
    """Persisted pool-id lists."""
    ALLOW = "allow"
    BLOCK = "block"


class TokenListError(Exception):
    """Invalid list mutation (e.g. removing a token that is not listed)."""


class TokenListStore:
    """
    Allow-list and block-list of pool ids.

    Stored as `{"tokens": [...]}` under `tokens:allow` / `tokens:block`.
    Lists are cached in memory after the first load; every mutation goes
    through this object, so the cache stays authoritative.
    """

    def __init__(self, store: StateStore):
        self.store = store
        self._cache: Dict[ListName, Set[str]] = {}

    @staticmethod
    def _key(name: ListName) -> str:
        return f"tokens:{name.value}"

    async def load(self, name: ListName) -> Set[str]:
        if name not in self._cache:
            data = await self.store.load(self._key(name), {"tokens": []})
            self._cache[name] = {
                t.strip() for t in (data or {}).get("tokens", []) if t and t.strip()
            }
        return self._cache[name]

    async def members(self, name: ListName) -> List[str]:
        return sorted(await self.load(name))

    async def contains(self, name: ListName, pool_id: str) -> bool:
        return pool_id.strip() in await self.load(name)

    async def add(self, name: ListName, pool_id: str) -> bool:
        """Add a pool. Returns False when it was already present."""
        pool_id = pool_id.strip()
        if not pool_id:
            raise TokenListError("pool id is empty")
        async with self.store.lock(self._key(name)):
            tokens = await self.load(name)
            if pool_id in tokens:
                return False
            tokens.add(pool_id)
            await self.store.save(self._key(name), {"tokens": sorted(tokens)})
        logger.info(f"Added {pool_id[:12]}... to {name.value} list")
        return True

    async def remove(self, name: ListName, pool_id: str):
        """Remove a pool. Raises TokenListError when it is not listed."""
        pool_id = pool_id.strip()
        async with self.store.lock(self._key(name)):
            tokens = await self.load(name)
            if pool_id not in tokens:
                raise TokenListError("token not found in list")
            tokens.discard(pool_id)
            await self.store.save(self._key(name), {"tokens": sorted(tokens)})
        logger.info(f"Removed {pool_id[:12]}... from {name.value} list")

    async def is_blocked(self, pool_id: str) -> bool:
        return await self.contains(ListName.BLOCK, pool_id)

    async def is_allowed(self, pool_id: str) -> bool:
        return await self.contains(ListName.ALLOW, pool_id)


class TickerRegistry:
    """
    Pool id -> "TICKER:Name", filled in as pools are enriched.

    Lets list management and reports address pools by ticker.
    """

    KEY = "tickers:registry"

    def __init__(self, store: StateStore):
        self.store = store
        self._tickers: Optional[Dict[str, str]] = None

    async def _load(self) -> Dict[str, str]:
        if self._tickers is None:
            data = await self.store.load(self.KEY, {"tickets": {}})
            self._tickers = dict((data or {}).get("tickets", {}))
        return self._tickers

    async def remember(self, pool_id: str, ticker: str, name: str = ""):
        """Record a pool's ticker; persists only on change."""
        if not pool_id or not ticker:
            return
        value = f"{ticker.upper()}:{name}"
        async with self.store.lock(self.KEY):
            tickers = await self._load()
            if tickers.get(pool_id) == value:
                return
            tickers[pool_id] = value
            await self.store.save(self.KEY, {"tickets": tickers})

    async def lookup(self, pool_id: str) -> Optional[Tuple[str, str]]:
        """(ticker, name) for a pool, if known."""
        value = (await self._load()).get(pool_id)
        if not value:
            return None
        ticker, _, name = value.partition(":")
        return ticker, name

    async def find_pool(self, ticker: str) -> Optional[str]:
        """First pool registered under `ticker` (case-insensitive)."""
        wanted = ticker.strip().upper()
        for pool_id, value in (await self._load()).items():
            if value.partition(":")[0] == wanted:
                return pool_id
        return None

    async def resolve(self, ticker_or_pool: str) -> Optional[str]:
        """Accept either a pool id or a ticker and return the pool id."""
        candidate = ticker_or_pool.strip()
        if candidate in await self._load():
            return candidate
        if len(candidate) == 66 and all(c in "0123456789abcdefABCDEF" for c in candidate):
            return candidate
        return await self.find_pool(candidate)
