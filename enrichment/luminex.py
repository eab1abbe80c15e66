"""Luminex API client: pool metadata, address holdings, usernames."""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from config.settings import settings
from core.http import ResilientClient
from core.ttl_cache import TTLCache
from models.swaps import NATIVE_TOKEN_ADDRESS

logger = logging.getLogger(__name__)

DEFAULT_DECIMALS = 8

# Same headers the luminex.io web app sends
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": "https://luminex.io/",
    "Origin": "https://luminex.io",
}


@dataclass
class TokenInfo:
    """The non-native side of a pool."""
    address: str = ""
    ticker: str = ""
    name: str = ""
    decimals: int = DEFAULT_DECIMALS
    market_cap_usd: float = 0.0
    price_usd: float = 0.0
    total_supply_raw: str = ""
    website_url: Optional[str] = None
    twitter_url: Optional[str] = None


@dataclass
class PoolMetadata:
    """Decoded `/spark/pool/{id}` response."""
    pool_id: str
    token: TokenInfo
    pool_market_cap_usd: float = 0.0

    @property
    def ticker(self) -> str:
        return self.token.ticker.upper()

    @property
    def name(self) -> str:
        return self.token.name

    @property
    def decimals(self) -> int:
        return self.token.decimals

    @property
    def market_cap_usd(self) -> float:
        """Token market cap, falling back to the pool-level figure."""
        return self.token.market_cap_usd or self.pool_market_cap_usd

    @property
    def total_supply(self) -> float:
        """Whole-token supply; 0 when unknown."""
        try:
            return float(self.token.total_supply_raw) / (10 ** self.decimals)
        except ValueError:
            return 0.0


@dataclass
class TokenHolding:
    """One token balance of an address."""
    ticker: str
    decimals: int
    balance_raw: str
    name: str = ""
    token_address: str = ""

    @property
    def amount(self) -> float:
        """Whole-token balance. Raises ValueError for unparsable balances."""
        return float(self.balance_raw) / (10 ** self.decimals)


@dataclass
class AddressHoldings:
    """Decoded `/spark/address/{pk}` response."""
    public_key: str
    spark_address: str = ""
    native_balance_sats: int = 0
    tokens: List[TokenHolding] = field(default_factory=list)

    @property
    def native_balance_btc(self) -> float:
        return self.native_balance_sats / 100_000_000

    def find(self, ticker: str) -> Optional[TokenHolding]:
        wanted = ticker.upper()
        for holding in self.tokens:
            if holding.ticker.upper() == wanted:
                return holding
        return None


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _decode_token_side(address: str, meta: Any) -> TokenInfo:
    meta = meta if isinstance(meta, dict) else {}
    return TokenInfo(
        address=address or "",
        ticker=str(meta.get("ticker") or ""),
        name=str(meta.get("name") or ""),
        decimals=_as_int(meta.get("decimals"), DEFAULT_DECIMALS),
        market_cap_usd=_as_float(meta.get("agg_marketcap_usd")),
        price_usd=_as_float(meta.get("agg_price_usd")),
        total_supply_raw=str(meta.get("total_supply") or ""),
        website_url=meta.get("website_url") or None,
        twitter_url=meta.get("twitter_url") or None,
    )


def decode_pool_metadata(pool_id: str, data: Any) -> Optional[PoolMetadata]:
    """
    Pick the token side of a pool response.

    The token is whichever side is not the native asset. When neither side is
    native, side A wins unless it carries no name or ticker.
    """
    if not isinstance(data, dict):
        return None

    side_a = _decode_token_side(data.get("assetAAddress", ""), data.get("tokenAMetadata"))
    side_b = _decode_token_side(data.get("assetBAddress", ""), data.get("tokenBMetadata"))

    if side_b.address == NATIVE_TOKEN_ADDRESS:
        token = side_a
    elif side_a.address == NATIVE_TOKEN_ADDRESS:
        token = side_b
    elif side_a.name or side_a.ticker:
        token = side_a
    else:
        token = side_b

    if not token.name and not token.ticker:
        return None

    extra = data.get("extra") if isinstance(data.get("extra"), dict) else {}
    return PoolMetadata(
        pool_id=pool_id,
        token=token,
        pool_market_cap_usd=_as_float(extra.get("marketCapUsd")),
    )


def decode_address_holdings(public_key: str, data: Any) -> AddressHoldings:
    """Decode an address response; malformed token entries are skipped."""
    if not isinstance(data, dict):
        raise ValueError(f"Unexpected address payload for {public_key[:8]}")

    tokens = []
    for raw in data.get("tokens") or []:
        if not isinstance(raw, dict) or not raw.get("ticker"):
            continue
        tokens.append(TokenHolding(
            ticker=str(raw["ticker"]),
            decimals=_as_int(raw.get("decimals"), DEFAULT_DECIMALS),
            balance_raw=str(raw.get("balance", "0")),
            name=str(raw.get("name") or ""),
            token_address=str(raw.get("tokenAddress") or ""),
        ))

    balance = data.get("balance") if isinstance(data.get("balance"), dict) else {}
    return AddressHoldings(
        public_key=data.get("publicKey") or public_key,
        spark_address=data.get("sparkAddress") or "",
        native_balance_sats=_as_int(balance.get("btcHardBalanceSats"), 0),
        tokens=tokens,
    )


class LuminexClient:
    """
    Balance source and best-effort metadata source.

    Pool metadata and usernames are cached; balances are always fetched
    fresh because reconciliation depends on them.
    """

    def __init__(
        self,
        http: Optional[ResilientClient] = None,
        metadata_ttl: float = 600.0,
        username_ttl: float = 3600.0,
    ):
        self.http = http or ResilientClient(
            "luminex",
            settings.luminex_base_url,
            headers=BROWSER_HEADERS,
        )
        self._metadata_cache: TTLCache[PoolMetadata] = TTLCache(ttl=metadata_ttl, max_size=5000)
        self._username_cache: TTLCache[str] = TTLCache(ttl=username_ttl, max_size=20000)

    async def start(self):
        await self.http.start()

    async def stop(self):
        await self.http.stop()

    async def get_pool_metadata(self, pool_id: str) -> Optional[PoolMetadata]:
        """Token metadata for a pool. Fetch errors propagate."""
        if not pool_id:
            return None

        async def fetch() -> Optional[PoolMetadata]:
            data = await self.http.get_json(f"/spark/pool/{pool_id}")
            metadata = decode_pool_metadata(pool_id, data)
            if metadata is None:
                logger.debug(f"No token metadata in pool response for {pool_id[:12]}")
            return metadata

        return await self._metadata_cache.get_or_fetch(pool_id, fetch)

    async def get_address_holdings(self, public_key: str) -> AddressHoldings:
        """Live holdings of an address. Fetch errors propagate."""
        data = await self.http.get_json(f"/spark/address/{public_key}")
        return decode_address_holdings(public_key, data)

    async def get_username(self, public_key: str) -> Optional[str]:
        """Profile username, or None. Never raises."""
        if not public_key:
            return None

        async def fetch() -> Optional[str]:
            data = await self.http.get_json("/spark-users/profiles", {"pubkeys": public_key})
            for profile in (data or {}).get("data") or []:
                if isinstance(profile, dict) and profile.get("pubkey") == public_key:
                    return profile.get("username") or None
            return None

        try:
            return await self._username_cache.get_or_fetch(public_key, fetch)
        except Exception as e:
            logger.debug(f"Username lookup failed for {public_key[:8]}: {e}")
            return None

    def get_stats(self) -> dict:
        return {
            **self.http.get_stats(),
            "metadata_cache": self._metadata_cache.stats(),
            "username_cache": self._username_cache.stats(),
        }
