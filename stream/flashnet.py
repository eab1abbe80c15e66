"""Flashnet AMM swap feed client."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from config.settings import settings
from core.auth import CredentialProvider
from core.http import ResilientClient
from models.swaps import SwapRecord, SwapSide, SwapSnapshot

logger = logging.getLogger(__name__)


@dataclass
class SwapFilters:
    """Optional filters for the recent swaps listing."""
    offset: Optional[int] = None
    pool_type: Optional[str] = None
    asset_address: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        return {
            "offset": self.offset,
            "poolType": self.pool_type,
            "assetAddress": self.asset_address,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }


def decode_swaps(items: Any) -> List[SwapRecord]:
    """Decode a list of raw swaps, skipping malformed items."""
    records = []
    for raw in items or []:
        if not isinstance(raw, dict) or not raw.get("id"):
            logger.debug(f"Skipping swap without id: {raw!r:.120}")
            continue
        try:
            records.append(SwapRecord.from_dict(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed swap {raw.get('id')}: {e}")
    return records


class FlashnetClient:
    """
    Swap feed source.

    All calls go through a ResilientClient; the bearer token is attached
    when the credential provider has one.
    """

    def __init__(
        self,
        http: Optional[ResilientClient] = None,
        credentials: Optional[CredentialProvider] = None,
    ):
        self.credentials = credentials or CredentialProvider()
        self.http = http or ResilientClient(
            "flashnet",
            settings.flashnet_base_url,
            credentials=self.credentials,
        )

    async def start(self):
        await self.http.start()

    async def stop(self):
        await self.http.stop()

    async def list_recent_swaps(
        self,
        limit: int,
        filters: Optional[SwapFilters] = None,
    ) -> SwapSnapshot:
        """Most recent swaps, newest first, with the feed's total count."""
        params: Dict[str, Any] = {"limit": limit}
        if filters:
            params.update(filters.to_params())

        data = await self.http.get_json("/swaps", params, authenticated=True)
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected /swaps payload type {type(data).__name__}")

        records = decode_swaps(data.get("swaps"))
        total = data.get("totalCount")
        return SwapSnapshot(
            records=records,
            total_count=int(total) if isinstance(total, (int, float)) else len(records),
        )

    async def list_swaps_for_address(
        self,
        address: str,
        pool_id: Optional[str] = None,
        sort: str = "timestampAsc",
        limit: int = 1000,
    ) -> List[SwapRecord]:
        """Swaps made by one address, optionally restricted to one pool."""
        data = await self.http.get_json(
            f"/swaps/user/{address}",
            {"poolLpPubkey": pool_id, "sort": sort, "limit": limit},
            authenticated=True,
        )
        if not isinstance(data, dict):
            return []
        return decode_swaps(data.get("swaps"))

    async def first_buy_time(self, address: str, pool_id: str) -> Optional[datetime]:
        """
        Timestamp of the address's earliest buy in `pool_id`.

        Best-effort: any failure yields None.
        """
        if not address or not pool_id:
            return None
        try:
            swaps = await self.list_swaps_for_address(address, pool_id)
        except Exception as e:
            logger.debug(f"First buy lookup failed for {address[:8]}: {e}")
            return None

        earliest: Optional[datetime] = None
        for swap in swaps:
            if swap.pool_id != pool_id or swap.side != SwapSide.BUY or not swap.timestamp:
                continue
            try:
                when = datetime.fromisoformat(swap.timestamp.replace("Z", "+00:00"))
            except ValueError:
                continue
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            if earliest is None or when < earliest:
                earliest = when
        return earliest

    async def first_buy_display(self, address: str, pool_id: str) -> Optional[str]:
        """First buy formatted as `YYYY-MM-DD HH:MM` in the display timezone."""
        when = await self.first_buy_time(address, pool_id)
        if when is None:
            return None
        return when.astimezone(ZoneInfo(settings.display_timezone)).strftime("%Y-%m-%d %H:%M")

    def get_stats(self) -> dict:
        return {
            "authenticated": self.credentials.is_valid(),
            **self.http.get_stats(),
        }
