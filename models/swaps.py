"""Swap feed records."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# BTC is represented on Spark as a fixed 33-byte "02..02" asset address
NATIVE_TOKEN_ADDRESS = "02" * 33
SATS_PER_BTC = 100_000_000


class SwapSide(str, Enum):
    """Swap direction relative to the native asset."""
    BUY = "buy"
    SELL = "sell"
    SWAP = "swap"


@dataclass(frozen=True)
class SwapRecord:
    """A single swap as reported by the feed. Never mutated after decode."""
    id: str
    pool_id: str
    swapper: str
    asset_in: str
    asset_out: str
    amount_in: str
    amount_out: str
    price: str = ""
    fee_paid: str = ""
    pool_asset_a: str = ""
    pool_asset_b: str = ""
    pool_type: str = ""
    created_at: str = ""
    timestamp: str = ""
    inbound_transfer_id: str = ""
    outbound_transfer_id: str = ""

    @property
    def side(self) -> SwapSide:
        native_in = self.asset_in == NATIVE_TOKEN_ADDRESS
        native_out = self.asset_out == NATIVE_TOKEN_ADDRESS
        if native_in and not native_out:
            return SwapSide.BUY
        if native_out and not native_in:
            return SwapSide.SELL
        return SwapSide.SWAP

    @property
    def value_btc(self) -> float:
        """BTC notional of the swap, 0 for token-to-token swaps."""
        side = self.side
        if side == SwapSide.BUY:
            raw = self.amount_in
        elif side == SwapSide.SELL:
            raw = self.amount_out
        else:
            return 0.0
        try:
            return int(raw) / SATS_PER_BTC
        except (TypeError, ValueError):
            logger.debug(f"Unparsable native amount {raw!r} in swap {self.id}")
            return 0.0

    @property
    def token_address(self) -> str:
        """Address of the non-native leg."""
        if self.asset_in != NATIVE_TOKEN_ADDRESS:
            return self.asset_in
        return self.asset_out

    @property
    def token_amount_raw(self) -> str:
        """Minimal-unit amount of the non-native leg."""
        if self.side == SwapSide.SELL:
            return self.amount_in
        return self.amount_out

    def to_dict(self) -> dict:
        """Convert to the feed's wire shape."""
        return {
            "id": self.id,
            "poolLpPublicKey": self.pool_id,
            "swapperPublicKey": self.swapper,
            "assetInAddress": self.asset_in,
            "assetOutAddress": self.asset_out,
            "amountIn": self.amount_in,
            "amountOut": self.amount_out,
            "price": self.price,
            "feePaid": self.fee_paid,
            "poolAssetAAddress": self.pool_asset_a,
            "poolAssetBAddress": self.pool_asset_b,
            "poolType": self.pool_type,
            "createdAt": self.created_at,
            "timestamp": self.timestamp,
            "inboundTransferId": self.inbound_transfer_id,
            "outboundTransferId": self.outbound_transfer_id,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SwapRecord":
        """Create from the feed's wire shape."""
        return cls(
            id=str(d["id"]),
            pool_id=d.get("poolLpPublicKey", ""),
            swapper=d.get("swapperPublicKey", ""),
            asset_in=d.get("assetInAddress", ""),
            asset_out=d.get("assetOutAddress", ""),
            amount_in=str(d.get("amountIn", "0")),
            amount_out=str(d.get("amountOut", "0")),
            price=str(d.get("price", "")),
            fee_paid=str(d.get("feePaid", "")),
            pool_asset_a=d.get("poolAssetAAddress", ""),
            pool_asset_b=d.get("poolAssetBAddress", ""),
            pool_type=d.get("poolType", ""),
            created_at=d.get("createdAt", ""),
            timestamp=d.get("timestamp", ""),
            inbound_transfer_id=d.get("inboundTransferId", ""),
            outbound_transfer_id=d.get("outboundTransferId", ""),
        )


@dataclass
class SwapSnapshot:
    """
    Most recent bounded swap window.

    Only used as the dedup baseline for the next poll; it is not history.
    """
    records: List[SwapRecord] = field(default_factory=list)
    total_count: int = 0

    @property
    def ids(self) -> set:
        return {r.id for r in self.records}

    def to_dict(self) -> dict:
        return {
            "swaps": [r.to_dict() for r in self.records],
            "totalCount": self.total_count,
        }

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> Optional["SwapSnapshot"]:
        if not d:
            return None
        records = []
        for raw in d.get("swaps", []):
            try:
                records.append(SwapRecord.from_dict(raw))
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed swap in snapshot: {e}")
        return cls(records=records, total_count=d.get("totalCount", len(records)))
