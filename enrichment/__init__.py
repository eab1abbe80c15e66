"""Enrichment module: balances and token metadata."""

from .luminex import (
    AddressHoldings,
    LuminexClient,
    PoolMetadata,
    TokenHolding,
    TokenInfo,
    decode_address_holdings,
    decode_pool_metadata,
)

__all__ = [
    "AddressHoldings",
    "LuminexClient",
    "PoolMetadata",
    "TokenHolding",
    "TokenInfo",
    "decode_address_holdings",
    "decode_pool_metadata",
]
