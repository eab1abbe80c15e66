"""Storage module for persisted state and token lists."""

from .redis_client import RedisClient
from .state_store import (
    FileStateStore,
    RedisStateStore,
    StateStore,
    StateStoreError,
    create_state_store,
)
from .token_lists import ListName, TickerRegistry, TokenListError, TokenListStore

__all__ = [
    "RedisClient",
    "FileStateStore",
    "RedisStateStore",
    "StateStore",
    "StateStoreError",
    "create_state_store",
    "ListName",
    "TickerRegistry",
    "TokenListError",
    "TokenListStore",
]
