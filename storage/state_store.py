"""
Persisted state behind a key-value interface.

Every persisted surface (swap snapshot, holder sets, ledgers, daily flows,
token lists) is one JSON-compatible value under one key. Writers take the
key's lock for the whole load-modify-save cycle.
"""

import asyncio
import json
import logging
import os
import re
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import aiofiles.os
import msgpack

from config.settings import settings
from .redis_client import RedisClient

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9_\-]+(:[A-Za-z0-9_\-]+)*$")


class StateStoreError(Exception):
    """Stored state exists but cannot be read."""


class StateStore:
    """Base class: per-key locks and the load/save contract."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._write_errors = 0

    def lock(self, key: str) -> asyncio.Lock:
        """Lock serializing load-modify-save cycles for `key`."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @staticmethod
    def validate_key(key: str) -> str:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid state key: {key!r}")
        return key

    async def start(self):
        pass

    async def stop(self):
        pass

    async def load(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    async def save(self, key: str, value: Any) -> bool:
        """Persist `value`. Returns False (and logs) when the write failed."""
        raise NotImplementedError

    async def delete(self, key: str):
        raise NotImplementedError

    def get_stats(self) -> dict:
        return {
            "backend": type(self).__name__,
            "keys_locked": len(self._locks),
            "write_errors": self._write_errors,
        }


class FileStateStore(StateStore):
    """
    JSON files under `data_dir`, one per key (`holders:ASTY` ->
    `holders/ASTY.json`).

    Writes go to a temp file in the same directory followed by `os.replace`,
    so a crash mid-write leaves the previous file intact.
    """

    def __init__(self, data_dir: Optional[str] = None):
        super().__init__()
        self.data_dir = Path(data_dir or settings.data_dir)

    async def start(self):
        await aiofiles.os.makedirs(self.data_dir, exist_ok=True)
        logger.info(f"FileStateStore started, data_dir={self.data_dir}")

    def path_for(self, key: str) -> Path:
        parts = self.validate_key(key).split(":")
        return self.data_dir.joinpath(*parts[:-1], f"{parts[-1]}.json")

    async def load(self, key: str, default: Any = None) -> Any:
        path = self.path_for(key)
        if not path.exists():
            return default
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except OSError as e:
            raise StateStoreError(f"Failed to read {path}: {e}") from e
        if not raw.strip():
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StateStoreError(f"Corrupt state file {path}: {e}") from e

    async def save(self, key: str, value: Any) -> bool:
        path = self.path_for(key)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            payload = json.dumps(value, indent=2, ensure_ascii=False)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
                await f.flush()
            await aiofiles.os.replace(tmp_path, path)
            return True
        except (OSError, TypeError, ValueError) as e:
            self._write_errors += 1
            logger.error(f"Failed to persist {key} to {path}: {e}")
            if tmp_path.exists():
                try:
                    os.remove(tmp_path)
                except OSError:
                    logger.debug(f"Could not remove temp file {tmp_path}")
            return False

    async def delete(self, key: str):
        path = self.path_for(key)
        if path.exists():
            await aiofiles.os.remove(path)


class RedisStateStore(StateStore):
    """Values msgpack-encoded under prefixed Redis keys."""

    def __init__(self, client: Optional[RedisClient] = None):
        super().__init__()
        self.client = client or RedisClient()

    async def start(self):
        await self.client.connect()
        logger.info("RedisStateStore started")

    async def stop(self):
        await self.client.close()

    async def load(self, key: str, default: Any = None) -> Any:
        raw = await self.client.get(self.validate_key(key))
        if raw is None:
            return default
        try:
            return msgpack.unpackb(raw, raw=False)
        except (msgpack.ExtraData, msgpack.FormatError, msgpack.StackError, ValueError) as e:
            raise StateStoreError(f"Corrupt redis value for {key}: {e}") from e

    async def save(self, key: str, value: Any) -> bool:
        try:
            await self.client.set(self.validate_key(key), msgpack.packb(value, use_bin_type=True))
            return True
        except Exception as e:
            self._write_errors += 1
            logger.error(f"Failed to persist {key} to redis: {e}")
            return False

    async def delete(self, key: str):
        await self.client.delete(self.validate_key(key))


def create_state_store(backend: Optional[str] = None) -> StateStore:
    """Build the configured backend."""
    backend = (backend or settings.state_backend).lower()
    if backend == "redis":
        return RedisStateStore()
    if backend == "file":
        return FileStateStore()
    raise ValueError(f"Unknown state backend: {backend}")
