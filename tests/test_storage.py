"""Tests for the state stores, token lists and ticker registry."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import msgpack
import pytest

from storage.state_store import (
    FileStateStore,
    RedisStateStore,
    StateStoreError,
    create_state_store,
)
from storage.token_lists import ListName, TickerRegistry, TokenListError, TokenListStore

POOL_A = "02" + "aa" * 32
POOL_B = "03" + "bb" * 32


class TestFileStateStore:
    """Tests for FileStateStore."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path):
        store = FileStateStore(str(tmp_path))
        await store.start()

        assert await store.save("holders:ASTY", {"pk1": "1.00000000"})
        assert await store.load("holders:ASTY") == {"pk1": "1.00000000"}
        assert (tmp_path / "holders" / "ASTY.json").exists()

    @pytest.mark.asyncio
    async def test_missing_key_returns_default(self, tmp_path):
        store = FileStateStore(str(tmp_path))
        assert await store.load("flow:ASTY", {"dailyFlows": {}}) == {"dailyFlows": {}}

    @pytest.mark.asyncio
    async def test_write_leaves_no_temp_files(self, tmp_path):
        """Writes go through a temp file that is renamed into place."""
        store = FileStateStore(str(tmp_path))
        await store.save("tokens:allow", {"tokens": [POOL_A]})
        await store.save("tokens:allow", {"tokens": [POOL_A, POOL_B]})

        files = sorted(p.name for p in (tmp_path / "tokens").iterdir())
        assert files == ["allow.json"]
        assert json.loads((tmp_path / "tokens" / "allow.json").read_text())["tokens"] == [POOL_A, POOL_B]

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_file(self, tmp_path):
        """A failed replace leaves the old content and reports False."""
        store = FileStateStore(str(tmp_path))
        await store.save("ledger:ASTY", {"v": 1})

        with patch("storage.state_store.aiofiles.os.replace", AsyncMock(side_effect=OSError("disk full"))):
            assert await store.save("ledger:ASTY", {"v": 2}) is False

        assert await store.load("ledger:ASTY") == {"v": 1}
        assert store.get_stats()["write_errors"] == 1
        assert [p.name for p in (tmp_path / "ledger").iterdir()] == ["ASTY.json"]

    @pytest.mark.asyncio
    async def test_unserializable_value_is_not_written(self, tmp_path):
        store = FileStateStore(str(tmp_path))
        assert await store.save("ledger:ASTY", {"bad": object()}) is False
        assert await store.load("ledger:ASTY") is None

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, tmp_path):
        store = FileStateStore(str(tmp_path))
        (tmp_path / "flow").mkdir()
        (tmp_path / "flow" / "ASTY.json").write_text("{")

        with pytest.raises(StateStoreError):
            await store.load("flow:ASTY")

    def test_rejects_path_like_keys(self, tmp_path):
        store = FileStateStore(str(tmp_path))
        with pytest.raises(ValueError):
            store.path_for("../etc/passwd")
        with pytest.raises(ValueError):
            store.path_for("holders:")

    @pytest.mark.asyncio
    async def test_lock_serializes_read_modify_write(self, tmp_path):
        """Concurrent increments under the key lock do not lose updates."""
        store = FileStateStore(str(tmp_path))

        async def increment():
            async with store.lock("counter:test"):
                value = await store.load("counter:test", {"n": 0})
                await asyncio.sleep(0)
                value["n"] += 1
                await store.save("counter:test", value)

        await asyncio.gather(*[increment() for _ in range(10)])
        assert (await store.load("counter:test"))["n"] == 10

    def test_create_state_store(self):
        assert isinstance(create_state_store("file"), FileStateStore)
        assert isinstance(create_state_store("redis"), RedisStateStore)
        with pytest.raises(ValueError):
            create_state_store("sqlite")


class TestRedisStateStore:
    """Tests for RedisStateStore with a mocked client."""

    @pytest.mark.asyncio
    async def test_values_are_msgpack_encoded(self):
        client = MagicMock()
        client.set = AsyncMock()
        client.get = AsyncMock(return_value=msgpack.packb({"tokens": [POOL_A]}, use_bin_type=True))
        store = RedisStateStore(client)

        assert await store.save("tokens:allow", {"tokens": [POOL_A]})
        key, raw = client.set.await_args.args
        assert key == "tokens:allow"
        assert msgpack.unpackb(raw, raw=False) == {"tokens": [POOL_A]}

        assert await store.load("tokens:allow") == {"tokens": [POOL_A]}

    @pytest.mark.asyncio
    async def test_missing_and_failed_write(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=None)
        client.set = AsyncMock(side_effect=ConnectionError("gone"))
        store = RedisStateStore(client)

        assert await store.load("tokens:block", {"tokens": []}) == {"tokens": []}
        assert await store.save("tokens:block", {"tokens": []}) is False


class TestTokenListStore:
    """Tests for allow/block list semantics."""

    @pytest.mark.asyncio
    async def test_add_is_idempotent(self, tmp_path):
        lists = TokenListStore(FileStateStore(str(tmp_path)))

        assert await lists.add(ListName.ALLOW, POOL_A) is True
        assert await lists.add(ListName.ALLOW, f"  {POOL_A} ") is False
        assert await lists.members(ListName.ALLOW) == [POOL_A]

    @pytest.mark.asyncio
    async def test_remove_missing_raises(self, tmp_path):
        lists = TokenListStore(FileStateStore(str(tmp_path)))
        with pytest.raises(TokenListError):
            await lists.remove(ListName.BLOCK, POOL_A)

    @pytest.mark.asyncio
    async def test_lists_are_independent_and_persisted(self, tmp_path):
        lists = TokenListStore(FileStateStore(str(tmp_path)))
        await lists.add(ListName.BLOCK, POOL_B)

        assert await lists.is_blocked(POOL_B)
        assert not await lists.is_allowed(POOL_B)

        reloaded = TokenListStore(FileStateStore(str(tmp_path)))
        assert await reloaded.members(ListName.BLOCK) == [POOL_B]

        await reloaded.remove(ListName.BLOCK, POOL_B)
        assert not await reloaded.is_blocked(POOL_B)

    @pytest.mark.asyncio
    async def test_empty_pool_rejected(self, tmp_path):
        lists = TokenListStore(FileStateStore(str(tmp_path)))
        with pytest.raises(TokenListError):
            await lists.add(ListName.ALLOW, "   ")


class TestTickerRegistry:
    """Tests for the pool -> ticker registry."""

    @pytest.mark.asyncio
    async def test_remember_and_lookup(self, tmp_path):
        registry = TickerRegistry(FileStateStore(str(tmp_path)))
        await registry.remember(POOL_A, "asty", "Asty Token")

        assert await registry.lookup(POOL_A) == ("ASTY", "Asty Token")
        assert await registry.find_pool("Asty") == POOL_A
        assert await registry.find_pool("NOPE") is None

    @pytest.mark.asyncio
    async def test_resolve_accepts_ticker_or_pool(self, tmp_path):
        registry = TickerRegistry(FileStateStore(str(tmp_path)))
        await registry.remember(POOL_A, "ASTY", "Asty")

        assert await registry.resolve("ASTY") == POOL_A
        assert await registry.resolve(POOL_A) == POOL_A
        # Unregistered but well-formed pool ids pass through
        assert await registry.resolve(POOL_B) == POOL_B
        assert await registry.resolve("UNKNOWN") is None

    @pytest.mark.asyncio
    async def test_remember_persists_only_on_change(self, tmp_path):
        store = FileStateStore(str(tmp_path))
        registry = TickerRegistry(store)
        store.save = AsyncMock(wraps=store.save)

        await registry.remember(POOL_A, "ASTY", "Asty")
        await registry.remember(POOL_A, "ASTY", "Asty")

        assert store.save.await_count == 1
