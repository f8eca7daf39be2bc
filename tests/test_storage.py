"""
Unit tests for the SQLite asset store.

Tests:
- Insert-then-update on natural key conflicts
- Append-only checkpoints, newest row wins
- Non-conflict errors surface as StorageError
"""

import pytest

from cip60_indexer.cursor import Cursor
from cip60_indexer.errors import StorageError
from cip60_indexer.storage import AssetRecord, AssetStore
from tests.fakes import HASH_A, HASH_B, POLICY


class TestAssetUpsert:
    @pytest.fixture
    def store(self, tmp_path):
        return AssetStore(str(tmp_path / "assets.db"))

    @pytest.mark.asyncio
    async def test_second_upsert_overwrites(self, store):
        await store.open()
        first = AssetRecord(POLICY, "Song01", "2", '{"title": "old"}')
        second = AssetRecord(POLICY, "Song01", "3", '{"title": "new"}')

        assert await store.upsert(first) == "inserted"
        assert await store.upsert(second) == "updated"

        assert await store.count_assets() == 1
        row = await store.get_asset(POLICY, "Song01")
        assert row["metadata_json"] == '{"title": "new"}'
        assert row["metadata_version"] == "3"
        await store.close()

    @pytest.mark.asyncio
    async def test_distinct_keys_are_separate_rows(self, store):
        await store.open()
        await store.upsert(AssetRecord(POLICY, "Song01", "3", "{}"))
        await store.upsert(AssetRecord(POLICY, "Song02", "3", "{}"))
        await store.upsert(AssetRecord("other", "Song01", "3", "{}"))

        assert await store.count_assets() == 3
        assert len(await store.list_assets(POLICY)) == 2
        await store.close()

    @pytest.mark.asyncio
    async def test_other_errors_raise(self, store):
        await store.open()
        store.conn.execute("DROP TABLE assets")

        with pytest.raises(StorageError):
            await store.upsert(AssetRecord(POLICY, "Song01", "3", "{}"))
        await store.close()

    @pytest.mark.asyncio
    async def test_closed_store_raises(self, store):
        await store.open()
        await store.close()

        with pytest.raises(StorageError):
            await store.upsert(AssetRecord(POLICY, "Song01", "3", "{}"))


class TestCheckpoints:
    @pytest.mark.asyncio
    async def test_no_state_on_fresh_database(self, tmp_path):
        store = AssetStore(str(tmp_path / "state.db"))
        await store.open()
        assert await store.load_cursor() is None
        await store.close()

    @pytest.mark.asyncio
    async def test_latest_checkpoint_wins(self, tmp_path):
        store = AssetStore(str(tmp_path / "state.db"))
        await store.open()
        await store.checkpoint(Cursor(100, HASH_A))
        await store.checkpoint(Cursor(200, HASH_B))

        assert await store.load_cursor() == Cursor(200, HASH_B)
        rows = store.conn.execute("SELECT COUNT(*) FROM indexer_state").fetchone()[0]
        assert rows == 2
        await store.close()

    @pytest.mark.asyncio
    async def test_state_survives_reopen(self, tmp_path):
        path = str(tmp_path / "state.db")
        store = AssetStore(path)
        await store.open()
        await store.checkpoint(Cursor(100, HASH_A))
        await store.close()

        reopened = AssetStore(path)
        await reopened.open()
        assert await reopened.load_cursor() == Cursor(100, HASH_A)
        await reopened.close()

    @pytest.mark.asyncio
    async def test_unreachable_database(self, tmp_path):
        store = AssetStore(str(tmp_path / "missing" / "dir" / "state.db"))
        with pytest.raises(StorageError):
            await store.open()
