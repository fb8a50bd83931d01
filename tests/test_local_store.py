"""
test_local_store.py — Tests for the local store and its storage backends.

Covers:
    • put/get/get_all/delete/clear semantics and metadata stamping
    • Filter, sort, tombstone visibility
    • Sync metadata (lastSync) per collection
    • SQLite persistence across store instances
    • Degradation to memory when the durable backend fails

Run with:
    pytest tests/test_local_store.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from relief.offline.errors import StorageError
from relief.offline.local_store import LocalStore
from relief.offline.storage import MemoryStorage, ResilientStorage, SQLStorage

from conftest import T0, FakeClock


class FailingStorage(MemoryStorage):
    """Durable backend that fails every call."""

    async def init(self) -> None:
        raise StorageError("disk full")

    async def put_records(self, collection, records):
        raise StorageError("disk full")

    async def all_records(self, collection):
        raise StorageError("disk full")


class Online:
    def __init__(self, value: bool = True):
        self.value = value

    def __call__(self) -> bool:
        return self.value


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Record semantics
# ═══════════════════════════════════════════════════════════════════════════

class TestPutAndGet:

    def test_put_stamps_metadata_online(self):
        async def scenario():
            store = LocalStore(clock=FakeClock())
            return await store.put("alerts", {"id": "a1", "title": "Flood"})

        record = asyncio.run(scenario())
        assert record["_metadata"] == {
            "lastModified": T0.isoformat(),
            "isLocalOnly": False,
            "syncState": "confirmed",
        }

    def test_put_offline_is_local_only(self):
        async def scenario():
            store = LocalStore(is_online=Online(False), clock=FakeClock())
            await store.put("reports", {"id": "r1"})
            return await store.get("reports", "r1")

        meta = asyncio.run(scenario())["_metadata"]
        assert meta["isLocalOnly"] is True
        assert meta["syncState"] == "pending"

    def test_explicit_metadata_wins(self):
        async def scenario():
            store = LocalStore()
            return await store.put("reports", {"id": "r1"}, metadata={"syncState": "failed"})

        assert asyncio.run(scenario())["_metadata"]["syncState"] == "failed"

    def test_put_is_idempotent(self):
        async def scenario():
            store = LocalStore(clock=FakeClock())
            await store.put("alerts", {"id": "a1", "title": "Flood"})
            await store.put("alerts", {"id": "a1", "title": "Flood"})
            return await store.get_all("alerts")

        records = asyncio.run(scenario())
        assert len(records) == 1

    def test_put_replaces_existing(self):
        async def scenario():
            store = LocalStore()
            await store.put("alerts", {"id": "a1", "title": "Flood"})
            await store.put("alerts", {"id": "a1", "title": "Flood receding"})
            return await store.get("alerts", "a1")

        assert asyncio.run(scenario())["title"] == "Flood receding"

    def test_get_missing_is_none(self):
        assert asyncio.run(LocalStore().get("alerts", "nope")) is None

    def test_unknown_collection_rejected(self):
        with pytest.raises(ValueError):
            asyncio.run(LocalStore().put("users", {"id": "u1"}))

    def test_record_without_id_rejected(self):
        with pytest.raises(ValueError):
            asyncio.run(LocalStore().put("alerts", {"title": "no id"}))

    def test_returned_records_are_copies(self):
        async def scenario():
            store = LocalStore()
            await store.put("alerts", {"id": "a1", "tags": ["rain"]})
            snapshot = await store.get("alerts", "a1")
            snapshot["tags"].append("mutated")
            return await store.get("alerts", "a1")

        assert asyncio.run(scenario())["tags"] == ["rain"]

    def test_delete_and_clear(self):
        async def scenario():
            store = LocalStore()
            await store.put_many("resources", [{"id": "r1"}, {"id": "r2"}, {"id": "r3"}])
            deleted = await store.delete("resources", "r1")
            missing = await store.delete("resources", "r1")
            cleared = await store.clear("resources")
            return deleted, missing, cleared, await store.get_all("resources")

        assert asyncio.run(scenario()) == (True, False, 2, [])


class TestGetAll:

    def test_filter_and_sort(self):
        async def scenario():
            store = LocalStore()
            await store.put_many("reports", [
                {"id": "r1", "severity": 2},
                {"id": "r2", "severity": 5},
                {"id": "r3", "severity": 4},
            ])
            return await store.get_all(
                "reports",
                filter=lambda r: r["severity"] > 2,
                sort=lambda r: r["severity"],
                reverse=True,
            )

        assert [r["id"] for r in asyncio.run(scenario())] == ["r2", "r3"]

    def test_tombstones_hidden_by_default(self):
        async def scenario():
            store = LocalStore()
            await store.put("reports", {"id": "r1"})
            await store.put("reports", {"id": "r2"}, metadata={"deleted": True})
            visible = await store.get_all("reports")
            everything = await store.get_all("reports", include_deleted=True)
            return len(visible), len(everything)

        assert asyncio.run(scenario()) == (1, 2)

    def test_collections_are_partitioned(self):
        async def scenario():
            store = LocalStore()
            await store.put("alerts", {"id": "1"})
            await store.put("reports", {"id": "1"})
            return await store.get_all("alerts"), await store.get_all("resources")

        alerts, resources = asyncio.run(scenario())
        assert len(alerts) == 1 and resources == []


class TestSyncMetadata:

    def test_last_sync_roundtrip_per_collection(self):
        async def scenario():
            store = LocalStore()
            before = await store.get_last_sync("alerts")
            await store.set_last_sync("alerts", T0.isoformat())
            return before, await store.get_last_sync("alerts"), await store.get_last_sync("reports")

        assert asyncio.run(scenario()) == (None, T0.isoformat(), None)


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Durability and degradation
# ═══════════════════════════════════════════════════════════════════════════

class TestSQLiteBackend:

    def test_records_survive_restart(self, db_url):
        async def write():
            storage = SQLStorage(db_url)
            await storage.init()
            store = LocalStore(storage)
            await store.put("resources", {"id": "r1", "capacity": {"total": 10, "available": 3}})
            await store.set_last_sync("resources", T0.isoformat())
            await storage.close()

        async def read():
            storage = SQLStorage(db_url)
            await storage.init()
            store = LocalStore(storage)
            record = await store.get("resources", "r1")
            last_sync = await store.get_last_sync("resources")
            await storage.close()
            return record, last_sync

        asyncio.run(write())
        record, last_sync = asyncio.run(read())
        assert record["capacity"] == {"total": 10, "available": 3}
        assert last_sync == T0.isoformat()


class TestDegradation:

    def test_failed_init_degrades_to_memory(self):
        async def scenario():
            storage = ResilientStorage(FailingStorage())
            await storage.init()
            store = LocalStore(storage)
            await store.put("alerts", {"id": "a1"})
            return store.degraded, await store.get("alerts", "a1")

        degraded, record = asyncio.run(scenario())
        assert degraded is True
        assert record["id"] == "a1"

    def test_write_failure_degrades_without_raising(self):
        class WriteFailing(MemoryStorage):
            async def put_records(self, collection, records):
                raise StorageError("quota exceeded")

        async def scenario():
            store = LocalStore(WriteFailing())
            assert not store.degraded
            await store.put("reports", {"id": "r1"})
            return store.degraded, store.storage.degraded_reason, await store.get_all("reports")

        degraded, reason, records = asyncio.run(scenario())
        assert degraded is True
        assert "quota exceeded" in reason
        assert [r["id"] for r in records] == ["r1"]

    def test_unreachable_database_path_degrades(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nested' / 'local.db'}"

        async def scenario():
            storage = ResilientStorage(SQLStorage(url))
            await storage.init()
            return storage.degraded

        assert asyncio.run(scenario()) is True
