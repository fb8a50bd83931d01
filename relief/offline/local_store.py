"""
Local store — durable client-side mirror of alerts, reports and resources.

Every record written through ``put`` is stamped with ``_metadata``:
``lastModified`` (now), ``isLocalOnly`` (true while offline) and a
``syncState`` tag. Reads never mutate stored state.

Usage:
    store = LocalStore(ResilientStorage(SQLStorage(url)), is_online=monitor.is_online)
    await store.put("reports", {"id": "R1", "title": "Bridge down"})
    pending = await store.get_all(
        "reports", filter=lambda r: r["_metadata"]["syncState"] == "pending",
    )
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from relief.offline.models import (
    METADATA_KEY,
    Collection,
    SyncMetadata,
    SyncState,
    as_collection,
    to_iso,
    utc_now,
)
from relief.offline.storage import MemoryStorage, ResilientStorage, Storage

logger = logging.getLogger(__name__)

RecordFilter = Callable[[Dict[str, Any]], bool]
SortKey = Callable[[Dict[str, Any]], Any]


def _always_online() -> bool:
    return True


class LocalStore:
    """
    Keyed record storage partitioned by collection.

    Parameters
    ----------
    storage : Storage, optional
        Backend; wrapped in ``ResilientStorage`` if it is not one already.
        Defaults to memory-only.
    is_online : callable, optional
        Connectivity predicate used for ``isLocalOnly``.
    clock : callable, optional
        Returns the current UTC datetime.
    """

    def __init__(
        self,
        storage: Optional[Storage] = None,
        is_online: Callable[[], bool] = _always_online,
        clock: Callable[[], Any] = utc_now,
    ):
        storage = storage or MemoryStorage()
        if not isinstance(storage, ResilientStorage):
            storage = ResilientStorage(storage)
        self.storage = storage
        self._is_online = is_online
        self._clock = clock

    @property
    def degraded(self) -> bool:
        """True once the durable backend failed and the store runs in memory."""
        return self.storage.degraded

    # ── Writes ──

    def _stamp(self, record: Dict[str, Any], metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if record.get("id") in (None, ""):
            raise ValueError("Record must have an 'id'")
        local_only = not self._is_online()
        meta = {
            **(record.get(METADATA_KEY) or {}),
            "lastModified": to_iso(self._clock()),
            "isLocalOnly": local_only,
            "syncState": SyncState.PENDING.value if local_only else SyncState.CONFIRMED.value,
        }
        if metadata:
            meta.update(metadata)
        return {**record, METADATA_KEY: meta}

    async def put(
        self,
        collection: str,
        record: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Upsert one record; returns the stored copy with metadata."""
        return (await self.put_many(collection, [record], metadata))[0]

    async def put_many(
        self,
        collection: str,
        records: Iterable[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Upsert several records in one storage round-trip."""
        name = as_collection(collection).value
        stamped = [self._stamp(r, metadata) for r in records]
        if stamped:
            await self.storage.put_records(name, stamped)
            logger.debug(
                "Stored %d %s record(s)", len(stamped), name,
                extra={"collection": name},
            )
        return stamped

    async def delete(self, collection: str, record_id: str) -> bool:
        return await self.storage.delete_record(as_collection(collection).value, record_id)

    async def clear(self, collection: str) -> int:
        name = as_collection(collection).value
        removed = await self.storage.clear_records(name)
        logger.info("Cleared %d %s record(s)", removed, name, extra={"collection": name})
        return removed

    async def clear_all(self) -> None:
        for collection in Collection:
            await self.clear(collection)
        await self.storage.clear_metadata()

    # ── Reads ──

    async def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        return await self.storage.get_record(as_collection(collection).value, record_id)

    async def get_all(
        self,
        collection: str,
        filter: Optional[RecordFilter] = None,
        sort: Optional[SortKey] = None,
        reverse: bool = False,
        include_deleted: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Snapshot of a collection.

        ``filter`` is a predicate over the record (metadata included);
        ``sort`` is a key function. Tombstoned records are hidden unless
        ``include_deleted`` is set.
        """
        records = await self.storage.all_records(as_collection(collection).value)
        if not include_deleted:
            records = [r for r in records if not (r.get(METADATA_KEY) or {}).get("deleted")]
        if filter is not None:
            records = [r for r in records if filter(r)]
        if sort is not None:
            records.sort(key=sort, reverse=reverse)
        return records

    # ── Sync metadata ──

    async def get_last_sync(self, collection: str) -> Optional[str]:
        meta = await self.storage.get_metadata(as_collection(collection).value)
        return meta.last_sync if meta else None

    async def set_last_sync(self, collection: str, timestamp: str) -> None:
        name = as_collection(collection).value
        await self.storage.set_metadata(SyncMetadata(key=name, last_sync=timestamp))
