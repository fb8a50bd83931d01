"""
Storage backends for the local store and action queue.

    SQLStorage        async SQLAlchemy over sqlite+aiosqlite (durable)
    MemoryStorage     plain dicts (session only)
    ResilientStorage  wraps a primary backend; on the first StorageError it
                      degrades to a MemoryStorage for the rest of the session

Every backend stores and returns deep copies, so callers can never mutate
stored state through a returned object.
"""

from __future__ import annotations

import copy
import itertools
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from relief.core.database import (
    OfflineActionRow,
    RecordRow,
    SyncMetadataRow,
    close_local_db,
    create_local_engine,
    create_session_factory,
    init_local_db,
)
from relief.offline.errors import StorageError
from relief.offline.models import (
    ActionStatus,
    ActionType,
    METADATA_KEY,
    QueuedAction,
    SyncMetadata,
)

logger = logging.getLogger(__name__)


def _last_modified(record: Dict[str, Any]) -> str:
    return (record.get(METADATA_KEY) or {}).get("lastModified", "")


# Matches the width of offline_actions.last_error
MAX_ERROR_LENGTH = 500


def _clip_error(message: Optional[str]) -> Optional[str]:
    return message[:MAX_ERROR_LENGTH] if message else None


class Storage(ABC):
    """Persistence contract shared by every backend."""

    async def init(self) -> None:
        """Prepare the backend (create tables, open connections)."""

    async def close(self) -> None:
        """Release backend resources."""

    # ── Records ──
    @abstractmethod
    async def put_records(self, collection: str, records: List[Dict[str, Any]]) -> None: ...

    @abstractmethod
    async def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    async def all_records(self, collection: str) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def delete_record(self, collection: str, record_id: str) -> bool: ...

    @abstractmethod
    async def clear_records(self, collection: str) -> int: ...

    # ── Offline actions ──
    @abstractmethod
    async def add_action(self, action: QueuedAction) -> QueuedAction: ...

    @abstractmethod
    async def list_actions(self) -> List[QueuedAction]: ...

    @abstractmethod
    async def update_action(self, action: QueuedAction) -> None: ...

    @abstractmethod
    async def delete_action(self, action_id: int) -> None: ...

    @abstractmethod
    async def clear_actions(self) -> int: ...

    # ── Sync metadata ──
    @abstractmethod
    async def get_metadata(self, key: str) -> Optional[SyncMetadata]: ...

    @abstractmethod
    async def set_metadata(self, meta: SyncMetadata) -> None: ...

    @abstractmethod
    async def clear_metadata(self) -> None: ...


# ═══════════════════════════════════════════════════════════════════════════
# In-memory backend
# ═══════════════════════════════════════════════════════════════════════════

class MemoryStorage(Storage):
    """Session-only storage; also the degraded-mode fallback."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._actions: Dict[int, QueuedAction] = {}
        self._metadata: Dict[str, SyncMetadata] = {}
        self._ids = itertools.count(1)

    async def put_records(self, collection: str, records: List[Dict[str, Any]]) -> None:
        bucket = self._records.setdefault(collection, {})
        for record in records:
            bucket[str(record["id"])] = copy.deepcopy(record)

    async def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._records.get(collection, {}).get(str(record_id))
        return copy.deepcopy(record) if record is not None else None

    async def all_records(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._records.get(collection, {}).values()]

    async def delete_record(self, collection: str, record_id: str) -> bool:
        return self._records.get(collection, {}).pop(str(record_id), None) is not None

    async def clear_records(self, collection: str) -> int:
        removed = len(self._records.get(collection, {}))
        self._records[collection] = {}
        return removed

    async def add_action(self, action: QueuedAction) -> QueuedAction:
        stored = copy.deepcopy(action)
        stored.id = next(self._ids)
        stored.last_error = _clip_error(stored.last_error)
        self._actions[stored.id] = stored
        return copy.deepcopy(stored)

    async def list_actions(self) -> List[QueuedAction]:
        return [copy.deepcopy(self._actions[k]) for k in sorted(self._actions)]

    async def update_action(self, action: QueuedAction) -> None:
        if action.id in self._actions:
            stored = copy.deepcopy(action)
            stored.last_error = _clip_error(stored.last_error)
            self._actions[action.id] = stored

    async def delete_action(self, action_id: int) -> None:
        self._actions.pop(action_id, None)

    async def clear_actions(self) -> int:
        removed = len(self._actions)
        self._actions.clear()
        return removed

    async def get_metadata(self, key: str) -> Optional[SyncMetadata]:
        meta = self._metadata.get(key)
        return copy.copy(meta) if meta is not None else None

    async def set_metadata(self, meta: SyncMetadata) -> None:
        self._metadata[meta.key] = copy.copy(meta)

    async def clear_metadata(self) -> None:
        self._metadata.clear()


# ═══════════════════════════════════════════════════════════════════════════
# SQL backend
# ═══════════════════════════════════════════════════════════════════════════

class SQLStorage(Storage):
    """
    Durable storage on async SQLAlchemy.

    Every driver/database failure is re-raised as ``StorageError`` so the
    resilient wrapper can degrade without knowing SQLAlchemy.
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        self._engine = engine or create_local_engine(url)
        self._sessions = create_session_factory(self._engine)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as e:
            raise StorageError(f"Local database error: {e}") from e

    async def init(self) -> None:
        try:
            await init_local_db(self._engine)
        except (SQLAlchemyError, OSError) as e:
            raise StorageError(f"Local database unavailable: {e}") from e

    async def close(self) -> None:
        await close_local_db(self._engine)

    # ── Records ──

    async def put_records(self, collection: str, records: List[Dict[str, Any]]) -> None:
        async with self._session() as session:
            for record in records:
                await session.merge(RecordRow(
                    collection=collection,
                    id=str(record["id"]),
                    data=copy.deepcopy(record),
                    last_modified=_last_modified(record),
                ))

    async def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        async with self._session() as session:
            row = await session.get(RecordRow, (collection, str(record_id)))
            return copy.deepcopy(row.data) if row is not None else None

    async def all_records(self, collection: str) -> List[Dict[str, Any]]:
        async with self._session() as session:
            result = await session.execute(
                select(RecordRow).where(RecordRow.collection == collection)
            )
            return [copy.deepcopy(row.data) for row in result.scalars()]

    async def delete_record(self, collection: str, record_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(RecordRow).where(
                    RecordRow.collection == collection,
                    RecordRow.id == str(record_id),
                )
            )
            return result.rowcount > 0

    async def clear_records(self, collection: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                delete(RecordRow).where(RecordRow.collection == collection)
            )
            return result.rowcount

    # ── Offline actions ──

    @staticmethod
    def _to_action(row: OfflineActionRow) -> QueuedAction:
        return QueuedAction(
            action=ActionType(row.action),
            data=copy.deepcopy(row.data),
            record_id=row.record_id,
            id=row.id,
            timestamp=row.timestamp,
            retry_count=row.retry_count,
            status=ActionStatus(row.status),
            last_error=row.last_error,
            idempotency_key=row.idempotency_key,
        )

    async def add_action(self, action: QueuedAction) -> QueuedAction:
        async with self._session() as session:
            row = OfflineActionRow(
                action=action.action.value,
                record_id=action.record_id,
                data=copy.deepcopy(action.data),
                timestamp=action.timestamp,
                retry_count=action.retry_count,
                status=action.status.value,
                last_error=_clip_error(action.last_error),
                idempotency_key=action.idempotency_key,
            )
            session.add(row)
            await session.flush()
            return self._to_action(row)

    async def list_actions(self) -> List[QueuedAction]:
        async with self._session() as session:
            result = await session.execute(
                select(OfflineActionRow).order_by(OfflineActionRow.id)
            )
            return [self._to_action(row) for row in result.scalars()]

    async def update_action(self, action: QueuedAction) -> None:
        async with self._session() as session:
            row = await session.get(OfflineActionRow, action.id)
            if row is None:
                return
            row.retry_count = action.retry_count
            row.status = action.status.value
            row.last_error = _clip_error(action.last_error)

    async def delete_action(self, action_id: int) -> None:
        async with self._session() as session:
            await session.execute(
                delete(OfflineActionRow).where(OfflineActionRow.id == action_id)
            )

    async def clear_actions(self) -> int:
        async with self._session() as session:
            result = await session.execute(delete(OfflineActionRow))
            return result.rowcount

    # ── Sync metadata ──

    async def get_metadata(self, key: str) -> Optional[SyncMetadata]:
        async with self._session() as session:
            row = await session.get(SyncMetadataRow, key)
            return SyncMetadata(key=row.key, last_sync=row.last_sync) if row else None

    async def set_metadata(self, meta: SyncMetadata) -> None:
        async with self._session() as session:
            await session.merge(SyncMetadataRow(key=meta.key, last_sync=meta.last_sync))

    async def clear_metadata(self) -> None:
        async with self._session() as session:
            await session.execute(delete(SyncMetadataRow))


# ═══════════════════════════════════════════════════════════════════════════
# Degrading facade
# ═══════════════════════════════════════════════════════════════════════════

class ResilientStorage(Storage):
    """
    Primary backend with an in-memory fallback.

    The first ``StorageError`` from the primary flips ``degraded`` and every
    later call goes to memory. Nothing written to memory is persisted.
    """

    def __init__(self, primary: Storage, fallback: Optional[Storage] = None):
        self._primary = primary
        self._fallback = fallback or MemoryStorage()
        self.degraded = False
        self.degraded_reason: Optional[str] = None

    def _degrade(self, error: Exception) -> None:
        self.degraded = True
        self.degraded_reason = str(error)
        logger.warning(
            "Local storage unavailable, continuing in memory-only mode: %s", error,
        )

    async def _call(self, op: str, *args: Any) -> Any:
        if not self.degraded:
            try:
                return await getattr(self._primary, op)(*args)
            except StorageError as e:
                self._degrade(e)
        return await getattr(self._fallback, op)(*args)

    async def init(self) -> None:
        try:
            await self._primary.init()
        except StorageError as e:
            self._degrade(e)
        await self._fallback.init()

    async def close(self) -> None:
        try:
            await self._primary.close()
        except (StorageError, SQLAlchemyError, OSError) as e:
            logger.warning("Error closing local storage: %s", e)
        await self._fallback.close()

    async def put_records(self, collection: str, records: List[Dict[str, Any]]) -> None:
        await self._call("put_records", collection, records)

    async def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        return await self._call("get_record", collection, record_id)

    async def all_records(self, collection: str) -> List[Dict[str, Any]]:
        return await self._call("all_records", collection)

    async def delete_record(self, collection: str, record_id: str) -> bool:
        return await self._call("delete_record", collection, record_id)

    async def clear_records(self, collection: str) -> int:
        return await self._call("clear_records", collection)

    async def add_action(self, action: QueuedAction) -> QueuedAction:
        return await self._call("add_action", action)

    async def list_actions(self) -> List[QueuedAction]:
        return await self._call("list_actions")

    async def update_action(self, action: QueuedAction) -> None:
        await self._call("update_action", action)

    async def delete_action(self, action_id: int) -> None:
        await self._call("delete_action", action_id)

    async def clear_actions(self) -> int:
        return await self._call("clear_actions")

    async def get_metadata(self, key: str) -> Optional[SyncMetadata]:
        return await self._call("get_metadata", key)

    async def set_metadata(self, meta: SyncMetadata) -> None:
        await self._call("set_metadata", meta)

    async def clear_metadata(self) -> None:
        await self._call("clear_metadata")
