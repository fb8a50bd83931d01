"""
Sync engine — keeps the local store consistent with the server.

Pull:
    GET /{collection}?since=<lastSync>, reconcile every returned record with
    the local copy under the collection's conflict strategy, then advance
    lastSync to the time the pull *started*. At most one pull or drain step
    runs per collection at a time; a pull that was overtaken by a newer one
    for the same collection discards its result.

Push:
    UI mutations go straight to the server while online. Offline, or on a
    transient failure (network, timeout, 429, 5xx), the change is applied to
    the local store as ``pending`` and queued. ``drain`` replays the queue in
    order; each success replaces the optimistic record with the server copy.
    An online mutation drains the queue before it is sent, and a record with
    a change still queued is queued again rather than sent out of order.
    Pulls leave such records alone under serverWins.

Reconnect:
    ``on_reconnect`` drains first, then pulls every collection, so queued
    local changes reach the server before server state is pulled over them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Union

from relief.core.config import settings
from relief.offline.action_queue import ActionQueue
from relief.offline.client import ApiClient
from relief.offline.conflict import parse_strategy, resolve
from relief.offline.errors import (
    ApiResponseError,
    NetworkError,
    RateLimitedError,
    ServerError,
    SyncError,
)
from relief.offline.local_store import LocalStore
from relief.offline.models import (
    ACTION_COLLECTIONS,
    ActionType,
    Collection,
    CollectionState,
    ConflictStrategy,
    DrainReport,
    MutationResult,
    MutationState,
    QueuedAction,
    SyncState,
    as_collection,
    is_local_id,
    new_idempotency_key,
    new_local_id,
    record_state,
    strip_metadata,
    to_iso,
    utc_now,
)

logger = logging.getLogger(__name__)

# Failures worth retrying later; anything else is the caller's problem
TRANSIENT_ERRORS = (NetworkError, RateLimitedError, ServerError)

PENDING_METADATA = {"syncState": SyncState.PENDING.value, "isLocalOnly": True}


def _always_online() -> bool:
    return True


@dataclass
class InitialSyncResult:
    """Cached data available immediately, plus the background refresh."""
    cached: Dict[str, List[Dict[str, Any]]]
    refresh: Optional["asyncio.Task[Dict[str, Optional[int]]]"] = None


@dataclass
class ReconnectReport:
    drain: DrainReport
    pulled: Dict[str, Optional[int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"drain": self.drain.to_dict(), "pulled": self.pulled}


class SyncEngine:
    """
    Orchestrates pulls, queue replay and UI mutations.

    Parameters
    ----------
    store : LocalStore
    queue : ActionQueue
    client : ApiClient
    is_online : callable
        Connectivity predicate (usually ``ConnectivityMonitor.is_online``).
    strategies : mapping, optional
        Conflict strategy per collection name; the rest use
        DEFAULT_CONFLICT_STRATEGY. Unknown strategies fail here, at
        construction.
    clock : callable, optional
        Returns the current UTC datetime.
    """

    def __init__(
        self,
        store: LocalStore,
        queue: ActionQueue,
        client: ApiClient,
        *,
        is_online: Callable[[], bool] = _always_online,
        strategies: Optional[Mapping[str, Union[str, ConflictStrategy]]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.queue = queue
        self.client = client
        self._is_online = is_online
        self._clock = clock

        default = parse_strategy(settings.DEFAULT_CONFLICT_STRATEGY)
        self.strategies: Dict[Collection, ConflictStrategy] = {c: default for c in Collection}
        for name, strategy in (strategies or {}).items():
            self.strategies[as_collection(name)] = parse_strategy(strategy)

        self.states: Dict[Collection, CollectionState] = {c: CollectionState.IDLE for c in Collection}
        self.draining = False
        self._locks: Dict[Collection, asyncio.Lock] = {c: asyncio.Lock() for c in Collection}
        self._drain_lock = asyncio.Lock()
        self._pull_generation: Dict[Collection, int] = {c: 0 for c in Collection}
        self._id_map: Dict[str, str] = {}
        self._background: Set[asyncio.Task] = set()

    # ── Helpers ──

    def _now(self) -> str:
        return to_iso(self._clock())

    def _confirmed_metadata(self) -> Dict[str, Any]:
        return {
            "syncState": SyncState.CONFIRMED.value,
            "isLocalOnly": False,
            "syncedAt": self._now(),
        }

    def resolve_id(self, record_id: Optional[str]) -> Optional[str]:
        """Server id for a temporary local id, once the create has synced."""
        return self._id_map.get(record_id, record_id) if record_id else record_id

    async def _store_confirmed(
        self,
        collection: Collection,
        record: Dict[str, Any],
        replaces: Optional[str] = None,
    ) -> Dict[str, Any]:
        server_id = record.get("id")
        if replaces and replaces != server_id:
            await self.store.delete(collection, replaces)
            self._id_map[replaces] = server_id
        return await self.store.put(collection, record, metadata=self._confirmed_metadata())

    # ═══════════════════════════════════════════════════════════════════
    # Pull
    # ═══════════════════════════════════════════════════════════════════

    async def pull(self, collection: Union[str, Collection]) -> Optional[List[Dict[str, Any]]]:
        """
        Fetch changes since lastSync and reconcile them into the store.

        Returns the reconciled records, or None if offline or superseded by
        a newer pull of the same collection.
        """
        collection = as_collection(collection)
        name = collection.value
        if not self._is_online():
            logger.debug("Offline; skipping pull of %s", name, extra={"collection": name})
            return None

        self._pull_generation[collection] += 1
        generation = self._pull_generation[collection]

        async with self._locks[collection]:
            if generation != self._pull_generation[collection]:
                logger.info("Skipping superseded pull of %s", name, extra={"collection": name})
                return None

            self.states[collection] = CollectionState.PULLING
            try:
                started = self._clock()
                since = await self.store.get_last_sync(collection)
                records = await self.client.list_records(name, since=since)

                if generation != self._pull_generation[collection]:
                    logger.info(
                        "Discarding result of superseded pull of %s", name,
                        extra={"collection": name},
                    )
                    return None

                self.states[collection] = CollectionState.RECONCILING
                reconciled = await self._reconcile(collection, records)
                await self.store.set_last_sync(collection, to_iso(started))
            finally:
                self.states[collection] = CollectionState.IDLE

        logger.info(
            "Pulled %d %s record(s)%s", len(reconciled), name,
            f" since {since}" if since else "",
            extra={"collection": name},
        )
        return reconciled

    async def _queued_ids(self, collection: Collection) -> Set[str]:
        """Record ids in ``collection`` with a mutation still waiting in the queue."""
        ids: Set[str] = set()
        for action in await self.queue.list():
            if ACTION_COLLECTIONS[action.action] is collection and action.record_id:
                ids.add(action.record_id)
                ids.add(self.resolve_id(action.record_id))
        return ids

    async def _reconcile(
        self, collection: Collection, records: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        strategy = self.strategies[collection]
        queued = await self._queued_ids(collection)
        reconciled: List[Dict[str, Any]] = []

        for server_record in records:
            record_id = server_record.get("id")
            if not record_id:
                logger.warning(
                    "Ignoring %s record without id", collection.value,
                    extra={"collection": collection.value},
                )
                continue

            local = await self.store.get(collection, record_id)
            if local is None:
                stored = await self.store.put(
                    collection, server_record, metadata=self._confirmed_metadata(),
                )
            elif strategy is ConflictStrategy.LOCAL_WINS:
                stored = local
            elif strategy is ConflictStrategy.MERGE:
                merged = resolve(local, server_record, strategy, now=self._clock())
                pending = record_state(merged) is SyncState.PENDING
                stored = await self.store.put(collection, merged, metadata={
                    "syncedAt": self._now(),
                    "isLocalOnly": pending,
                    "syncState": SyncState.PENDING.value if pending else SyncState.CONFIRMED.value,
                })
            elif record_id in queued:
                # Replay of the queued mutation brings the server copy back
                logger.debug(
                    "Keeping pending %s record %s until its queued change is synced",
                    collection.value, record_id, extra={"collection": collection.value},
                )
                stored = local
            else:
                resolved = resolve(local, server_record, strategy)
                stored = await self.store.put(
                    collection, resolved, metadata=self._confirmed_metadata(),
                )
            reconciled.append(stored)

        return reconciled

    async def pull_all(self) -> Dict[str, Optional[int]]:
        """Pull every collection; failures keep that collection's cache."""
        results: Dict[str, Optional[int]] = {}
        for collection in Collection:
            try:
                records = await self.pull(collection)
            except SyncError as e:
                logger.warning(
                    "Pull of %s failed, keeping cached data: %s", collection.value, e,
                    extra={"collection": collection.value},
                )
                records = None
            results[collection.value] = None if records is None else len(records)
        return results

    async def initial_sync(self) -> InitialSyncResult:
        """Serve cached data now; refresh from the server in the background."""
        cached = {c.value: await self.store.get_all(c) for c in Collection}
        task = None
        if self._is_online():
            task = asyncio.create_task(self._refresh())
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        return InitialSyncResult(cached=cached, refresh=task)

    async def _refresh(self) -> Dict[str, Optional[int]]:
        # Actions left over from an earlier session go out before the pull
        await self.drain()
        return await self.pull_all()

    # ═══════════════════════════════════════════════════════════════════
    # Push / replay
    # ═══════════════════════════════════════════════════════════════════

    async def drain(self) -> DrainReport:
        """Replay queued actions in order. No-op while offline."""
        if not self._is_online():
            return DrainReport(skipped=True)
        async with self._drain_lock:
            self.draining = True
            try:
                return await self.queue.drain(self._execute, on_drop=self._on_drop)
            finally:
                self.draining = False

    async def _execute(self, action: QueuedAction) -> None:
        collection = ACTION_COLLECTIONS[action.action]
        async with self._locks[collection]:
            if action.action is ActionType.SUBMIT_REPORT:
                created = await self.client.create_report(
                    action.data, idempotency_key=action.idempotency_key,
                )
                await self._store_confirmed(collection, created, replaces=action.record_id)

            elif action.action is ActionType.UPDATE_RESOURCE:
                updated = await self.client.update_resource(
                    self.resolve_id(action.record_id), action.data,
                    idempotency_key=action.idempotency_key,
                )
                await self._store_confirmed(collection, updated)

            elif action.action is ActionType.UPDATE_ALERT:
                updated = await self.client.update_alert(
                    self.resolve_id(action.record_id), action.data,
                    idempotency_key=action.idempotency_key,
                )
                await self._store_confirmed(collection, updated)

            elif action.action is ActionType.DELETE_REPORT:
                await self._replay_delete(action)

    async def _replay_delete(self, action: QueuedAction) -> None:
        target = self.resolve_id(action.record_id)
        if not is_local_id(target):
            try:
                await self.client.delete_report(target, idempotency_key=action.idempotency_key)
            except ApiResponseError as e:
                # Already gone on the server
                if e.status_code != 404:
                    raise
        # A still-local id never reached the server; only the tombstone remains
        await self.store.delete(Collection.REPORTS, target)
        if action.record_id != target:
            await self.store.delete(Collection.REPORTS, action.record_id)

    async def _on_drop(self, action: QueuedAction, error: Exception) -> None:
        collection = ACTION_COLLECTIONS[action.action]
        record_id = self.resolve_id(action.record_id)
        if not record_id:
            return
        async with self._locks[collection]:
            record = await self.store.get(collection, record_id)
            if record is not None:
                await self.store.put(collection, record, metadata={
                    "syncState": SyncState.FAILED.value,
                    "isLocalOnly": True,
                    "lastError": str(error),
                })

    # ═══════════════════════════════════════════════════════════════════
    # UI-triggered mutations
    # ═══════════════════════════════════════════════════════════════════

    async def _flush_queue(self) -> None:
        """Replay earlier queued actions before a new online mutation is sent.

        Runs before the collection lock is taken; ``_execute`` acquires the
        same lock per action.
        """
        if self._is_online() and await self.queue.size():
            await self.drain()

    async def _queue_pending(
        self,
        action: ActionType,
        data: Dict[str, Any],
        record: Dict[str, Any],
        idempotency_key: str,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> MutationResult:
        collection = ACTION_COLLECTIONS[action]
        queued = await self.queue.enqueue(
            action, data, record_id=record["id"], idempotency_key=idempotency_key,
        )
        stored = await self.store.put(
            collection, record, metadata={**PENDING_METADATA, **(extra_metadata or {})},
        )
        return MutationResult(MutationState.PENDING, stored, action_id=queued.id)

    async def submit_report(self, data: Dict[str, Any]) -> MutationResult:
        """Create a report, or save it locally under a temporary id."""
        payload = strip_metadata(data)
        payload.pop("id", None)
        key = new_idempotency_key()
        await self._flush_queue()

        async with self._locks[Collection.REPORTS]:
            if self._is_online():
                try:
                    created = await self.client.create_report(payload, idempotency_key=key)
                except TRANSIENT_ERRORS as e:
                    logger.warning("Report submission failed, saved for later sync: %s", e)
                else:
                    record = await self._store_confirmed(Collection.REPORTS, created)
                    return MutationResult(MutationState.SYNCED, record)

            now = self._now()
            record = {
                **payload,
                "id": new_local_id(),
                "status": "pending",
                "createdAt": now,
                "updatedAt": now,
            }
            return await self._queue_pending(ActionType.SUBMIT_REPORT, payload, record, key)

    async def update_resource(self, resource_id: str, changes: Dict[str, Any]) -> MutationResult:
        """Update a resource (status, capacity, ...)."""
        return await self._update(
            ActionType.UPDATE_RESOURCE, resource_id, changes,
            self.client.update_resource, timestamp_field="lastUpdated",
        )

    async def update_alert(self, alert_id: str, changes: Dict[str, Any]) -> MutationResult:
        """Patch an alert (e.g. mark it seen)."""
        return await self._update(
            ActionType.UPDATE_ALERT, alert_id, changes,
            self.client.update_alert, timestamp_field="timestamp",
        )

    async def _update(
        self,
        action: ActionType,
        record_id: str,
        changes: Dict[str, Any],
        send: Callable[..., Any],
        timestamp_field: str,
    ) -> MutationResult:
        collection = ACTION_COLLECTIONS[action]
        payload = strip_metadata(changes)
        payload.pop("id", None)
        key = new_idempotency_key()
        await self._flush_queue()

        async with self._locks[collection]:
            # An older change to this record that is still queued must reach
            # the server first
            if self._is_online() and record_id not in await self._queued_ids(collection):
                try:
                    updated = await send(record_id, payload, idempotency_key=key)
                except TRANSIENT_ERRORS as e:
                    logger.warning(
                        "%s failed, saved for later sync: %s", action.value, e,
                        extra={"collection": collection.value},
                    )
                else:
                    record = await self._store_confirmed(collection, updated)
                    return MutationResult(MutationState.SYNCED, record)

            local = await self.store.get(collection, record_id) or {"id": record_id}
            record = {**local, **payload, "id": record_id, timestamp_field: self._now()}
            return await self._queue_pending(action, payload, record, key)

    async def delete_report(self, report_id: str) -> MutationResult:
        """Delete a report; offline, leave a tombstone until replay."""
        key = new_idempotency_key()
        await self._flush_queue()

        async with self._locks[Collection.REPORTS]:
            target = self.resolve_id(report_id)
            if (
                self._is_online()
                and not is_local_id(target)
                and target not in await self._queued_ids(Collection.REPORTS)
            ):
                try:
                    await self.client.delete_report(target, idempotency_key=key)
                except TRANSIENT_ERRORS as e:
                    logger.warning("Report deletion failed, saved for later sync: %s", e)
                else:
                    await self.store.delete(Collection.REPORTS, target)
                    return MutationResult(MutationState.SYNCED, None)

            local = await self.store.get(Collection.REPORTS, target) or {"id": target}
            return await self._queue_pending(
                ActionType.DELETE_REPORT, {}, local, key, extra_metadata={"deleted": True},
            )

    # ═══════════════════════════════════════════════════════════════════
    # Reconnect / status / reset
    # ═══════════════════════════════════════════════════════════════════

    async def on_reconnect(self) -> ReconnectReport:
        """Drain queued actions, then refresh every collection."""
        logger.info("Connection restored, synchronising")
        drain_report = await self.drain()
        pulled = await self.pull_all()
        return ReconnectReport(drain=drain_report, pulled=pulled)

    async def status(self) -> Dict[str, Any]:
        collections = {}
        for collection in Collection:
            pending = await self.store.get_all(
                collection,
                filter=lambda r: record_state(r) is SyncState.PENDING,
                include_deleted=True,
            )
            collections[collection.value] = {
                "state": self.states[collection].value,
                "strategy": self.strategies[collection].value,
                "lastSync": await self.store.get_last_sync(collection),
                "pendingRecords": len(pending),
            }
        return {
            "online": self._is_online(),
            "draining": self.draining,
            "queued": await self.queue.size(),
            "dropped": len(self.queue.dropped),
            "droppedActions": [d.to_dict() for d in self.queue.dropped],
            "degraded": self.store.degraded,
            "collections": collections,
        }

    async def reset(self) -> None:
        """Forget all local state (logout)."""
        discarded = await self.queue.clear()
        if discarded:
            logger.warning("Reset discarded %d unsynced action(s)", discarded)
        await self.store.clear_all()
        self._id_map.clear()

    async def close(self) -> None:
        """Cancel background refreshes."""
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
