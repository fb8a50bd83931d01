"""
Wiring for the client-side sync components.

    stack = build_sync_stack(base_url="http://localhost:8000/api")
    await stack.init()
    result = await stack.engine.initial_sync()
    ...
    await stack.shutdown()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping, Optional, Union

import httpx

from relief.core.config import settings
from relief.offline.action_queue import ActionQueue
from relief.offline.client import ApiClient, RetryConfig
from relief.offline.connectivity import ConnectivityMonitor
from relief.offline.local_store import LocalStore
from relief.offline.models import ConflictStrategy, utc_now
from relief.offline.storage import MemoryStorage, ResilientStorage, SQLStorage
from relief.offline.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class SyncStack:
    storage: ResilientStorage
    store: LocalStore
    queue: ActionQueue
    client: ApiClient
    engine: SyncEngine
    monitor: ConnectivityMonitor

    async def init(self) -> None:
        """Open local storage. Falls back to memory if it cannot be opened."""
        await self.storage.init()
        if self.storage.degraded:
            logger.warning("Sync stack running without durable storage")

    async def shutdown(self) -> None:
        await self.monitor.stop()
        await self.engine.close()
        await self.client.close()
        await self.storage.close()


def build_sync_stack(
    local_db_url: Optional[str] = None,
    base_url: Optional[str] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    online: bool = True,
    strategies: Optional[Mapping[str, Union[str, ConflictStrategy]]] = None,
    retry: Optional[RetryConfig] = None,
    memory_only: bool = False,
    clock: Callable[[], datetime] = utc_now,
) -> SyncStack:
    """Construct and connect every client-side component."""
    primary = MemoryStorage() if memory_only else SQLStorage(local_db_url or settings.LOCAL_DB_URL)
    storage = ResilientStorage(primary)
    client = ApiClient(base_url, transport=transport, retry=retry)
    monitor = ConnectivityMonitor(initial_online=online, probe=client.ping)
    store = LocalStore(storage, is_online=monitor.is_online, clock=clock)
    queue = ActionQueue(storage, is_online=monitor.is_online)
    engine = SyncEngine(
        store, queue, client,
        is_online=monitor.is_online, strategies=strategies, clock=clock,
    )
    monitor.attach(engine)
    return SyncStack(
        storage=storage, store=store, queue=queue,
        client=client, engine=engine, monitor=monitor,
    )
