"""
offline — Client-side offline-first sync layer.

Sub-modules:
    models        — records metadata, queued actions, outcome types
    errors        — SyncError taxonomy
    storage       — SQL / memory / degrading storage backends
    local_store   — per-collection record store with sync metadata
    action_queue  — durable FIFO of deferred mutations
    conflict      — serverWins / localWins / merge reconciliation
    client        — httpx API client with error mapping and retries
    sync_engine   — pull, drain and mutation orchestration
    connectivity  — online/offline state and reconnect trigger
    stack         — wiring of all of the above
"""

from .action_queue import ActionQueue
from .client import ApiClient, RetryConfig
from .conflict import resolve
from .connectivity import ConnectivityMonitor
from .local_store import LocalStore
from .models import Collection, ConflictStrategy, MutationResult, QueuedAction, SyncState
from .stack import SyncStack, build_sync_stack
from .sync_engine import SyncEngine

__all__ = [
    "ActionQueue",
    "ApiClient",
    "Collection",
    "ConflictStrategy",
    "ConnectivityMonitor",
    "LocalStore",
    "MutationResult",
    "QueuedAction",
    "RetryConfig",
    "SyncEngine",
    "SyncStack",
    "SyncState",
    "build_sync_stack",
    "resolve",
]
