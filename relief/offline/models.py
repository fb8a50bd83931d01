"""
models.py — Shared data structures for the offline sync layer.

Defines:
    • Collection        — the three mirrored entity collections
    • SyncState         — per-record reconciliation tag (confirmed / pending / failed)
    • ActionType        — deferred mutation kinds
    • ActionStatus      — queue entry state
    • ConflictStrategy  — reconciliation policies
    • QueuedAction      — one deferred mutation
    • SyncMetadata      — last successful pull per collection
    • MutationResult, DrainReport, DroppedAction — operation outcomes

Records themselves stay plain dicts (JSON objects from the API) with a
``_metadata`` object attached by the local store:

    {
        "id": "...",
        ...domain fields...,
        "_metadata": {
            "lastModified": ISO-8601,
            "isLocalOnly": bool,
            "syncState": "confirmed" | "pending" | "failed",
            "syncedAt": ISO-8601 (optional),
            "deleted": bool (optional tombstone),
        }
    }
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

METADATA_KEY = "_metadata"
LOCAL_ID_PREFIX = "local-"


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class Collection(str, Enum):
    ALERTS = "alerts"
    REPORTS = "reports"
    RESOURCES = "resources"


class SyncState(str, Enum):
    """Two-phase commit state of a locally held record."""
    CONFIRMED = "confirmed"  # matches server-acknowledged state
    PENDING = "pending"      # applied locally, remote apply outstanding
    FAILED = "failed"        # remote apply dropped after retries


class ActionType(str, Enum):
    SUBMIT_REPORT = "submitReport"
    UPDATE_RESOURCE = "updateResource"
    UPDATE_ALERT = "updateAlert"
    DELETE_REPORT = "deleteReport"


class ActionStatus(str, Enum):
    PENDING = "pending"
    FAILED = "failed"


class ConflictStrategy(str, Enum):
    SERVER_WINS = "serverWins"
    LOCAL_WINS = "localWins"
    MERGE = "merge"


class CollectionState(str, Enum):
    IDLE = "idle"
    PULLING = "pulling"
    RECONCILING = "reconciling"


class MutationState(str, Enum):
    SYNCED = "synced"    # saved and confirmed by the server
    PENDING = "pending"  # saved locally, waiting for replay


# Which collection each deferred mutation touches
ACTION_COLLECTIONS: Dict[ActionType, Collection] = {
    ActionType.SUBMIT_REPORT: Collection.REPORTS,
    ActionType.UPDATE_RESOURCE: Collection.RESOURCES,
    ActionType.UPDATE_ALERT: Collection.ALERTS,
    ActionType.DELETE_REPORT: Collection.REPORTS,
}


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def as_collection(value: Any) -> Collection:
    """Coerce a collection name; unknown names raise ValueError."""
    if isinstance(value, Collection):
        return value
    try:
        return Collection(value)
    except ValueError:
        valid = [c.value for c in Collection]
        raise ValueError(f"Unknown collection '{value}'. Must be one of: {valid}") from None


def new_local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex[:12]}"


def is_local_id(record_id: Optional[str]) -> bool:
    return bool(record_id) and str(record_id).startswith(LOCAL_ID_PREFIX)


def new_idempotency_key() -> str:
    return uuid.uuid4().hex


def record_metadata(record: Dict[str, Any]) -> Dict[str, Any]:
    return dict(record.get(METADATA_KEY) or {})


def strip_metadata(record: Dict[str, Any]) -> Dict[str, Any]:
    """Domain fields only."""
    return {k: v for k, v in record.items() if k != METADATA_KEY}


def record_state(record: Dict[str, Any]) -> SyncState:
    raw = record_metadata(record).get("syncState", SyncState.CONFIRMED.value)
    return SyncState(raw)


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class QueuedAction:
    """
    A deferred mutation waiting for server replay.

    Attributes
    ----------
    action : ActionType
        Which server call replays this mutation.
    data : dict
        Request body for the server call.
    record_id : str | None
        Target record. For ``submitReport`` this is the temporary local id.
    id : int | None
        Store-assigned, monotonically increasing. None until enqueued.
    retry_count : int
        Failed replay attempts so far.
    idempotency_key : str
        Sent as ``Idempotency-Key`` so a replay after an ambiguous timeout
        does not create a duplicate.
    """
    action: ActionType
    data: Dict[str, Any] = field(default_factory=dict)
    record_id: Optional[str] = None
    id: Optional[int] = None
    timestamp: str = field(default_factory=lambda: to_iso(utc_now()))
    retry_count: int = 0
    status: ActionStatus = ActionStatus.PENDING
    last_error: Optional[str] = None
    idempotency_key: str = field(default_factory=new_idempotency_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action.value,
            "data": self.data,
            "recordId": self.record_id,
            "timestamp": self.timestamp,
            "retryCount": self.retry_count,
            "status": self.status.value,
            "lastError": self.last_error,
            "idempotencyKey": self.idempotency_key,
        }


@dataclass
class SyncMetadata:
    """Last successful pull for one collection."""
    key: str
    last_sync: Optional[str] = None


@dataclass
class DroppedAction:
    """An action discarded after exhausting its retries."""
    action: QueuedAction
    error: str
    dropped_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.to_dict(),
            "error": self.error,
            "droppedAt": to_iso(self.dropped_at),
        }


@dataclass
class DrainReport:
    """Outcome of one drain cycle, by action id."""
    processed: List[int] = field(default_factory=list)
    succeeded: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    dropped: List[int] = field(default_factory=list)
    skipped: bool = False  # drain was a no-op (offline)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": len(self.processed),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "dropped": self.dropped,
            "skipped": self.skipped,
        }


@dataclass
class MutationResult:
    """What a UI-triggered mutation did."""
    state: MutationState
    record: Optional[Dict[str, Any]] = None
    action_id: Optional[int] = None

    @property
    def is_synced(self) -> bool:
        return self.state == MutationState.SYNCED
