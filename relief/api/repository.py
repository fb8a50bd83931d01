"""
In-process record repositories backing the REST surface.

One ``RecordRepository`` per collection, each stamping its own change
timestamp field, which is what ``GET /{collection}?since=`` compares
against:

    alerts     → timestamp
    reports    → updatedAt
    resources  → lastUpdated

Repositories live on ``app.state.repositories``; nothing here is a
module-level global.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from relief.core.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

TIMESTAMP_FIELDS: Dict[str, str] = {
    "alerts": "timestamp",
    "reports": "updatedAt",
    "resources": "lastUpdated",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string or datetime → aware UTC datetime (None if unparseable)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _fingerprint(data: Dict[str, Any]) -> str:
    return hashlib.sha256(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()


class RecordRepository:
    """
    Keyed JSON records for one collection.

    Parameters
    ----------
    collection : str
        One of ``alerts``, ``reports``, ``resources``.
    clock : callable, optional
        Returns the current UTC datetime.
    """

    def __init__(self, collection: str, clock: Callable[[], datetime] = _utc_now):
        if collection not in TIMESTAMP_FIELDS:
            raise ValueError(f"Unknown collection '{collection}'")
        self.collection = collection
        self.timestamp_field = TIMESTAMP_FIELDS[collection]
        self._clock = clock
        self._records: Dict[str, Dict[str, Any]] = {}
        # Idempotency-Key → (payload fingerprint, record id)
        self._idempotency: Dict[str, tuple] = {}

    def __len__(self) -> int:
        return len(self._records)

    def now(self) -> datetime:
        return self._clock().astimezone(timezone.utc)

    def _now(self) -> str:
        return self.now().isoformat()

    # ── Reads ──

    def list(self, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """All records, or only those changed strictly after ``since``."""
        records = list(self._records.values())
        if since is not None:
            cutoff = parse_timestamp(since)
            records = [
                r for r in records
                if (changed := parse_timestamp(r.get(self.timestamp_field))) is not None
                and changed > cutoff
            ]
        return [copy.deepcopy(r) for r in records]

    def get(self, record_id: str) -> Dict[str, Any]:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(self.collection.rstrip("s").capitalize(), id=record_id)
        return copy.deepcopy(record)

    # ── Writes ──

    def put(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Raw upsert, timestamps untouched (seeding and tests)."""
        stored = copy.deepcopy(record)
        self._records[str(stored["id"])] = stored
        return copy.deepcopy(stored)

    def create(
        self,
        data: Dict[str, Any],
        idempotency_key: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Insert a new record with a server-assigned id.

        A repeated ``idempotency_key`` with the same payload returns the
        record created the first time; with a different payload it is a
        409 conflict.
        """
        fingerprint = _fingerprint(data)
        if idempotency_key:
            seen = self._idempotency.get(idempotency_key)
            if seen is not None:
                previous_fingerprint, record_id = seen
                if previous_fingerprint != fingerprint:
                    raise ConflictError(
                        "Idempotency-Key reused with a different payload",
                        idempotency_key=idempotency_key,
                    )
                if record_id in self._records:
                    logger.info(
                        "Replayed %s create for key %s", self.collection, idempotency_key,
                        extra={"collection": self.collection},
                    )
                    return copy.deepcopy(self._records[record_id])

        now = self._now()
        record = {**data, **(extra or {}), "id": uuid.uuid4().hex}
        record[self.timestamp_field] = now
        if self.collection == "reports":
            record["createdAt"] = now

        self._records[record["id"]] = record
        if idempotency_key:
            self._idempotency[idempotency_key] = (fingerprint, record["id"])
        return copy.deepcopy(record)

    def update(self, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``changes`` into an existing record and bump its timestamp."""
        current = self._records.get(record_id)
        if current is None:
            raise NotFoundError(self.collection.rstrip("s").capitalize(), id=record_id)
        updated = {**current, **changes, "id": record_id}
        updated[self.timestamp_field] = self._now()
        self._records[record_id] = updated
        return copy.deepcopy(updated)

    def delete(self, record_id: str) -> Dict[str, Any]:
        record = self._records.pop(record_id, None)
        if record is None:
            raise NotFoundError(self.collection.rstrip("s").capitalize(), id=record_id)
        return record


def create_repositories(clock: Callable[[], datetime] = _utc_now) -> Dict[str, RecordRepository]:
    return {name: RecordRepository(name, clock=clock) for name in TIMESTAMP_FIELDS}


# ---------------------------------------------------------------------------
# Demo data (development only)
# ---------------------------------------------------------------------------

def seed_demo_data(repositories: Dict[str, RecordRepository]) -> None:
    """Bhubaneswar sample data for local development."""
    now = _utc_now()
    stamp = now.isoformat()

    repositories["alerts"].put({
        "id": "1",
        "title": "Heavy Rain Warning",
        "description": "Heavy rainfall expected in the next 24 hours. Please stay indoors.",
        "severity": "warning",
        "area": "Bhubaneswar City",
        "source": "IMD Weather Service",
        "timestamp": stamp,
        "expiresAt": (now + timedelta(hours=24)).isoformat(),
    })
    repositories["alerts"].put({
        "id": "2",
        "title": "Flash Flood Alert",
        "description": "Flash flooding reported in low-lying areas. Avoid these regions.",
        "severity": "critical",
        "area": "Mancheswar Industrial Area",
        "source": "City Emergency Services",
        "timestamp": stamp,
        "expiresAt": (now + timedelta(hours=12)).isoformat(),
    })

    repositories["reports"].put({
        "id": "1",
        "title": "Road Blocked in Saheed Nagar",
        "type": "incident",
        "description": "Fallen tree blocking main road near Bank of India branch",
        "severity": 3,
        "location": {"lat": 20.2961, "lng": 85.8245},
        "address": "Saheed Nagar Main Road",
        "userName": "John Doe",
        "isAnonymous": False,
        "status": "pending",
        "createdAt": stamp,
        "updatedAt": stamp,
    })

    for resource in (
        {
            "id": "1",
            "name": "Kalinga Stadium Relief Camp",
            "type": "shelter",
            "description": "Main relief camp with basic amenities",
            "address": "Kalinga Stadium, Bhubaneswar",
            "location": {"lat": 20.2961, "lng": 85.8245},
            "contact": {"phone": "0674-2301525"},
            "operationalStatus": "operational",
            "capacity": {"total": 500, "available": 230},
            "status": "active",
        },
        {
            "id": "2",
            "name": "AIIMS Bhubaneswar",
            "type": "medical",
            "description": "Full service hospital with emergency facilities",
            "address": "Sijua, Patrapada, Bhubaneswar",
            "location": {"lat": 20.2467, "lng": 85.7743},
            "contact": {"phone": "0674-2476789"},
            "operationalStatus": "operational",
            "capacity": {"total": 100, "available": 35},
            "status": "active",
        },
        {
            "id": "3",
            "name": "Central School Shelter",
            "type": "shelter",
            "description": "Temporary shelter with basic facilities",
            "address": "Unit-9, Bhubaneswar",
            "location": {"lat": 20.2758, "lng": 85.8417},
            "contact": {"phone": "0674-2550534"},
            "operationalStatus": "limited",
            "capacity": {"total": 300, "available": 75},
            "status": "active",
        },
    ):
        repositories["resources"].put({**resource, "lastUpdated": stamp})

    logger.info("Seeded demo data: %s", {k: len(v) for k, v in repositories.items()})
