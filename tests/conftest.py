"""
Shared fixtures for the relief test-suite.

Async code is driven with ``asyncio.run`` inside plain test functions; the
sync client talks to the real FastAPI app through ``httpx.ASGITransport``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx
import pytest

from relief.admission.limiter import RateLimiter
from relief.api.repository import create_repositories
from relief.main import create_app
from relief.offline.client import RetryConfig
from relief.offline.stack import SyncStack, build_sync_stack

BASE_URL = "http://testserver/api"
T0 = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMsClock:
    """Manually advanced millisecond clock for the rate limiter."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


def report_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "title": "Bridge collapsed",
        "description": "The footbridge over the canal at Unit-4 has collapsed.",
        "type": "incident",
        "severity": 4,
        "location": {"lat": 20.2961, "lng": 85.8245},
    }
    payload.update(overrides)
    return payload


def alert_record(alert_id: str, issued: datetime, **overrides: Any) -> Dict[str, Any]:
    record = {
        "id": alert_id,
        "title": f"Alert {alert_id}",
        "description": "Heavy rainfall expected in the next 24 hours.",
        "severity": "warning",
        "area": "Bhubaneswar City",
        "source": "IMD Weather Service",
        "timestamp": issued.isoformat(),
        "expiresAt": (issued + timedelta(days=1)).isoformat(),
    }
    record.update(overrides)
    return record


def resource_record(resource_id: str, updated: datetime, **overrides: Any) -> Dict[str, Any]:
    record = {
        "id": resource_id,
        "name": "Kalinga Stadium Relief Camp",
        "type": "shelter",
        "description": "Main relief camp with basic amenities",
        "location": {"lat": 20.2961, "lng": 85.8245},
        "capacity": {"total": 500, "available": 230},
        "status": "active",
        "lastUpdated": updated.isoformat(),
    }
    record.update(overrides)
    return record


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repositories(clock):
    return create_repositories(clock=clock)


@pytest.fixture
def server_app(repositories):
    limiter = RateLimiter(limits={"auth": 20, "reports": 50, "alerts": 100, "default": 200})
    return create_app(rate_limiter=limiter, repositories=repositories, seed=False)


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'local.db'}"


def make_stack(
    app,
    clock: FakeClock,
    *,
    db_url: Optional[str] = None,
    online: bool = True,
    **kwargs: Any,
) -> SyncStack:
    """Client stack wired to ``app`` in-process. Call inside a running loop."""
    return build_sync_stack(
        db_url,
        BASE_URL,
        transport=httpx.ASGITransport(app=app),
        online=online,
        retry=RetryConfig(max_attempts=1, backoff_base_seconds=0.0),
        memory_only=db_url is None,
        clock=clock,
        **kwargs,
    )
