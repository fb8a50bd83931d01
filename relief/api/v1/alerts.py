"""
FastAPI route: Emergency alerts.

    GET    /api/alerts            — active alerts, most severe first (?since, ?severity, ?area)
    POST   /api/alerts            — publish an alert
    GET    /api/alerts/{id}       — one alert
    PATCH  /api/alerts/{id}       — partial update (e.g. seen)
    DELETE /api/alerts/{id}       — withdraw an alert
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, Request, Response

from relief.api.repository import RecordRepository, parse_timestamp
from relief.api.schemas import (
    SEVERITY_RANK,
    AlertCreate,
    AlertSeverity,
    AlertUpdate,
    DeleteResponse,
    changes_of,
)
from relief.core.errors import ValidationError

router = APIRouter(prefix="/api/alerts", tags=["alerts"])

DEFAULT_MAX_AGE = 300
MAX_CACHE_AGE = 3600


def _repository(request: Request) -> RecordRepository:
    return request.app.state.repositories["alerts"]


def _cache_max_age(alerts: List[Dict[str, Any]], now: datetime) -> int:
    """Cache until the soonest expiry, at most an hour."""
    remaining = [
        (expires - now).total_seconds()
        for a in alerts
        if (expires := parse_timestamp(a.get("expiresAt"))) is not None
    ]
    if not remaining:
        return DEFAULT_MAX_AGE
    return max(0, min(int(min(remaining)), MAX_CACHE_AGE))


@router.get("", summary="List active alerts")
async def list_alerts(
    request: Request,
    response: Response,
    since: Optional[datetime] = Query(None, description="Only alerts issued after this instant"),
    severity: Optional[AlertSeverity] = Query(None),
    area: Optional[str] = Query(None, description="Case-insensitive substring of the area"),
) -> List[Dict[str, Any]]:
    repo = _repository(request)
    now = repo.now()

    alerts = [
        a for a in repo.list(since=since)
        if (expires := parse_timestamp(a.get("expiresAt"))) is None or expires > now
    ]
    if severity:
        alerts = [a for a in alerts if a.get("severity") == severity]
    if area:
        needle = area.lower()
        alerts = [a for a in alerts if needle in str(a.get("area", "")).lower()]

    # Newest first, then stable sort by severity
    alerts.sort(key=lambda a: a.get("timestamp", ""), reverse=True)
    alerts.sort(key=lambda a: SEVERITY_RANK.get(a.get("severity"), 0), reverse=True)

    response.headers["Cache-Control"] = f"public, max-age={_cache_max_age(alerts, now)}"
    return alerts


@router.post("", status_code=201, summary="Publish an alert")
async def create_alert(request: Request, body: AlertCreate) -> Dict[str, Any]:
    data = body.model_dump(mode="json", exclude_none=True)
    return _repository(request).create(data, extra={"status": "active"})


@router.get("/{alert_id}", summary="Get one alert")
async def get_alert(request: Request, alert_id: str) -> Dict[str, Any]:
    return _repository(request).get(alert_id)


@router.patch("/{alert_id}", summary="Update an alert")
async def update_alert(request: Request, alert_id: str, body: AlertUpdate) -> Dict[str, Any]:
    changes = changes_of(body)
    if not changes:
        raise ValidationError("No fields to update")
    return _repository(request).update(alert_id, changes)


@router.delete("/{alert_id}", response_model=DeleteResponse, summary="Withdraw an alert")
async def delete_alert(request: Request, alert_id: str) -> DeleteResponse:
    _repository(request).delete(alert_id)
    return DeleteResponse(message="Alert deleted successfully", id=alert_id)
