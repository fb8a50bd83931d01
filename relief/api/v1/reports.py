"""
FastAPI route: Community incident reports.

    GET    /api/reports           — reports, most severe then newest first (?since, ?type, ?severity, ?status)
    POST   /api/reports           — submit a report (honours Idempotency-Key)
    GET    /api/reports/{id}      — one report
    PATCH  /api/reports/{id}      — update description / severity / status
    DELETE /api/reports/{id}      — remove a report
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Header, Query, Request

from relief.api.repository import RecordRepository
from relief.api.schemas import DeleteResponse, ReportCreate, ReportUpdate, changes_of
from relief.core.errors import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])


def _repository(request: Request) -> RecordRepository:
    return request.app.state.repositories["reports"]


@router.get("", summary="List reports")
async def list_reports(
    request: Request,
    since: Optional[datetime] = Query(None, description="Only reports changed after this instant"),
    type: Optional[str] = Query(None),
    severity: Optional[int] = Query(None, ge=1, le=5),
    status: Optional[str] = Query(None),
) -> List[Dict[str, Any]]:
    reports = _repository(request).list(since=since)
    if type:
        reports = [r for r in reports if r.get("type") == type]
    if severity is not None:
        reports = [r for r in reports if r.get("severity") == severity]
    if status:
        reports = [r for r in reports if r.get("status") == status]

    reports.sort(key=lambda r: r.get("createdAt", ""), reverse=True)
    reports.sort(key=lambda r: r.get("severity") or 0, reverse=True)
    return reports


@router.post("", status_code=201, summary="Submit a report")
async def create_report(
    request: Request,
    body: ReportCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
) -> Dict[str, Any]:
    data = body.model_dump(mode="json", exclude_none=True)
    extra = {"status": "pending"}
    if body.isAnonymous:
        extra["userName"] = "Anonymous"
    report = _repository(request).create(data, idempotency_key=idempotency_key, extra=extra)
    logger.info("Report %s submitted (%s)", report["id"], report["type"])
    return report


@router.get("/{report_id}", summary="Get one report")
async def get_report(request: Request, report_id: str) -> Dict[str, Any]:
    return _repository(request).get(report_id)


@router.patch("/{report_id}", summary="Update a report")
async def update_report(request: Request, report_id: str, body: ReportUpdate) -> Dict[str, Any]:
    changes = changes_of(body)
    if not changes:
        raise ValidationError("No fields to update")
    return _repository(request).update(report_id, changes)


@router.delete("/{report_id}", response_model=DeleteResponse, summary="Delete a report")
async def delete_report(request: Request, report_id: str) -> DeleteResponse:
    _repository(request).delete(report_id)
    return DeleteResponse(message="Report deleted successfully", id=report_id)
