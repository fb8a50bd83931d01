"""
FastAPI route: Relief resources (shelters, medical, food, water).

    GET    /api/resources         — all resources (?since, ?type, ?status)
    POST   /api/resources         — register a resource
    GET    /api/resources/{id}    — one resource
    PUT    /api/resources/{id}    — merge an update (status, capacity, ...)
    PATCH  /api/resources/{id}    — same as PUT
    DELETE /api/resources/{id}    — remove a resource
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, Request

from relief.api.repository import RecordRepository
from relief.api.schemas import (
    DeleteResponse,
    ResourceCreate,
    ResourceStatus,
    ResourceType,
    ResourceUpdate,
    changes_of,
)
from relief.core.errors import ValidationError

router = APIRouter(prefix="/api/resources", tags=["resources"])


def _repository(request: Request) -> RecordRepository:
    return request.app.state.repositories["resources"]


@router.get("", summary="List resources")
async def list_resources(
    request: Request,
    since: Optional[datetime] = Query(None, description="Only resources updated after this instant"),
    type: Optional[ResourceType] = Query(None),
    status: Optional[ResourceStatus] = Query(None),
) -> List[Dict[str, Any]]:
    resources = _repository(request).list(since=since)
    if type:
        resources = [r for r in resources if r.get("type") == type]
    if status:
        resources = [r for r in resources if r.get("status") == status]
    return resources


@router.post("", status_code=201, summary="Register a resource")
async def create_resource(request: Request, body: ResourceCreate) -> Dict[str, Any]:
    return _repository(request).create(body.model_dump(mode="json", exclude_none=True))


@router.get("/{resource_id}", summary="Get one resource")
async def get_resource(request: Request, resource_id: str) -> Dict[str, Any]:
    return _repository(request).get(resource_id)


@router.put("/{resource_id}", summary="Update a resource")
@router.patch("/{resource_id}", summary="Update a resource (partial)")
async def update_resource(request: Request, resource_id: str, body: ResourceUpdate) -> Dict[str, Any]:
    changes = changes_of(body)
    if not changes:
        raise ValidationError("No fields to update")
    return _repository(request).update(resource_id, changes)


@router.delete("/{resource_id}", response_model=DeleteResponse, summary="Delete a resource")
async def delete_resource(request: Request, resource_id: str) -> DeleteResponse:
    _repository(request).delete(resource_id)
    return DeleteResponse(message="Resource deleted successfully", id=resource_id)
