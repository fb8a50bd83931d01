"""
Pydantic schemas for the alerts / reports / resources API.

Separated from the route handlers so the sync client tests and seed data
can build valid payloads without importing FastAPI routers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

AlertSeverity = Literal["info", "warning", "critical", "emergency"]
ReportType = Literal["incident", "damage", "resource", "other"]
ResourceType = Literal["shelter", "medical", "food", "water", "other"]
ResourceStatus = Literal["active", "inactive", "full"]

# Alert ordering in GET /alerts (most severe first)
SEVERITY_RANK: Dict[str, int] = {"emergency": 4, "critical": 3, "warning": 2, "info": 1}


class Location(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0, examples=[20.2961])
    lng: float = Field(..., ge=-180.0, le=180.0, examples=[85.8245])


class Contact(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9\-\s]{6,20}$")
    email: Optional[str] = Field(None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Capacity(BaseModel):
    total: int = Field(..., ge=0)
    available: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _available_within_total(self) -> "Capacity":
        if self.available > self.total:
            raise ValueError("available capacity cannot exceed total")
        return self


class OperatingHours(BaseModel):
    start: str = Field(..., pattern=r"^\d{2}:\d{2}$", examples=["08:00"])
    end: str = Field(..., pattern=r"^\d{2}:\d{2}$", examples=["20:00"])


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class AlertCreate(BaseModel):
    """Request body for POST /api/alerts."""
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=5, max_length=200, examples=["Flash Flood Alert"])
    description: str = Field(..., min_length=10, max_length=1000)
    severity: AlertSeverity = Field(..., examples=["critical"])
    area: str = Field(..., min_length=2, max_length=200, examples=["Mancheswar Industrial Area"])
    source: str = Field(..., min_length=2, max_length=200, examples=["City Emergency Services"])
    expiresAt: Optional[datetime] = None
    location: Optional[Location] = None
    metadata: Optional[Dict[str, str]] = None


class AlertUpdate(BaseModel):
    """Request body for PATCH /api/alerts/{id}. Only sent fields change."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=5, max_length=200)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    severity: Optional[AlertSeverity] = None
    expiresAt: Optional[datetime] = None
    seen: Optional[bool] = None


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

class ReportCreate(BaseModel):
    """Request body for POST /api/reports."""
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=5, max_length=200, examples=["Road blocked in Saheed Nagar"])
    description: str = Field(..., min_length=10, max_length=1000)
    type: ReportType = Field(..., examples=["incident"])
    location: Location
    severity: int = Field(3, ge=1, le=5)
    address: Optional[str] = Field(None, max_length=300)
    images: List[str] = Field(default_factory=list, max_length=5)
    contact: Optional[Contact] = None
    isAnonymous: bool = False
    metadata: Optional[Dict[str, str]] = None


class ReportUpdate(BaseModel):
    """PATCH /api/reports/{id} — only description, severity and status."""
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    severity: Optional[int] = Field(None, ge=1, le=5)
    status: Optional[Literal["pending", "verified", "resolved", "rejected"]] = None


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

class ResourceCreate(BaseModel):
    """Request body for POST /api/resources."""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=2, max_length=100, examples=["Kalinga Stadium Relief Camp"])
    type: ResourceType = Field(..., examples=["shelter"])
    description: str = Field(..., min_length=10, max_length=500)
    location: Location
    address: Optional[str] = Field(None, max_length=300)
    capacity: Optional[Capacity] = None
    contact: Optional[Contact] = None
    status: ResourceStatus = "active"
    operatingHours: Optional[OperatingHours] = None
    metadata: Optional[Dict[str, str]] = None


class ResourceUpdate(BaseModel):
    """PUT / PATCH /api/resources/{id}. Sent fields are merged into the record."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=2, max_length=100)
    type: Optional[ResourceType] = None
    description: Optional[str] = Field(None, min_length=10, max_length=500)
    location: Optional[Location] = None
    address: Optional[str] = Field(None, max_length=300)
    capacity: Optional[Capacity] = None
    contact: Optional[Contact] = None
    status: Optional[ResourceStatus] = None
    operationalStatus: Optional[str] = Field(None, max_length=50, examples=["limited"])
    operatingHours: Optional[OperatingHours] = None
    metadata: Optional[Dict[str, str]] = None


def changes_of(model: BaseModel) -> Dict[str, Any]:
    """JSON-ready dict of only the fields the caller sent."""
    return model.model_dump(mode="json", exclude_unset=True)


class DeleteResponse(BaseModel):
    message: str
    id: str
