"""
Health check aggregation — deep health probe for the API process.

Checks:
    • Rate limiter (sweeper running, active windows)
    • Record repositories (record counts per collection)

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - The sync client's connectivity probe (/health/live)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from relief.core.config import settings

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_rate_limiter(limiter: Optional[Any]) -> ComponentHealth:
    """Admission controller present and sweeping."""
    comp = ComponentHealth(name="rate_limiter")
    start = time.monotonic()
    if limiter is None:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Rate limiter not configured"
    else:
        comp.details = {
            "active_windows": limiter.active_windows,
            "window_seconds": round(limiter.window_ms / 1000, 1),
            "limits": dict(limiter.limits),
        }
        if limiter.running:
            comp.message = "Sweeper running"
        else:
            # Admission still works, expired windows just linger
            comp.status = HealthStatus.DEGRADED
            comp.message = "Sweeper not running"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_repositories(repositories: Optional[Mapping[str, Any]]) -> ComponentHealth:
    """Record repositories mounted for every collection."""
    comp = ComponentHealth(name="repositories")
    start = time.monotonic()
    expected = ("alerts", "reports", "resources")
    if not repositories:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "No repositories mounted"
    else:
        missing = [name for name in expected if name not in repositories]
        comp.details = {name: len(repo) for name, repo in repositories.items()}
        if missing:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"Missing repositories: {', '.join(missing)}"
        else:
            comp.message = "All collections available"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(
    limiter: Optional[Any] = None,
    repositories: Optional[Mapping[str, Any]] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_rate_limiter(limiter),
        check_repositories(repositories),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status != HealthStatus.HEALTHY:
        logger.warning("Health check %s", report.status.value)

    return report
