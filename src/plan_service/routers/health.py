"""Health check router for the plan service."""
from __future__ import annotations

import time

from fastapi import APIRouter, Request

from src.shared.constants import PLAN_SERVICE_NAME, VERSION
from src.shared.models.plan_service import HealthStatus

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health(request: Request) -> HealthStatus:
    """Health check endpoint returning service status."""
    service = request.app.state.service
    task = getattr(request.app.state, "loop_task", None)
    loop_alive = task is None or not task.done()

    if not loop_alive:
        status = "unhealthy"
    elif service.paused:
        status = "degraded"
    else:
        status = "healthy"

    return HealthStatus(
        status=status,
        service_name=PLAN_SERVICE_NAME,
        version=VERSION,
        uptime_seconds=time.time() - service.started_at,
        details={
            "state": service.state,
            "paused": service.paused,
            "queued": len(service.queue),
            "current": service.current.package_name if service.current else None,
            "processed": service.stats.processed,
            "failed": service.stats.failed,
        },
    )
