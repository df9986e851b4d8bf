"""Signal endpoints: plan requests, pause/resume, and queue inspection."""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.shared.errors import ServiceUnavailableError, ValidationError
from src.shared.models.plan_service import PlanRequestBody, QueueEntry, SignalAck
from src.suite_shared.models import PlanPriority, PlanRequest

router = APIRouter(prefix="/api", tags=["signals"])


@router.post("/signals/plan-request", status_code=202)
async def plan_request(body: PlanRequestBody, request: Request) -> SignalAck:
    """Queue a plan request at high priority; no result is returned to the sender."""
    if not body.package_name.strip():
        raise ValidationError("package_name must not be blank")
    service = request.app.state.service
    if service.stopping:
        raise ServiceUnavailableError("plan service is shutting down")
    accepted = service.signal(PlanRequest(
        package_name=body.package_name.strip(),
        requester_id=body.requester_id,
        priority=PlanPriority(body.priority),
        source=body.source,
        created_at=body.created_at or datetime.now(timezone.utc).isoformat(),
    ))
    return SignalAck(accepted=accepted, queued=len(service.queue))


@router.post("/signals/pause", status_code=202)
async def pause(request: Request) -> SignalAck:
    service = request.app.state.service
    service.pause()
    return SignalAck(accepted=True, queued=len(service.queue))


@router.post("/signals/resume", status_code=202)
async def resume(request: Request) -> SignalAck:
    service = request.app.state.service
    service.resume()
    return SignalAck(accepted=True, queued=len(service.queue))


@router.get("/queue")
async def queue(request: Request) -> list[QueueEntry]:
    """Queued requests in serving order."""
    return [
        QueueEntry(
            package_name=r.package_name,
            priority=r.priority.value,
            requester_id=r.requester_id,
            source=r.source,
            created_at=r.created_at,
        )
        for r in request.app.state.service.queue.snapshot()
    ]
