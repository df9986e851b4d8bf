"""Wire models for the Plan Coordination Service HTTP API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HealthStatus(BaseModel):
    """Health of the plan service and its scheduler loop."""
    status: str = Field(
        default="healthy",
        pattern=r"^(healthy|degraded|unhealthy)$"
    )
    service_name: str
    version: str
    uptime_seconds: float
    details: dict[str, Any] = Field(default_factory=dict)


class PlanRequestBody(BaseModel):
    """Wire form of a plan request signal."""
    package_name: str = Field(min_length=1)
    requester_id: str = ""
    priority: str = Field(default="high", pattern=r"^(high|low)$")
    source: str = "suite-builder"
    created_at: str | None = None


class SignalAck(BaseModel):
    accepted: bool
    queued: int


class QueueEntry(BaseModel):
    package_name: str
    priority: str
    requester_id: str
    source: str
    created_at: str
