"""Build-side coordination with the plan service.

When a package cannot be resolved, the orchestrator asks the plan service
for a plan (best effort, never fatal) and then polls the registry for a
plan reference.  The delay between empty polls grows geometrically from
``base_delay`` by ``factor`` and is capped at ``max_delay``; the loop stops
after ``max_attempts`` polls whatever happens.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from src.shared.constants import STATUS_PLAN_NEEDED, STATUS_PLANNING
from src.suite_builder.config import PlanWaitConfig
from src.suite_shared.models import PlanPriority, PlanRequest

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class PlanWaitResult:
    found: bool
    attempts: int
    plan_path: str = ""
    branch_ref: str = ""
    reason: str = ""
    signal_delivered: bool = False


def backoff_delays(config: PlanWaitConfig) -> list[float]:
    """Sleep before each poll after the first, in order."""
    delays: list[float] = []
    delay = config.base_delay
    for _ in range(max(config.max_attempts - 1, 0)):
        delays.append(min(delay, config.max_delay))
        delay *= config.factor
    return delays


def _timeout_reason(name: str, attempts: int, delivered: bool, last_status: str | None) -> str:
    if last_status in (STATUS_PLAN_NEEDED, STATUS_PLANNING):
        return (
            f"Plan generation for {name} is queued or in progress but did not finish "
            f"within {attempts} polls; the plan service is alive but slow. "
            "Re-run the suite later or raise plan_wait.max_attempts."
        )
    if not delivered:
        return (
            f"No plan appeared for {name} after {attempts} polls and the plan request "
            "could not be delivered; the plan service is likely not running. "
            "Start it and re-run the suite."
        )
    return (
        f"No plan appeared for {name} after {attempts} polls although the plan service "
        "accepted the request; check the plan service logs for a generation failure."
    )


async def wait_for_plan(
    name: str,
    registry: Any,
    plan_client: Any,
    config: PlanWaitConfig | None = None,
    requester_id: str = "",
    sleep: Sleep = asyncio.sleep,
) -> PlanWaitResult:
    """Signal the plan service for *name* and poll until a plan is recorded.

    Args:
        name: Package that could not be resolved.
        registry: Registry client used for polling.
        plan_client: Plan service client; ``None`` skips the signal.
        config: Backoff settings.
        requester_id: Identifier of the suite run, sent with the request.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        A :class:`PlanWaitResult`; ``found`` is False after the attempt cap.
    """
    config = config or PlanWaitConfig()

    delivered = False
    if plan_client is not None:
        request = PlanRequest(
            package_name=name,
            requester_id=requester_id,
            priority=PlanPriority.HIGH,
            source="suite-builder",
        )
        delivered = await plan_client.request_plan(request)
        if not delivered:
            logger.warning("Plan request for %s was not delivered; polling anyway", name)

    delays = backoff_delays(config)
    last_status: str | None = None
    for attempt in range(1, config.max_attempts + 1):
        try:
            record = await registry.get(name)
        except Exception as exc:
            logger.warning("Poll %d for %s failed: %s", attempt, name, exc)
            record = None
        if record is not None:
            last_status = record.status or last_status
            if record.plan_path:
                logger.info("Plan for %s found after %d poll(s): %s", name, attempt, record.plan_path)
                return PlanWaitResult(
                    found=True,
                    attempts=attempt,
                    plan_path=record.plan_path,
                    branch_ref=record.branch_ref or "",
                    signal_delivered=delivered,
                )
        if attempt < config.max_attempts:
            delay = delays[attempt - 1]
            logger.debug("No plan for %s yet (poll %d); sleeping %.1fs", name, attempt, delay)
            await sleep(delay)

    reason = _timeout_reason(name, config.max_attempts, delivered, last_status)
    logger.error(reason)
    return PlanWaitResult(
        found=False,
        attempts=config.max_attempts,
        reason=reason,
        signal_delivered=delivered,
    )
