"""Plan Coordination Service -- a single scheduler per workspace.

The service owns a :class:`PlanQueue` and a two-state machine:

* ``idle``     -- the queue is empty; the service runs a bounded registry
  query for packages in ``plan_needed`` status with no plan yet and queues
  each one at low priority;
* ``draining`` -- the queue is non-empty; the head request is popped, the
  plan generator is invoked, and the plan location and branch are written
  back to the registry.

A failed request is logged and dropped.  It is never re-queued here; the
build that asked for it keeps polling and will signal again on its next run.
Signals are accepted in either state and always enter the high tier.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from transitions.extensions.asyncio import AsyncMachine, AsyncState

from src.plan_service.generator import GeneratedPlan, PlanGenerator
from src.plan_service.queue import PlanQueue
from src.shared.constants import STATUS_PLAN_NEEDED, STATUS_PLAN_WRITTEN, STATUS_PLANNING
from src.suite_shared.constants import PLANS_DIR
from src.suite_shared.models import PlanPriority, PlanRequest

logger = logging.getLogger(__name__)

STATES: list[AsyncState] = [
    AsyncState("idle"),
    AsyncState("draining"),
]

TRANSITIONS: list[dict[str, Any]] = [
    {
        "trigger": "work_available",
        "source": "idle",
        "dest": "draining",
        "conditions": ["has_work"],
    },
    {
        "trigger": "queue_drained",
        "source": "draining",
        "dest": "idle",
        "unless": ["has_work"],
    },
]


@dataclass
class ServiceStats:
    signals: int = 0
    discovered: int = 0
    processed: int = 0
    failed: int = 0


class PlanCoordinationService:
    """Serialises plan generation for every build that needs a plan.

    Construct one per workspace and run :meth:`run_forever` as a task; it
    returns only after :meth:`stop`.
    """

    def __init__(
        self,
        registry: Any,
        generator: PlanGenerator,
        workspace_root: Path | str = ".",
        discovery_limit: int = 10,
        idle_interval: float = 30.0,
        queue: PlanQueue | None = None,
    ) -> None:
        self.registry = registry
        self.generator = generator
        self.workspace_root = Path(workspace_root)
        self.discovery_limit = discovery_limit
        self.idle_interval = idle_interval
        self.queue = queue or PlanQueue()
        self.stats = ServiceStats()
        self.paused = False
        self.current: PlanRequest | None = None
        self.started_at = time.time()
        self._stopping = False
        self._wakeup = asyncio.Event()
        self.machine = AsyncMachine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="idle",
            auto_transitions=False,
            send_event=True,
            queued=True,
            ignore_invalid_triggers=True,
        )

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def has_work(self, *args, **kwargs) -> bool:
        return len(self.queue) > 0

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def signal(self, request: PlanRequest) -> bool:
        """Accept a plan request from a build; always high priority."""
        if request.priority != PlanPriority.HIGH:
            request.priority = PlanPriority.HIGH
        accepted = self.queue.push(request)
        self.stats.signals += 1
        logger.info(
            "Plan request for %s from %s %s (queue=%d)",
            request.package_name, request.requester_id or "unknown",
            "queued" if accepted else "already queued", len(self.queue),
        )
        self._wakeup.set()
        return accepted

    def pause(self) -> None:
        self.paused = True
        logger.info("Plan service paused with %d queued request(s)", len(self.queue))

    def resume(self) -> None:
        self.paused = False
        logger.info("Plan service resumed")
        self._wakeup.set()

    def stop(self) -> None:
        self._stopping = True
        self._wakeup.set()

    @property
    def stopping(self) -> bool:
        return self._stopping

    # ------------------------------------------------------------------
    # Work
    # ------------------------------------------------------------------

    async def discover(self) -> int:
        """Queue un-planned registry packages at low priority; returns how many."""
        try:
            records = await self.registry.query_by_status(STATUS_PLAN_NEEDED, self.discovery_limit)
        except Exception as exc:
            logger.warning("Discovery query failed: %s", exc)
            return 0
        added = 0
        for record in records[: self.discovery_limit]:
            if record.plan_path:
                continue
            request = PlanRequest(
                package_name=record.name,
                requester_id="discovery",
                priority=PlanPriority.LOW,
                source="discovery",
            )
            if self.queue.push(request):
                added += 1
        if added:
            self.stats.discovered += added
            logger.info("Discovery queued %d package(s) needing plans", added)
        return added

    async def process_next(self) -> GeneratedPlan | None:
        """Generate the plan for the head request; ``None`` if empty or failed."""
        request = self.queue.pop()
        if request is None:
            return None
        name = request.package_name
        self.current = request
        logger.info("Generating plan for %s (%s priority)", name, request.priority.value)
        try:
            record = await self.registry.get(name)
            dependencies = list(record.dependencies) if record is not None else []
            await self._mark(name, STATUS_PLANNING)
            plan = await self.generator.generate(name, dependencies, self.workspace_root / PLANS_DIR)
            await self.registry.update(name, {
                "plan_path": plan.plan_path,
                "branch_ref": plan.branch_ref,
                "status": STATUS_PLAN_WRITTEN,
            })
        except Exception as exc:
            self.stats.failed += 1
            logger.error("Plan request for %s failed and was dropped: %s", name, exc)
            await self._mark(name, STATUS_PLAN_NEEDED)
            return None
        finally:
            self.current = None

        self.stats.processed += 1
        logger.info("Plan for %s written to %s (%s)", name, plan.plan_path, plan.branch_ref)
        return plan

    async def _mark(self, name: str, status: str) -> None:
        try:
            await self.registry.update(name, {"status": status})
        except Exception as exc:
            logger.warning("Could not set %s status to %s: %s", name, status, exc)

    async def run_once(self) -> bool:
        """One scheduler iteration; True when a request was processed."""
        if self.paused:
            return False
        if not self.queue:
            await self.queue_drained()
            await self.discover()
        if not self.queue:
            return False
        await self.work_available()
        await self.process_next()
        return True

    async def run_forever(self) -> None:
        """Drain and discover until :meth:`stop` is called."""
        logger.info("Plan service started for workspace %s", self.workspace_root)
        while not self._stopping:
            processed = await self.run_once()
            if processed or self._stopping:
                continue
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.idle_interval)
            except asyncio.TimeoutError:
                pass
        logger.info(
            "Plan service stopped: processed=%d failed=%d queued=%d",
            self.stats.processed, self.stats.failed, len(self.queue),
        )
