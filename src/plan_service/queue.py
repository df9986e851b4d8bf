"""Two-tier priority queue of plan requests.

High-priority requests (a blocked build asked for the plan) are always
served before low-priority ones (found by the service's own discovery
scan); within a tier the order is FIFO.  A package is queued at most once:
a high request for a package already waiting at low priority promotes it,
any other duplicate is ignored.

The queue is only touched from the service's event loop, so a push from a
signal handler never interleaves with a pop from the drain loop.
"""

from __future__ import annotations

import logging
from collections import deque

from src.suite_shared.models import PlanPriority, PlanRequest

logger = logging.getLogger(__name__)


class PlanQueue:
    """In-memory queue owned by one :class:`PlanCoordinationService`."""

    def __init__(self) -> None:
        self._high: deque[PlanRequest] = deque()
        self._low: deque[PlanRequest] = deque()

    def __len__(self) -> int:
        return len(self._high) + len(self._low)

    def __contains__(self, package_name: object) -> bool:
        return any(r.package_name == package_name for r in (*self._high, *self._low))

    def push(self, request: PlanRequest) -> bool:
        """Insert *request*; returns False when it was a duplicate."""
        name = request.package_name
        if request.priority == PlanPriority.HIGH:
            if any(r.package_name == name for r in self._high):
                return False
            for queued in list(self._low):
                if queued.package_name == name:
                    self._low.remove(queued)
                    logger.info("Promoted %s from low to high priority", name)
                    break
            self._high.append(request)
        else:
            if name in self:
                return False
            self._low.append(request)
        return True

    def pop(self) -> PlanRequest | None:
        """Remove and return the head request, or ``None`` when empty."""
        if self._high:
            return self._high.popleft()
        if self._low:
            return self._low.popleft()
        return None

    def snapshot(self) -> list[PlanRequest]:
        """Queued requests in the order they would be served."""
        return [*self._high, *self._low]
