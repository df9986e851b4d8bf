"""Client used by builds to signal the plan service.

Delivery is best effort: every transport failure is logged and reported as
``False``; nothing here ever raises into a build.
"""

from __future__ import annotations

import logging
from dataclasses import asdict

import httpx

from src.shared.logging import trace_id_var
from src.suite_shared.models import PlanRequest

logger = logging.getLogger(__name__)


class PlanServiceClient:
    """Fire-and-forget sender for :class:`PlanRequest` signals."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client

    async def _post(self, path: str, payload: dict | None = None) -> httpx.Response:
        headers = {}
        trace_id = trace_id_var.get("")
        if trace_id:
            headers["X-Trace-ID"] = trace_id
        if self._client is not None:
            return await self._client.post(f"{self.base_url}{path}", json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(f"{self.base_url}{path}", json=payload, headers=headers)

    async def request_plan(self, request: PlanRequest) -> bool:
        """Send *request*; True when the service accepted it."""
        payload = asdict(request)
        payload["priority"] = request.priority.value
        try:
            resp = await self._post("/api/signals/plan-request", payload)
        except httpx.HTTPError as exc:
            logger.warning("Plan service unreachable at %s: %s", self.base_url, exc)
            return False
        if resp.status_code >= 400:
            logger.warning(
                "Plan service rejected request for %s: HTTP %d",
                request.package_name, resp.status_code,
            )
            return False
        return True

    async def health(self) -> bool:
        """True when the service answers its health endpoint."""
        try:
            if self._client is not None:
                resp = await self._client.get(f"{self.base_url}/api/health")
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.get(f"{self.base_url}/api/health")
        except httpx.HTTPError:
            return False
        return resp.status_code == 200
