"""Registry client: remote-procedure calls over HTTP to the package registry.

Every call is a ``POST`` carrying ``{"method": ..., "params": {...}}`` and a
bearer credential.  The registry answers either with plain JSON or with a
server-sent-event stream whose ``data:`` lines hold the JSON payload; both
shapes are normalised by :func:`unwrap_response` before parsing.

The client is stateless apart from the pooled ``httpx.AsyncClient`` it owns.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx
from pydantic import AliasChoices, BaseModel, Field

from src.shared.config import RegistrySettings

logger = logging.getLogger(__name__)

_MAX_RETRIES = 2
_BACKOFF_BASE = 0.5  # seconds

# Python field name -> registry wire name for ``update`` payloads.
_WIRE_FIELDS: dict[str, str] = {
    "plan_path": "plan_file_path",
    "branch_ref": "plan_git_branch",
    "version": "current_version",
}


class RegistryError(Exception):
    """Raised when the registry cannot be reached or rejects a call."""

    def __init__(self, method: str, message: str) -> None:
        self.method = method
        super().__init__(f"Registry call '{method}' failed: {message}")


class PackageRecord(BaseModel):
    """A package record as stored by the registry."""
    name: str = Field(validation_alias=AliasChoices("name", "id", "package_name"))
    dependencies: list[str] = Field(default_factory=list)
    is_published: bool = Field(
        default=False, validation_alias=AliasChoices("is_published", "isPublished")
    )
    version: str | None = Field(
        default=None,
        validation_alias=AliasChoices("version", "current_version", "currentVersion"),
    )
    plan_path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("plan_path", "plan_file_path", "planPath"),
    )
    branch_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices("branch_ref", "plan_git_branch", "branchRef"),
    )
    status: str = ""
    local_path: str | None = Field(
        default=None, validation_alias=AliasChoices("local_path", "path")
    )

    model_config = {"populate_by_name": True, "extra": "ignore"}


def unwrap_response(text: str) -> Any:
    """Decode a registry response body.

    Plain JSON is parsed directly.  For an event stream the payload of the
    last ``data:`` line that parses as JSON wins.  A ``{"result": ...}``
    envelope is unwrapped; an ``{"error": ...}`` envelope raises.

    Raises:
        ValueError: If the body holds no JSON payload.
        RegistryError: If the payload is an error envelope.
    """
    stripped = text.strip()
    payload: Any = None
    found = False
    if stripped.startswith("event:") or stripped.startswith("data:"):
        for line in stripped.splitlines():
            if not line.startswith("data:"):
                continue
            chunk = line[len("data:"):].strip()
            try:
                payload = json.loads(chunk)
                found = True
            except json.JSONDecodeError:
                continue
    else:
        try:
            payload = json.loads(stripped) if stripped else None
            found = bool(stripped)
        except json.JSONDecodeError:
            found = False

    if not found:
        raise ValueError("registry response carried no JSON payload")

    if isinstance(payload, dict):
        if payload.get("error"):
            error = payload["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise RegistryError("response", message)
        if "result" in payload:
            return payload["result"]
    return payload


class RegistryClient:
    """Async facade over the registry's remote calls.

    Usage::

        async with RegistryClient.from_settings(RegistrySettings()) as registry:
            record = await registry.get("@bernierllc/logger")
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json", "Accept": "application/json, text/event-stream"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._url = base_url
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    @classmethod
    def from_settings(cls, settings: RegistrySettings) -> RegistryClient:
        return cls(
            base_url=settings.registry_url,
            api_key=settings.registry_api_key,
            timeout=settings.registry_timeout,
        )

    async def __aenter__(self) -> RegistryClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        """POST one call, retrying transport failures with backoff."""
        body = {"method": method, "params": params}
        last_err: Exception | None = None
        for attempt in range(_MAX_RETRIES + 1):
            try:
                resp = await self._client.post(self._url, json=body, headers=self._headers)
            except httpx.HTTPError as exc:
                last_err = exc
                if attempt < _MAX_RETRIES:
                    delay = _BACKOFF_BASE * (2 ** attempt)
                    logger.warning(
                        "Registry %s attempt %d failed: %s; retrying in %.1fs",
                        method, attempt + 1, exc, delay,
                    )
                    await asyncio.sleep(delay)
                continue

            if resp.status_code == 404:
                return None
            if resp.status_code >= 400:
                raise RegistryError(method, f"HTTP {resp.status_code}: {resp.text[:200]}")
            try:
                return unwrap_response(resp.text)
            except RegistryError as exc:
                raise RegistryError(method, str(exc)) from exc
            except ValueError as exc:
                raise RegistryError(method, str(exc)) from exc

        raise RegistryError(method, str(last_err))

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def get(self, name: str) -> PackageRecord | None:
        """Return the record for *name*, or ``None`` when the registry has none."""
        data = await self._call("packages_get", {"id": name})
        if not data:
            return None
        if isinstance(data, dict) and "package" in data:
            data = data["package"]
        if not isinstance(data, dict):
            raise RegistryError("packages_get", f"unexpected payload type {type(data).__name__}")
        data.setdefault("name", name)
        return PackageRecord.model_validate(data)

    async def get_dependents(self, name: str) -> list[str]:
        """Names of registry packages that declare a dependency on *name*."""
        data = await self._call("packages_get_dependents", {"id": name}) or []
        if isinstance(data, dict):
            data = data.get("dependents", [])
        names: list[str] = []
        for item in data:
            if isinstance(item, str):
                names.append(item)
            elif isinstance(item, dict) and item.get("name"):
                names.append(item["name"])
        return names

    async def update(self, name: str, fields: dict[str, Any]) -> None:
        """Write *fields* onto the record for *name*."""
        wire = {_WIRE_FIELDS.get(k, k): v for k, v in fields.items()}
        await self._call("packages_update", {"id": name, **wire})
        logger.info("Registry updated %s: %s", name, ", ".join(sorted(fields)))

    async def query_by_status(self, status: str, limit: int = 10) -> list[PackageRecord]:
        """Up to *limit* records currently in *status*."""
        data = await self._call("packages_query", {"filters": {"status": status}, "limit": limit}) or []
        if isinstance(data, dict):
            data = data.get("data", data.get("packages", []))
        return [PackageRecord.model_validate(item) for item in data[:limit] if isinstance(item, dict)]
