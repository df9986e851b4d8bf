"""Runtime-checkable protocols for the external collaborators."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from src.suite_shared.models import PackageNode


@runtime_checkable
class RegistryLike(Protocol):
    """The subset of the registry client the pipeline depends on."""

    async def get(self, name: str) -> Any:
        """Return the record for *name*, or None when absent."""
        ...

    async def get_dependents(self, name: str) -> list[str]:
        ...

    async def update(self, name: str, fields: dict[str, Any]) -> None:
        ...

    async def query_by_status(self, status: str, limit: int = 10) -> list[Any]:
        ...


@runtime_checkable
class ImplementationGenerator(Protocol):
    """Writes source files for a package from its implementation plan."""

    async def generate(self, name: str, plan_path: str, workspace_root: Path) -> bool:
        """Generate the package.

        Args:
            name: Scoped package name.
            plan_path: Workspace-relative path of the plan document.
            workspace_root: Root of the monorepo.

        Returns:
            True when a manifest was written for the package.
        """
        ...


@runtime_checkable
class PackageSplitAdvisor(Protocol):
    """Suggests splitting a package whose responsibilities overlap.

    No implementation ships with the pipeline.
    """

    async def advise(self, node: PackageNode) -> list[str]:
        """Return names of packages that *node* should be split into."""
        ...
