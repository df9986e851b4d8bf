"""Dependency resolution -- locate packages and expand their dependency graph.

A package is looked up in three places, in order:

1. implementation-plan documents under ``plans/packages/**`` that mention
   the name and declare a ``Package Path:`` pointing at a local manifest;
2. package manifests under ``packages/**/package.json`` (exact name, then
   directory name, then substring);
3. the registry, which only yields a node when its record names a local
   path holding a manifest.

:meth:`DependencyResolver.build_dependency_tree` then walks the declared
internal dependencies depth-first.  The post-order of that walk is the
build order: every package appears after all of its dependencies.  The
graph is kept as a NetworkX ``DiGraph`` with edges dependent -> dependency.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import networkx as nx

from src.suite_builder.config import ResolverConfig
from src.suite_builder.exceptions import DependencyCycleError, ManifestError
from src.suite_shared.constants import (
    DEFAULT_BUILD_COMMAND,
    DEFAULT_TEST_COMMAND,
    MANIFEST_FILE,
)
from src.suite_shared.models import PackageNode
from src.suite_shared.utils import iter_files, iter_manifests
from src.shared.utils import unscoped_name

logger = logging.getLogger(__name__)

_PACKAGE_PATH_RE = re.compile(r"Package Path:\s*`([^`]+)`")


@dataclass
class DependencyTree:
    """Result of expanding one or more root packages."""

    nodes: dict[str, PackageNode] = field(default_factory=dict)
    build_order: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    planned: dict[str, str] = field(default_factory=dict)
    graph: nx.DiGraph = field(default_factory=nx.DiGraph)

    def ordered_nodes(self) -> list[PackageNode]:
        return [self.nodes[name] for name in self.build_order]

    def dependents_of(self, name: str) -> set[str]:
        """All packages that transitively depend on *name*."""
        if name not in self.graph:
            return set()
        return set(nx.ancestors(self.graph, name))

    def merge(self, other: DependencyTree) -> None:
        """Fold *other* into this tree; packages keep their first build position."""
        self.graph = nx.compose(self.graph, other.graph)
        for name in other.build_order:
            if name not in self.nodes:
                self.nodes[name] = other.nodes[name]
                self.build_order.append(name)
        validate_build_order(self.build_order, self.nodes)


# ---------------------------------------------------------------------------
# Manifest helpers
# ---------------------------------------------------------------------------


def read_manifest(path: Path) -> dict[str, Any]:
    """Parse a ``package.json``.

    Raises:
        ManifestError: If the file is unreadable, not JSON, not an object,
            or lacks a ``name``.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ManifestError(str(path), str(exc)) from exc
    if not isinstance(data, dict):
        raise ManifestError(str(path), "top level is not an object")
    if not isinstance(data.get("name"), str) or not data["name"]:
        raise ManifestError(str(path), "missing 'name'")
    return data


def internal_dependencies(manifest: dict[str, Any], namespace: str) -> list[str]:
    """Namespace-scoped names from ``dependencies`` and ``devDependencies``."""
    names: list[str] = []
    for section in ("dependencies", "devDependencies"):
        for dep in (manifest.get(section) or {}):
            if dep.startswith(namespace) and dep not in names:
                names.append(dep)
    return names


def node_from_manifest(
    manifest_path: Path, workspace_root: Path, namespace: str, plan_path: str = ""
) -> PackageNode:
    """Build a :class:`PackageNode` from the manifest at *manifest_path*."""
    manifest = read_manifest(manifest_path)
    scripts = manifest.get("scripts") or {}
    package_dir = manifest_path.parent
    try:
        rel = package_dir.resolve().relative_to(workspace_root.resolve()).as_posix()
    except ValueError:
        rel = str(package_dir)
    return PackageNode(
        name=manifest["name"],
        path=rel,
        version=str(manifest.get("version") or "0.0.0"),
        dependencies=internal_dependencies(manifest, namespace),
        build_command=DEFAULT_BUILD_COMMAND,
        test_command=_test_command(scripts),
        plan_path=plan_path,
    )


def _test_command(scripts: dict[str, Any]) -> str:
    if "test:run" in scripts:
        return "npm run test:run"
    if "test" in scripts:
        return "npm test"
    return DEFAULT_TEST_COMMAND


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class DependencyResolver:
    """Locates packages and expands dependency trees.  Read-only."""

    def __init__(
        self,
        workspace_root: Path | str,
        registry: Any = None,
        config: ResolverConfig | None = None,
    ) -> None:
        self.workspace_root = Path(workspace_root)
        self.registry = registry
        self.config = config or ResolverConfig()

    @property
    def packages_root(self) -> Path:
        return self.workspace_root / self.config.packages_dir

    @property
    def plans_root(self) -> Path:
        return self.workspace_root / self.config.plans_dir

    # -- lookup ---------------------------------------------------------

    async def resolve(self, name: str, workspace_root: Path | str | None = None) -> PackageNode | None:
        """Locate *name*; ``None`` means the caller must wait for a plan."""
        if workspace_root is not None and Path(workspace_root) != self.workspace_root:
            return await DependencyResolver(workspace_root, self.registry, self.config).resolve(name)

        node = self._search_plans(name)
        if node is not None:
            logger.debug("Resolved %s via plan document", name)
            return node

        node = self._search_manifests(name)
        if node is not None:
            logger.debug("Resolved %s via manifest %s", name, node.path)
            return node

        node = await self._search_registry(name)
        if node is not None:
            logger.debug("Resolved %s via registry", name)
        return node

    def find_plan(self, name: str) -> str | None:
        """Workspace-relative path of the plan named after *name*, if any."""
        target = unscoped_name(name)
        for path in iter_files(self.plans_root, "*.md"):
            if path.stem == target:
                return path.relative_to(self.workspace_root).as_posix()
        return None

    def _search_plans(self, name: str) -> PackageNode | None:
        for plan in iter_files(self.plans_root, "*.md"):
            try:
                text = plan.read_text(encoding="utf-8")
            except OSError:
                continue
            if name not in text:
                continue
            match = _PACKAGE_PATH_RE.search(text)
            if not match:
                continue
            manifest_path = self.workspace_root / match.group(1).strip() / MANIFEST_FILE
            if not manifest_path.is_file():
                continue
            try:
                node = self._load(manifest_path, plan.relative_to(self.workspace_root).as_posix())
            except ManifestError as exc:
                logger.warning("Plan %s points at a bad manifest: %s", plan, exc)
                continue
            if node.name == name:
                return node
        return None

    def _search_manifests(self, name: str) -> PackageNode | None:
        candidates: list[tuple[Path, str]] = []
        for manifest_path in iter_manifests(self.packages_root):
            try:
                manifest_name = read_manifest(manifest_path)["name"]
            except ManifestError as exc:
                logger.warning("Skipping unreadable manifest: %s", exc)
                continue
            candidates.append((manifest_path, manifest_name))

        target = unscoped_name(name)
        matchers = (
            lambda path, pkg: pkg == name,
            lambda path, pkg: path.parent.name == target,
            lambda path, pkg: name in pkg,
        )
        for matches in matchers:
            for manifest_path, manifest_name in candidates:
                if matches(manifest_path, manifest_name):
                    return self._load(manifest_path, self.find_plan(manifest_name) or "")
        return None

    async def _search_registry(self, name: str) -> PackageNode | None:
        if self.registry is None:
            return None
        try:
            record = await self.registry.get(name)
        except Exception as exc:
            logger.warning("Registry lookup for %s failed: %s", name, exc)
            return None
        if record is None or not getattr(record, "local_path", None):
            return None
        manifest_path = self.workspace_root / record.local_path / MANIFEST_FILE
        if not manifest_path.is_file():
            return None
        return self._load(manifest_path, record.plan_path or "")

    def _load(self, manifest_path: Path, plan_path: str) -> PackageNode:
        return node_from_manifest(
            manifest_path, self.workspace_root, self.config.namespace, plan_path
        )

    # -- graph ------------------------------------------------------------

    async def build_dependency_tree(self, roots: str | list[str]) -> DependencyTree:
        """Expand *roots* into a dependency-ordered tree.

        Raises:
            DependencyCycleError: If a dependency leads back to an ancestor.
        """
        if isinstance(roots, str):
            roots = [roots]
        tree = DependencyTree()
        visited: set[str] = set()

        async def visit(name: str, stack: list[str]) -> str:
            if name in stack:
                raise DependencyCycleError(stack[stack.index(name):] + [name])
            if name in visited:
                return name

            node = await self.resolve(name)
            if node is None:
                visited.add(name)
                tree.missing.append(name)
                tree.graph.add_node(name, missing=True)
                plan = self.find_plan(name)
                if plan:
                    tree.planned[name] = plan
                return name

            canonical = node.name
            if canonical != name and canonical in stack:
                raise DependencyCycleError(stack[stack.index(canonical):] + [canonical])
            visited.add(name)
            if canonical in visited and canonical != name:
                return canonical
            visited.add(canonical)
            tree.nodes[canonical] = node
            tree.graph.add_node(canonical, missing=False)

            stack.append(canonical)
            for dep in node.dependencies:
                resolved = await visit(dep, stack)
                tree.graph.add_edge(canonical, resolved)
            stack.pop()
            tree.build_order.append(canonical)
            return canonical

        for root in roots:
            await visit(root, [])

        logger.info(
            "Dependency tree: %d nodes, %d missing, order=%s",
            len(tree.nodes), len(tree.missing), " -> ".join(tree.build_order),
        )
        return tree


def validate_build_order(order: list[str], nodes: dict[str, PackageNode]) -> None:
    """Assert that no package appears before one of its dependencies.

    Raises:
        ValueError: On the first forward reference found.
    """
    position = {name: i for i, name in enumerate(order)}
    for name in order:
        for dep in nodes[name].dependencies:
            if dep in position and position[dep] >= position[name]:
                raise ValueError(f"{name} is ordered before its dependency {dep}")
