"""Tests for the dependency resolver: lookup order, ordering, cycles, misses."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.suite_builder.exceptions import DependencyCycleError, ManifestError
from src.suite_builder.resolver import (
    DependencyResolver,
    DependencyTree,
    internal_dependencies,
    read_manifest,
    validate_build_order,
)
from src.suite_shared.models import PackageNode
from tests.fixtures import NS, FakeRegistry, write_manifest


def dep(short: str, spec: str = "^1.0.0") -> dict[str, str]:
    return {f"{NS}{short}": spec}


# ---------------------------------------------------------------------------
# Manifest helpers
# ---------------------------------------------------------------------------


class TestReadManifest:
    def test_reads_valid_manifest(self, workspace: Path) -> None:
        path = write_manifest(workspace, "alpha")
        assert read_manifest(path)["name"] == f"{NS}alpha"

    def test_invalid_json_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "package.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ManifestError):
            read_manifest(path)

    def test_missing_name_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "package.json"
        path.write_text(json.dumps({"version": "1.0.0"}), encoding="utf-8")
        with pytest.raises(ManifestError, match="missing 'name'"):
            read_manifest(path)

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ManifestError):
            read_manifest(tmp_path / "package.json")

    def test_internal_dependencies_filters_namespace(self) -> None:
        manifest = {
            "dependencies": {"lodash": "^4.0.0", f"{NS}core": "^1.0.0"},
            "devDependencies": {f"{NS}testing": "^0.1.0", f"{NS}core": "^1.0.0"},
        }
        assert internal_dependencies(manifest, NS) == [f"{NS}core", f"{NS}testing"]


# ---------------------------------------------------------------------------
# Lookup order
# ---------------------------------------------------------------------------


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolves_by_exact_manifest_name(self, workspace: Path) -> None:
        write_manifest(workspace, "alpha", version="2.1.0", dependencies=dep("beta"))
        node = await DependencyResolver(workspace).resolve(f"{NS}alpha")
        assert node is not None
        assert node.path == "packages/alpha"
        assert node.version == "2.1.0"
        assert node.dependencies == [f"{NS}beta"]
        assert node.test_command == "npm test"

    @pytest.mark.asyncio
    async def test_exact_name_beats_substring_match(self, workspace: Path) -> None:
        aaa = workspace / "packages" / "aaa"
        aaa.mkdir()
        (aaa / "package.json").write_text(json.dumps({"name": f"{NS}logger-core"}), encoding="utf-8")
        zzz = workspace / "packages" / "zzz"
        zzz.mkdir()
        (zzz / "package.json").write_text(json.dumps({"name": f"{NS}logger"}), encoding="utf-8")

        node = await DependencyResolver(workspace).resolve(f"{NS}logger")
        assert node is not None
        assert node.path == "packages/zzz"

    @pytest.mark.asyncio
    async def test_directory_name_match(self, workspace: Path) -> None:
        legacy = workspace / "packages" / "cache"
        legacy.mkdir()
        (legacy / "package.json").write_text(json.dumps({"name": "@legacy/kv"}), encoding="utf-8")
        node = await DependencyResolver(workspace).resolve(f"{NS}cache")
        assert node is not None
        assert node.name == "@legacy/kv"

    @pytest.mark.asyncio
    async def test_plan_document_is_searched_first(self, workspace: Path) -> None:
        custom = workspace / "libs" / "alpha-impl"
        custom.mkdir(parents=True)
        (custom / "package.json").write_text(
            json.dumps({"name": f"{NS}alpha", "version": "0.3.0"}), encoding="utf-8",
        )
        (workspace / "plans" / "packages" / "alpha.md").write_text(
            f"# {NS}alpha\n\nPackage Path: `libs/alpha-impl`\n", encoding="utf-8",
        )
        node = await DependencyResolver(workspace).resolve(f"{NS}alpha")
        assert node is not None
        assert node.path == "libs/alpha-impl"
        assert node.plan_path == "plans/packages/alpha.md"

    @pytest.mark.asyncio
    async def test_registry_fallback_uses_local_path(self, workspace: Path, registry: FakeRegistry) -> None:
        vendor = workspace / "vendor" / "gamma"
        vendor.mkdir(parents=True)
        (vendor / "package.json").write_text(json.dumps({"name": f"{NS}gamma"}), encoding="utf-8")
        registry.add(f"{NS}gamma", local_path="vendor/gamma")

        node = await DependencyResolver(workspace, registry).resolve(f"{NS}gamma")
        assert node is not None
        assert node.path == "vendor/gamma"

    @pytest.mark.asyncio
    async def test_registry_error_is_a_miss(self, workspace: Path, registry: FakeRegistry) -> None:
        registry.fail_gets = True
        assert await DependencyResolver(workspace, registry).resolve(f"{NS}ghost") is None

    @pytest.mark.asyncio
    async def test_unknown_package_returns_none(self, workspace: Path) -> None:
        assert await DependencyResolver(workspace).resolve(f"{NS}ghost") is None

    @pytest.mark.asyncio
    async def test_test_run_script_preferred(self, workspace: Path) -> None:
        write_manifest(workspace, "alpha", scripts={"build": "tsc", "test": "jest --watch", "test:run": "jest"})
        node = await DependencyResolver(workspace).resolve(f"{NS}alpha")
        assert node is not None
        assert node.test_command == "npm run test:run"


# ---------------------------------------------------------------------------
# Tree expansion
# ---------------------------------------------------------------------------


class TestBuildDependencyTree:
    @pytest.mark.asyncio
    async def test_chain_is_ordered_dependencies_first(self, workspace: Path) -> None:
        write_manifest(workspace, "app", dependencies=dep("service"))
        write_manifest(workspace, "service", dependencies=dep("util"))
        write_manifest(workspace, "util")

        tree = await DependencyResolver(workspace).build_dependency_tree(f"{NS}app")
        assert tree.build_order == [f"{NS}util", f"{NS}service", f"{NS}app"]
        assert tree.missing == []

    @pytest.mark.asyncio
    async def test_diamond_every_dependency_precedes_dependent(self, workspace: Path) -> None:
        write_manifest(workspace, "top", dependencies={**dep("left"), **dep("right")})
        write_manifest(workspace, "left", dependencies=dep("base"))
        write_manifest(workspace, "right", dependencies=dep("base"))
        write_manifest(workspace, "base")

        tree = await DependencyResolver(workspace).build_dependency_tree(f"{NS}top")
        position = {name: i for i, name in enumerate(tree.build_order)}
        assert len(tree.build_order) == 4
        for node in tree.nodes.values():
            for d in node.dependencies:
                assert position[d] < position[node.name]
        validate_build_order(tree.build_order, tree.nodes)

    @pytest.mark.asyncio
    async def test_cycle_raises(self, workspace: Path) -> None:
        write_manifest(workspace, "left", dependencies=dep("right"))
        write_manifest(workspace, "right", dependencies=dep("left"))

        with pytest.raises(DependencyCycleError) as exc_info:
            await DependencyResolver(workspace).build_dependency_tree(f"{NS}left")
        assert exc_info.value.cycle == [f"{NS}left", f"{NS}right", f"{NS}left"]

    @pytest.mark.asyncio
    async def test_self_dependency_is_a_cycle(self, workspace: Path) -> None:
        write_manifest(workspace, "loop", dependencies=dep("loop"))
        with pytest.raises(DependencyCycleError):
            await DependencyResolver(workspace).build_dependency_tree(f"{NS}loop")

    @pytest.mark.asyncio
    async def test_missing_dependency_is_recorded(self, workspace: Path) -> None:
        write_manifest(workspace, "app", dependencies=dep("ghost"))
        tree = await DependencyResolver(workspace).build_dependency_tree(f"{NS}app")
        assert tree.missing == [f"{NS}ghost"]
        assert tree.build_order == [f"{NS}app"]
        assert tree.planned == {}

    @pytest.mark.asyncio
    async def test_missing_dependency_with_plan_is_planned(self, workspace: Path) -> None:
        write_manifest(workspace, "app", dependencies=dep("ghost"))
        (workspace / "plans" / "packages" / "ghost.md").write_text("# Overview\n", encoding="utf-8")
        tree = await DependencyResolver(workspace).build_dependency_tree(f"{NS}app")
        assert tree.planned == {f"{NS}ghost": "plans/packages/ghost.md"}

    @pytest.mark.asyncio
    async def test_multiple_roots_share_nodes(self, workspace: Path) -> None:
        write_manifest(workspace, "one", dependencies=dep("shared"))
        write_manifest(workspace, "two", dependencies=dep("shared"))
        write_manifest(workspace, "shared")
        tree = await DependencyResolver(workspace).build_dependency_tree([f"{NS}one", f"{NS}two"])
        assert tree.build_order == [f"{NS}shared", f"{NS}one", f"{NS}two"]

    @pytest.mark.asyncio
    async def test_dependents_of(self, workspace: Path) -> None:
        write_manifest(workspace, "app", dependencies=dep("service"))
        write_manifest(workspace, "service", dependencies=dep("util"))
        write_manifest(workspace, "util")
        tree = await DependencyResolver(workspace).build_dependency_tree(f"{NS}app")
        assert tree.dependents_of(f"{NS}util") == {f"{NS}service", f"{NS}app"}
        assert tree.dependents_of("unknown") == set()


class TestGraphHelpers:
    @pytest.mark.asyncio
    async def test_merge_keeps_first_position_and_graph(self, workspace: Path) -> None:
        write_manifest(workspace, "one", dependencies=dep("shared"))
        write_manifest(workspace, "two", dependencies=dep("shared"))
        write_manifest(workspace, "shared")
        resolver = DependencyResolver(workspace)
        suite = await resolver.build_dependency_tree(f"{NS}one")
        suite.merge(await resolver.build_dependency_tree(f"{NS}two"))
        assert suite.build_order == [f"{NS}shared", f"{NS}one", f"{NS}two"]
        assert [n.name for n in suite.ordered_nodes()] == suite.build_order
        assert suite.dependents_of(f"{NS}shared") == {f"{NS}one", f"{NS}two"}

    def test_merge_rejects_dependency_after_dependent(self) -> None:
        first = DependencyTree(
            nodes={"a": PackageNode(name="a", path="a", dependencies=["b"])},
            build_order=["a"],
        )
        second = DependencyTree(nodes={"b": PackageNode(name="b", path="b")}, build_order=["b"])
        with pytest.raises(ValueError):
            first.merge(second)

    def test_validate_build_order_rejects_forward_reference(self) -> None:
        nodes = {
            "a": PackageNode(name="a", path="a", dependencies=["b"]),
            "b": PackageNode(name="b", path="b"),
        }
        with pytest.raises(ValueError):
            validate_build_order(["a", "b"], nodes)
