"""Test doubles and workspace builders shared across the test suite."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from src.quality_gate.scoring import calculate_compliance_score
from src.registry.client import PackageRecord, RegistryError
from src.shared.utils import unscoped_name
from src.suite_builder.executor import BuildResult, TestRunResult
from src.suite_builder.publisher import TransportResult
from src.suite_shared.models import (
    ComplianceResult,
    DocumentationResult,
    LicenseResult,
    LintResult,
    PackageNode,
    PlanRequest,
    SecurityResult,
    StructureResult,
    TypeCheckResult,
    UnitTestResult,
)

NS = "@bernierllc/"


# ---------------------------------------------------------------------------
# Workspace helpers
# ---------------------------------------------------------------------------


def write_manifest(
    root: Path,
    short_name: str,
    version: str = "1.0.0",
    dependencies: dict[str, str] | None = None,
    dev_dependencies: dict[str, str] | None = None,
    **extra: Any,
) -> Path:
    """Write ``packages/<short_name>/package.json`` and return its path."""
    package_dir = root / "packages" / short_name
    package_dir.mkdir(parents=True, exist_ok=True)
    manifest: dict[str, Any] = {
        "name": f"{NS}{short_name}",
        "version": version,
        "description": f"The {short_name} package",
        "main": "dist/index.js",
        "scripts": {"build": "tsc", "test": "jest"},
    }
    if dependencies:
        manifest["dependencies"] = dependencies
    if dev_dependencies:
        manifest["devDependencies"] = dev_dependencies
    manifest.update(extra)
    path = package_dir / "package.json"
    path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    return path


def read_json(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


def passing_compliance(name: str, coverage: float = 100.0) -> ComplianceResult:
    """A result where every check passes and only coverage varies."""
    result = ComplianceResult(
        package_name=name,
        structure=StructureResult(checks_total=9),
        type_check=TypeCheckResult(),
        lint=LintResult(),
        tests=UnitTestResult(passed=True, coverage=coverage),
        security=SecurityResult(vulnerabilities={"low": 0}),
        documentation=DocumentationResult(has_readme=True, sections_total=4),
        license=LicenseResult(has_license_file=True, license_field="MIT"),
    )
    result.score = calculate_compliance_score(result)
    return result


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRegistry:
    """In-memory registry with the same async surface as ``RegistryClient``."""

    def __init__(self) -> None:
        self.records: dict[str, PackageRecord] = {}
        self.get_calls: dict[str, int] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.fail_gets = False
        self.fail_updates = False
        self._reveal: dict[str, tuple[int, str]] = {}

    def add(self, name: str, **fields: Any) -> PackageRecord:
        record = PackageRecord(name=name, **fields)
        self.records[name] = record
        return record

    def reveal_plan(self, name: str, plan_path: str, after: int) -> None:
        """Make ``get(name)`` report *plan_path* from the *after*-th next call on."""
        self._reveal[name] = (self.get_calls.get(name, 0) + after, plan_path)

    async def get(self, name: str) -> PackageRecord | None:
        self.get_calls[name] = self.get_calls.get(name, 0) + 1
        if self.fail_gets:
            raise RegistryError("packages_get", "connection refused")
        reveal = self._reveal.get(name)
        if reveal is not None and self.get_calls[name] >= reveal[0]:
            record = self.records.setdefault(name, PackageRecord(name=name))
            record.plan_path = reveal[1]
            record.branch_ref = f"plan/{unscoped_name(name)}"
            record.status = "plan_written"
        return self.records.get(name)

    async def get_dependents(self, name: str) -> list[str]:
        return [r.name for r in self.records.values() if name in r.dependencies]

    async def update(self, name: str, fields: dict[str, Any]) -> None:
        if self.fail_updates:
            raise RegistryError("packages_update", "connection refused")
        self.updates.append((name, dict(fields)))
        record = self.records.setdefault(name, PackageRecord(name=name))
        for key, value in fields.items():
            setattr(record, key, value)

    async def query_by_status(self, status: str, limit: int = 10) -> list[PackageRecord]:
        return [r for r in self.records.values() if r.status == status][:limit]


class FakePlanClient:
    """Plan service stand-in: an accepted request yields a plan after N polls."""

    def __init__(self, registry: FakeRegistry | None, polls_until_plan: int = 2, deliver: bool = True) -> None:
        self.registry = registry
        self.polls_until_plan = polls_until_plan
        self.deliver = deliver
        self.requests: list[PlanRequest] = []

    async def request_plan(self, request: PlanRequest) -> bool:
        self.requests.append(request)
        if self.deliver and self.registry is not None and self.polls_until_plan > 0:
            self.registry.reveal_plan(
                request.package_name,
                f"plans/packages/{unscoped_name(request.package_name)}.md",
                after=self.polls_until_plan,
            )
        return self.deliver


class FakeExecutor:
    """Build executor whose outcome is chosen per package path."""

    def __init__(self, failing_builds: set[str] | None = None, failing_tests: set[str] | None = None,
                 coverage: float = 100.0) -> None:
        self.failing_builds = failing_builds or set()
        self.failing_tests = failing_tests or set()
        self.coverage = coverage
        self.built: list[str] = []
        self.tested: list[str] = []

    async def build(self, path: Path | str, command: str) -> BuildResult:
        path = str(path)
        self.built.append(path)
        ok = path not in self.failing_builds
        return BuildResult(success=ok, duration_s=0.01, output="" if ok else "error TS1005", exit_code=0 if ok else 2)

    async def test(self, path: Path | str, command: str) -> TestRunResult:
        path = str(path)
        self.tested.append(path)
        ok = path not in self.failing_tests
        return TestRunResult(
            success=ok, duration_s=0.01, coverage=self.coverage,
            output="" if ok else "1 failing", exit_code=0 if ok else 1,
        )


class StubGate:
    """Compliance gate returning a fixed coverage-driven result per package."""

    def __init__(self, coverage: float = 100.0, per_package: dict[str, float] | None = None) -> None:
        self.coverage = coverage
        self.per_package = per_package or {}
        self.evaluated: list[str] = []

    async def evaluate(self, node: PackageNode, test_result: TestRunResult | None = None) -> ComplianceResult:
        self.evaluated.append(node.name)
        return passing_compliance(node.name, self.per_package.get(node.name, self.coverage))


class RecordingTransport:
    """Publish transport that records calls instead of running npm."""

    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.calls: list[tuple[Path, str, bool]] = []
        self.published_versions: list[str] = []

    async def publish(self, package_dir: Path, visibility: str, dry_run: bool) -> TransportResult:
        self.calls.append((package_dir, visibility, dry_run))
        self.published_versions.append(read_json(package_dir / "package.json")["version"])
        if not self.succeed:
            return TransportResult(success=False, output="E403 forbidden")
        return TransportResult(success=True, registry_url=f"https://registry.example/{package_dir.name}")




class WritingImplementer:
    """Implementation generator that writes a minimal manifest for the package."""

    def __init__(self, result: bool = True, version: str = "1.0.0") -> None:
        self.result = result
        self.version = version
        self.calls: list[tuple[str, str]] = []

    async def generate(self, name: str, plan_path: str, workspace_root: Path) -> bool:
        self.calls.append((name, plan_path))
        if self.result:
            write_manifest(Path(workspace_root), unscoped_name(name), version=self.version)
        return self.result


FULL_README = "# pkg\n\n## Installation\n\n## Usage\n\n## API Reference\n\n## License\n"


def complete_package(workspace: Path, short_name: str = "alpha") -> Path:
    """A package that satisfies every filesystem check; returns its directory."""
    manifest = write_manifest(workspace, short_name, license="MIT")
    package_dir = manifest.parent
    (package_dir / "README.md").write_text(FULL_README, encoding="utf-8")
    (package_dir / "LICENSE").write_text("MIT", encoding="utf-8")
    (package_dir / "src").mkdir(exist_ok=True)
    (package_dir / "src" / "index.ts").write_text("export {};\n", encoding="utf-8")
    return package_dir
