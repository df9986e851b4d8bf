"""Shared data models for the suite build pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StepStatus(str, Enum):
    """Status of a single build or test step on a package node."""
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class PackageStatus(str, Enum):
    """Terminal status of a package within one suite run."""
    PUBLISHED = "published"
    BLOCKED_BY_QUALITY = "blocked_by_quality"
    FAILED_BUILD = "failed_build"
    FAILED_TEST = "failed_test"
    FAILED_PUBLISH = "failed_publish"
    FAILED_RESOLUTION = "failed_resolution"
    AWAITING_PLAN = "awaiting_plan"
    SKIPPED = "skipped"


class PlanPriority(str, Enum):
    """Priority tier of a plan request."""
    HIGH = "high"
    LOW = "low"


class BumpType(str, Enum):
    """Semantic version bump class."""
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


class ComplianceLevel(str, Enum):
    """Level derived from a compliance score."""
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    BLOCKED = "blocked"


class TaskPriority(str, Enum):
    """Priority of a remediation task."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class PackageNode:
    """One package in a resolved build plan."""
    name: str
    path: str
    version: str = "0.0.0"
    dependencies: list[str] = field(default_factory=list)
    build_command: str = ""
    test_command: str = ""
    build_status: StepStatus = StepStatus.PENDING
    test_status: StepStatus = StepStatus.PENDING
    plan_path: str = ""


@dataclass
class PlanRequest:
    """A request for the plan service to write an implementation plan."""
    package_name: str
    requester_id: str = ""
    priority: PlanPriority = PlanPriority.HIGH
    source: str = "suite-builder"
    created_at: str = field(default_factory=_now)


@dataclass
class CheckIssue:
    """A normalized diagnostic emitted by a toolchain check."""
    message: str
    file: str = ""
    line: int = 0
    rule: str = ""

    def location(self) -> str:
        if not self.file:
            return ""
        return f"{self.file}:{self.line}" if self.line else self.file


@dataclass
class StructureResult:
    """Presence of required files and manifest fields."""
    missing_files: list[str] = field(default_factory=list)
    invalid_fields: list[str] = field(default_factory=list)
    checks_total: int = 0
    executed: bool = True

    @property
    def passed(self) -> bool:
        return self.executed and not self.missing_files and not self.invalid_fields


@dataclass
class TypeCheckResult:
    errors: list[CheckIssue] = field(default_factory=list)
    executed: bool = True
    output: str = ""

    @property
    def passed(self) -> bool:
        return self.executed and not self.errors


@dataclass
class LintResult:
    errors: list[CheckIssue] = field(default_factory=list)
    warnings: list[CheckIssue] = field(default_factory=list)
    executed: bool = True
    output: str = ""

    @property
    def passed(self) -> bool:
        return self.executed and not self.errors


@dataclass
class UnitTestResult:
    passed: bool = False
    coverage: float = 0.0
    executed: bool = True
    output: str = ""


@dataclass
class SecurityResult:
    """Vulnerability counts by severity from the package audit."""
    vulnerabilities: dict[str, int] = field(default_factory=dict)
    executed: bool = True

    @property
    def blocking(self) -> int:
        return self.vulnerabilities.get("critical", 0) + self.vulnerabilities.get("high", 0)


@dataclass
class DocumentationResult:
    has_readme: bool = False
    missing_sections: list[str] = field(default_factory=list)
    sections_total: int = 0


@dataclass
class LicenseResult:
    has_license_file: bool = False
    license_field: str = ""


@dataclass
class ComplianceScore:
    """Weighted 0-100 score and the level it maps to."""
    score: float
    level: ComplianceLevel
    breakdown: dict[str, float] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.level != ComplianceLevel.BLOCKED


@dataclass
class ComplianceResult:
    """All check results for one package plus the derived score."""
    package_name: str
    structure: StructureResult = field(default_factory=StructureResult)
    type_check: TypeCheckResult = field(default_factory=TypeCheckResult)
    lint: LintResult = field(default_factory=LintResult)
    tests: UnitTestResult = field(default_factory=UnitTestResult)
    security: SecurityResult = field(default_factory=SecurityResult)
    documentation: DocumentationResult = field(default_factory=DocumentationResult)
    license: LicenseResult = field(default_factory=LicenseResult)
    score: ComplianceScore | None = None

    @property
    def passed(self) -> bool:
        return self.score is not None and self.score.passed


@dataclass
class RemediationTask:
    """An actionable fix derived from a failing compliance check."""
    category: str
    priority: TaskPriority
    description: str
    file: str = ""
    line: int = 0


@dataclass(frozen=True)
class DependentUpdate:
    """One manifest entry rewritten during version propagation."""
    package_name: str
    manifest_path: str
    field: str
    old_spec: str
    new_spec: str


@dataclass(frozen=True)
class VersionChange:
    """Immutable record of one successful publish."""
    package_name: str
    previous_version: str
    new_version: str
    bump: BumpType | None = None
    dependents_updated: tuple[str, ...] = ()


@dataclass
class PackageOutcome:
    """Terminal record for one package in a suite run."""
    package_name: str
    status: PackageStatus
    version: str = ""
    score: float | None = None
    level: str = ""
    error: str = ""
    duration_s: float = 0.0
    version_change: VersionChange | None = None


@dataclass
class SuiteReport:
    """Per-package outcomes of one suite run."""
    suite_id: str
    outcomes: list[PackageOutcome] = field(default_factory=list)
    started_at: str = field(default_factory=_now)
    finished_at: str = ""

    def count(self, status: PackageStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def success(self) -> bool:
        return bool(self.outcomes) and all(
            o.status == PackageStatus.PUBLISHED for o in self.outcomes
        )

    def outcome(self, name: str) -> PackageOutcome | None:
        for o in self.outcomes:
            if o.package_name == name:
                return o
        return None

    def to_dict(self) -> dict[str, Any]:
        from dataclasses import asdict

        return asdict(self)
