"""Individual compliance checks run against a built package.

Structural, documentation and license checks only read the filesystem.
Type, lint, test and security checks invoke the package's own tooling as a
subprocess and normalise its output into :class:`CheckIssue` lists.  A tool
that cannot be run (missing binary, timeout, unparseable output) marks the
check ``executed=False``, which scores zero.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from src.suite_builder.executor import BuildExecutor, run_command
from src.suite_builder.resolver import read_manifest
from src.suite_builder.exceptions import ManifestError
from src.suite_shared.constants import (
    MANIFEST_FILE,
    REQUIRED_FILES,
    REQUIRED_MANIFEST_FIELDS,
    REQUIRED_README_SECTIONS,
    REQUIRED_SCRIPTS,
)
from src.suite_shared.models import (
    CheckIssue,
    DocumentationResult,
    LicenseResult,
    LintResult,
    SecurityResult,
    StructureResult,
    TypeCheckResult,
    UnitTestResult,
)

logger = logging.getLogger(__name__)

# src/index.ts(12,5): error TS2322: Type 'string' is not assignable ...
_TSC_RE = re.compile(r"^(?P<file>[^\s(][^(]*)\((?P<line>\d+),\d+\):\s*error\s+(?P<rule>TS\d+):\s*(?P<msg>.+)$")
# /abs/src/index.ts:3:7: 'x' is assigned a value but never used. [Error/no-unused-vars]
_ESLINT_UNIX_RE = re.compile(
    r"^(?P<file>[^:]+):(?P<line>\d+):\d+:\s*(?P<msg>.+?)\s*\[(?P<sev>Error|Warning)(?:/(?P<rule>[^\]]+))?\]$"
)
_LEGACY_LINT_RE = re.compile(r"LINT (?P<sev>ERROR|WARNING):\s*(?P<file>[^:]+):(?P<line>\d+)\s*-\s*(?P<msg>.+)")
_LICENSE_FILES = ("LICENSE", "LICENSE.md", "LICENSE.txt")


def _scripts(package_dir: Path) -> dict[str, Any]:
    try:
        return read_manifest(package_dir / MANIFEST_FILE).get("scripts") or {}
    except ManifestError:
        return {}


# ---------------------------------------------------------------------------
# Filesystem checks
# ---------------------------------------------------------------------------


def check_structure(package_dir: Path) -> StructureResult:
    """Required files, a source tree, and required manifest fields/scripts."""
    missing: list[str] = [f for f in REQUIRED_FILES if not (package_dir / f).is_file()]
    src_dir = package_dir / "src"
    if not src_dir.is_dir():
        missing.append("src/")
    elif not (package_dir / "tsconfig.json").is_file() and not any(src_dir.glob("index.*")):
        missing.append("src/index.*")
    checks_total = len(REQUIRED_FILES) + 1 + len(REQUIRED_MANIFEST_FIELDS) + len(REQUIRED_SCRIPTS)

    invalid: list[str] = []
    manifest_path = package_dir / MANIFEST_FILE
    if manifest_path.is_file():
        try:
            manifest = read_manifest(manifest_path)
        except ManifestError as exc:
            logger.warning("Structure check cannot parse manifest: %s", exc)
            return StructureResult(
                missing_files=missing,
                invalid_fields=[MANIFEST_FILE],
                checks_total=checks_total,
                executed=False,
            )
        for key in REQUIRED_MANIFEST_FIELDS:
            if not manifest.get(key):
                invalid.append(key)
        scripts = manifest.get("scripts") or {}
        for script in REQUIRED_SCRIPTS:
            if script not in scripts:
                invalid.append(f"scripts.{script}")
    else:
        invalid.extend(REQUIRED_MANIFEST_FIELDS)
        invalid.extend(f"scripts.{s}" for s in REQUIRED_SCRIPTS)

    return StructureResult(missing_files=missing, invalid_fields=invalid, checks_total=checks_total)


def _markdown_headings(text: str) -> list[str]:
    return [line.lstrip("#").strip().lower() for line in text.splitlines() if line.startswith("#")]


def check_documentation(package_dir: Path) -> DocumentationResult:
    readme = package_dir / "README.md"
    if not readme.is_file():
        return DocumentationResult(
            has_readme=False,
            missing_sections=list(REQUIRED_README_SECTIONS),
            sections_total=len(REQUIRED_README_SECTIONS),
        )
    headings = _markdown_headings(readme.read_text(encoding="utf-8", errors="replace"))
    missing = [
        section for section in REQUIRED_README_SECTIONS
        if not any(h.startswith(section.lower()) for h in headings)
    ]
    return DocumentationResult(
        has_readme=True,
        missing_sections=missing,
        sections_total=len(REQUIRED_README_SECTIONS),
    )


def check_license(package_dir: Path) -> LicenseResult:
    license_field = ""
    try:
        license_field = str(read_manifest(package_dir / MANIFEST_FILE).get("license") or "")
    except ManifestError:
        pass
    return LicenseResult(
        has_license_file=any((package_dir / name).is_file() for name in _LICENSE_FILES),
        license_field=license_field,
    )


# ---------------------------------------------------------------------------
# Output parsers
# ---------------------------------------------------------------------------


def parse_tsc_output(output: str) -> list[CheckIssue]:
    issues: list[CheckIssue] = []
    for line in output.splitlines():
        match = _TSC_RE.match(line.strip())
        if match:
            issues.append(CheckIssue(
                message=match.group("msg").strip(),
                file=match.group("file").strip(),
                line=int(match.group("line")),
                rule=match.group("rule"),
            ))
    return issues


def parse_lint_output(output: str) -> tuple[list[CheckIssue], list[CheckIssue]]:
    """Split linter output into ``(errors, warnings)``.

    Understands ESLint's ``unix`` formatter and ``LINT ERROR: file:line - msg``.
    """
    errors: list[CheckIssue] = []
    warnings: list[CheckIssue] = []
    for line in output.splitlines():
        line = line.strip()
        match = _ESLINT_UNIX_RE.match(line)
        if match:
            issue = CheckIssue(
                message=match.group("msg"),
                file=match.group("file"),
                line=int(match.group("line")),
                rule=match.group("rule") or "",
            )
            (errors if match.group("sev") == "Error" else warnings).append(issue)
            continue
        match = _LEGACY_LINT_RE.search(line)
        if match:
            issue = CheckIssue(
                message=match.group("msg").strip(),
                file=match.group("file").strip(),
                line=int(match.group("line")),
            )
            (errors if match.group("sev") == "ERROR" else warnings).append(issue)
    return errors, warnings


def parse_audit_output(output: str) -> dict[str, int] | None:
    """Vulnerability counts from ``npm audit --json``; ``None`` if unparseable."""
    start = output.find("{")
    if start < 0:
        return None
    try:
        data = json.loads(output[start:])
    except json.JSONDecodeError:
        return None
    counts = (data.get("metadata") or {}).get("vulnerabilities")
    if not isinstance(counts, dict):
        return None
    return {k: int(v) for k, v in counts.items() if k != "total" and isinstance(v, int)}


# ---------------------------------------------------------------------------
# Tool-backed checks
# ---------------------------------------------------------------------------


async def run_type_check(package_dir: Path, timeout_s: float) -> TypeCheckResult:
    scripts = _scripts(package_dir)
    command = "npm run type-check" if "type-check" in scripts else "npx tsc --noEmit"
    result = await run_command(command, package_dir, timeout_s)
    if not result.started or result.timed_out:
        return TypeCheckResult(executed=False, output=result.output)
    errors = parse_tsc_output(result.output)
    if result.exit_code != 0 and not errors:
        errors.append(CheckIssue(message=f"type check exited with code {result.exit_code}"))
    return TypeCheckResult(errors=errors, output=result.output)


async def run_lint(package_dir: Path, timeout_s: float) -> LintResult:
    scripts = _scripts(package_dir)
    command = "npm run lint" if "lint" in scripts else "npx eslint . --format unix"
    result = await run_command(command, package_dir, timeout_s)
    if not result.started or result.timed_out:
        return LintResult(executed=False, output=result.output)
    errors, warnings = parse_lint_output(result.output)
    if result.exit_code != 0 and not errors:
        errors.append(CheckIssue(message=f"linter exited with code {result.exit_code}"))
    return LintResult(errors=errors, warnings=warnings, output=result.output)


async def run_tests_with_coverage(
    package_dir: Path, command: str, executor: BuildExecutor
) -> UnitTestResult:
    result = await executor.test(package_dir, command)
    executed = not result.timed_out and result.exit_code != 127
    return UnitTestResult(
        passed=result.success,
        coverage=result.coverage,
        executed=executed,
        output=result.output,
    )


async def run_security_audit(package_dir: Path, timeout_s: float) -> SecurityResult:
    # npm audit exits non-zero when it finds anything, so the exit code is ignored.
    result = await run_command(["npm", "audit", "--json"], package_dir, timeout_s)
    if not result.started or result.timed_out:
        return SecurityResult(executed=False)
    counts = parse_audit_output(result.output)
    if counts is None:
        return SecurityResult(executed=False)
    return SecurityResult(vulnerabilities=counts)
