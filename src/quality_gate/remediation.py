"""Remediation tasks -- turn a failing compliance result into fix instructions.

Applying fixes is the job of an external repair step; this module only
decides what needs fixing and writes ``FIX_INSTRUCTIONS.md`` beside the
package, grouped by priority.
"""

from __future__ import annotations

import logging
from pathlib import Path

from src.suite_shared.constants import FIX_INSTRUCTIONS_FILE
from src.suite_shared.models import ComplianceResult, RemediationTask, TaskPriority

logger = logging.getLogger(__name__)

_PRIORITY_ORDER = [TaskPriority.CRITICAL, TaskPriority.HIGH, TaskPriority.MEDIUM, TaskPriority.LOW]
_MAX_ISSUES_PER_CATEGORY = 50


def build_remediation_tasks(result: ComplianceResult) -> list[RemediationTask]:
    """Derive prioritised tasks from every failing check in *result*."""
    tasks: list[RemediationTask] = []

    if not result.structure.executed:
        tasks.append(RemediationTask("structure", TaskPriority.CRITICAL, "package.json could not be parsed"))
    for missing in result.structure.missing_files:
        tasks.append(RemediationTask("structure", TaskPriority.HIGH, f"Add missing {missing}", file=missing))
    for field_name in result.structure.invalid_fields:
        tasks.append(RemediationTask(
            "structure", TaskPriority.HIGH, f"Set '{field_name}' in package.json", file="package.json",
        ))

    if not result.type_check.executed:
        tasks.append(RemediationTask("typescript", TaskPriority.CRITICAL, "Type checker could not be run"))
    for issue in result.type_check.errors[:_MAX_ISSUES_PER_CATEGORY]:
        tasks.append(RemediationTask("typescript", TaskPriority.CRITICAL, issue.message, issue.file, issue.line))

    if not result.lint.executed:
        tasks.append(RemediationTask("lint", TaskPriority.HIGH, "Linter could not be run"))
    for issue in result.lint.errors[:_MAX_ISSUES_PER_CATEGORY]:
        tasks.append(RemediationTask("lint", TaskPriority.HIGH, issue.message, issue.file, issue.line))
    for issue in result.lint.warnings[:_MAX_ISSUES_PER_CATEGORY]:
        tasks.append(RemediationTask("lint", TaskPriority.LOW, issue.message, issue.file, issue.line))

    if not result.tests.executed:
        tasks.append(RemediationTask("tests", TaskPriority.CRITICAL, "Test command could not be run"))
    elif not result.tests.passed:
        tasks.append(RemediationTask("tests", TaskPriority.CRITICAL, "Fix failing tests"))
    elif result.tests.coverage < 80:
        tasks.append(RemediationTask(
            "tests", TaskPriority.MEDIUM, f"Raise coverage from {result.tests.coverage:.0f}% to at least 80%",
        ))

    if not result.security.executed:
        tasks.append(RemediationTask("security", TaskPriority.MEDIUM, "Dependency audit could not be run"))
    elif result.security.blocking:
        tasks.append(RemediationTask(
            "security", TaskPriority.HIGH,
            f"Resolve {result.security.blocking} critical/high vulnerabilities",
        ))
    elif result.security.vulnerabilities.get("moderate", 0):
        tasks.append(RemediationTask(
            "security", TaskPriority.MEDIUM,
            f"Resolve {result.security.vulnerabilities['moderate']} moderate vulnerabilities",
        ))

    if not result.documentation.has_readme:
        tasks.append(RemediationTask("documentation", TaskPriority.LOW, "Write README.md", file="README.md"))
    for section in result.documentation.missing_sections if result.documentation.has_readme else []:
        tasks.append(RemediationTask(
            "documentation", TaskPriority.LOW, f"Add a '{section}' section to README.md", file="README.md",
        ))

    if not result.license.has_license_file:
        tasks.append(RemediationTask("license", TaskPriority.LOW, "Add a LICENSE file", file="LICENSE"))
    if not result.license.license_field:
        tasks.append(RemediationTask("license", TaskPriority.LOW, "Set 'license' in package.json", file="package.json"))

    order = {p: i for i, p in enumerate(_PRIORITY_ORDER)}
    tasks.sort(key=lambda t: order[t.priority])
    return tasks


def write_fix_instructions(package_dir: Path, result: ComplianceResult, tasks: list[RemediationTask]) -> Path:
    """Write ``FIX_INSTRUCTIONS.md`` for *result* into *package_dir*.

    Returns:
        Path to the written file.
    """
    package_dir = Path(package_dir)
    package_dir.mkdir(parents=True, exist_ok=True)

    lines: list[str] = [f"# Fix Instructions: {result.package_name}", ""]
    if result.score is not None:
        lines.append(
            f"Compliance score **{result.score.score:.2f}** ({result.score.level.value}); "
            "85 is required to publish."
        )
        lines.append("")
        lines.append("| Category | Points |")
        lines.append("|---|---|")
        for category, points in result.score.breakdown.items():
            lines.append(f"| {category} | {points:.2f} |")
        lines.append("")

    for priority in _PRIORITY_ORDER:
        group = [t for t in tasks if t.priority == priority]
        if not group:
            continue
        lines.append(f"## Priority: {priority.value}")
        lines.append("")
        for task in group:
            location = f" ({task.file}:{task.line})" if task.file and task.line else (f" ({task.file})" if task.file else "")
            lines.append(f"- [{task.category}] {task.description}{location}")
        lines.append("")

    path = package_dir / FIX_INSTRUCTIONS_FILE
    path.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Wrote %d remediation task(s) to %s", len(tasks), path)
    return path
