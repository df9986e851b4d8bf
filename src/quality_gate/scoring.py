"""Compliance scoring -- reduce check results to a 0-100 score and a level.

Seven categories with fixed maxima summing to exactly 100:

   structure        0-10   checks satisfied / checks total * 10
   type_check       0-20   20 when the type checker reports no errors
   lint             0-15   0 on any error, else 15 - 0.5 per warning (floor 7.5)
   tests            0-25   0 when tests fail, else 25 * coverage / 100
   security         0-10   0 on critical/high, else 10 - 2.5 per moderate
   documentation    0-10   README sections present / required * 10
   license          0-10   10 for LICENSE file + manifest field, 5 for one

A check that could not be executed scores zero in its category.

Levels: excellent >= 95, good >= 90, acceptable >= 85, otherwise blocked.
"""

from __future__ import annotations

import logging

from src.suite_shared.constants import (
    THRESHOLD_ACCEPTABLE,
    THRESHOLD_EXCELLENT,
    THRESHOLD_GOOD,
    WEIGHT_DOCUMENTATION,
    WEIGHT_LICENSE,
    WEIGHT_LINT,
    WEIGHT_SECURITY,
    WEIGHT_STRUCTURE,
    WEIGHT_TESTS,
    WEIGHT_TYPE_CHECK,
)
from src.suite_shared.models import (
    ComplianceLevel,
    ComplianceResult,
    ComplianceScore,
    DocumentationResult,
    LicenseResult,
    LintResult,
    SecurityResult,
    StructureResult,
    TypeCheckResult,
    UnitTestResult,
)

logger = logging.getLogger(__name__)

WEIGHTS: dict[str, float] = {
    "structure": WEIGHT_STRUCTURE,
    "type_check": WEIGHT_TYPE_CHECK,
    "lint": WEIGHT_LINT,
    "tests": WEIGHT_TESTS,
    "security": WEIGHT_SECURITY,
    "documentation": WEIGHT_DOCUMENTATION,
    "license": WEIGHT_LICENSE,
}

_LINT_WARNING_PENALTY = 0.5
_SECURITY_MODERATE_PENALTY = 2.5


def level_for(score: float) -> ComplianceLevel:
    """Map a 0-100 score onto a :class:`ComplianceLevel`."""
    if score >= THRESHOLD_EXCELLENT:
        return ComplianceLevel.EXCELLENT
    if score >= THRESHOLD_GOOD:
        return ComplianceLevel.GOOD
    if score >= THRESHOLD_ACCEPTABLE:
        return ComplianceLevel.ACCEPTABLE
    return ComplianceLevel.BLOCKED


def _structure(result: StructureResult) -> float:
    if not result.executed or result.checks_total <= 0:
        return 0.0
    failed = len(result.missing_files) + len(result.invalid_fields)
    satisfied = max(result.checks_total - failed, 0)
    return WEIGHTS["structure"] * satisfied / result.checks_total


def _type_check(result: TypeCheckResult) -> float:
    return WEIGHTS["type_check"] if result.passed else 0.0


def _lint(result: LintResult) -> float:
    if not result.passed:
        return 0.0
    weight = WEIGHTS["lint"]
    return max(weight - _LINT_WARNING_PENALTY * len(result.warnings), weight / 2)


def _tests(result: UnitTestResult) -> float:
    if not result.executed or not result.passed:
        return 0.0
    coverage = max(0.0, min(100.0, result.coverage))
    return WEIGHTS["tests"] * coverage / 100.0


def _security(result: SecurityResult) -> float:
    if not result.executed or result.blocking:
        return 0.0
    moderate = result.vulnerabilities.get("moderate", 0)
    return max(WEIGHTS["security"] - _SECURITY_MODERATE_PENALTY * moderate, 0.0)


def _documentation(result: DocumentationResult) -> float:
    if not result.has_readme or result.sections_total <= 0:
        return 0.0
    present = max(result.sections_total - len(result.missing_sections), 0)
    return WEIGHTS["documentation"] * present / result.sections_total


def _license(result: LicenseResult) -> float:
    parts = int(result.has_license_file) + int(bool(result.license_field))
    return WEIGHTS["license"] * parts / 2


def calculate_compliance_score(result: ComplianceResult) -> ComplianceScore:
    """Compute the weighted compliance score for *result*.

    Pure: reads the check results only and never re-runs a check.

    Args:
        result: Check results for one package.

    Returns:
        A :class:`ComplianceScore` with the per-category breakdown.
    """
    breakdown = {
        "structure": _structure(result.structure),
        "type_check": _type_check(result.type_check),
        "lint": _lint(result.lint),
        "tests": _tests(result.tests),
        "security": _security(result.security),
        "documentation": _documentation(result.documentation),
        "license": _license(result.license),
    }
    breakdown = {k: round(v, 2) for k, v in breakdown.items()}
    total = round(min(sum(breakdown.values()), 100.0), 2)
    level = level_for(total)

    logger.info(
        "Compliance score for %s: %.2f (%s)", result.package_name, total, level.value,
    )
    return ComplianceScore(score=total, level=level, breakdown=breakdown)
