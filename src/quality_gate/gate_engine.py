"""Compliance gate -- run every check against a package, then score once.

The gate runs the structural, type, lint, test, security, documentation and
license checks, collects them into a :class:`ComplianceResult` and calls
:func:`calculate_compliance_score` exactly once.  A ``blocked`` level is
terminal for the package in the current run: publication must not proceed.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from src.quality_gate import checks
from src.quality_gate.scoring import calculate_compliance_score
from src.suite_builder.config import ExecutorConfig, QualityConfig
from src.suite_builder.executor import BuildExecutor, TestRunResult
from src.suite_shared.models import ComplianceResult, PackageNode, SecurityResult, UnitTestResult

logger = logging.getLogger(__name__)


class ComplianceGate:
    """Evaluates built packages against the compliance weight table.

    Usage
    -----
    ::

        gate = ComplianceGate(workspace_root=Path("."))
        result = await gate.evaluate(node)
        if not result.passed:
            ...
    """

    def __init__(
        self,
        workspace_root: Path | str,
        config: QualityConfig | None = None,
        executor_config: ExecutorConfig | None = None,
    ) -> None:
        self._workspace_root = Path(workspace_root)
        self._config = config or QualityConfig()
        self._executor_config = executor_config or ExecutorConfig()
        self._executor = BuildExecutor(self._workspace_root, self._executor_config)

    async def evaluate(
        self,
        node: PackageNode,
        test_result: TestRunResult | None = None,
    ) -> ComplianceResult:
        """Run all checks for *node* and attach the compliance score.

        Args:
            node: The package to evaluate.  Its ``path`` is relative to the
                workspace root.
            test_result: A test run the caller already performed; when
                given, the tests are not run a second time.

        Returns:
            The populated :class:`ComplianceResult`.
        """
        package_dir = self._workspace_root / node.path
        timeout = self._executor_config.check_timeout

        if test_result is not None:
            tests_coro = asyncio.sleep(0, result=UnitTestResult(
                passed=test_result.success,
                coverage=test_result.coverage,
                executed=not test_result.timed_out and test_result.exit_code != 127,
                output=test_result.output,
            ))
        else:
            tests_coro = checks.run_tests_with_coverage(package_dir, node.test_command, self._executor)

        if self._config.run_security_audit:
            security_coro = checks.run_security_audit(package_dir, timeout)
        else:
            # An audit that did not run earns no security points.
            security_coro = asyncio.sleep(0, result=SecurityResult(executed=False))

        type_check, lint, tests, security = await asyncio.gather(
            checks.run_type_check(package_dir, timeout),
            checks.run_lint(package_dir, timeout),
            tests_coro,
            security_coro,
        )

        result = ComplianceResult(
            package_name=node.name,
            structure=checks.check_structure(package_dir),
            type_check=type_check,
            lint=lint,
            tests=tests,
            security=security,
            documentation=checks.check_documentation(package_dir),
            license=checks.check_license(package_dir),
        )
        result.score = calculate_compliance_score(result)

        logger.info(
            "Gate %s for %s: score=%.2f level=%s",
            "passed" if result.passed else "BLOCKED",
            node.name, result.score.score, result.score.level.value,
        )
        return result
