"""Suite Build Orchestrator -- sequence every package of a suite.

For each root the orchestrator resolves the dependency tree.  Packages that
cannot be found go through the plan path: signal the plan service, poll the
registry for the plan, run the implementation generator, and re-resolve.
The resolved packages are then processed one at a time in build order::

    build -> test -> compliance gate -> publish -> registry update -> propagate

A package whose dependency did not publish is skipped.  Failures are
recorded per package and never abort the suite; the final
:class:`SuiteReport` lists every package's terminal status.

Publishing is the only step that is unsafe to repeat.  The target version is
written to the persisted suite state (``pending_publish``) before the
transport is called, and the registry is asked before every publish.  Once
the transport succeeds the version is also kept in ``unrecorded_publish`` until the
registry update lands; a package found there on a later run is recorded and
propagated without being built or published again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any

from src.plan_service.client import PlanServiceClient
from src.quality_gate.gate_engine import ComplianceGate
from src.quality_gate.remediation import build_remediation_tasks, write_fix_instructions
from src.registry.client import RegistryClient
from src.shared.config import PlanServiceSettings
from src.shared.constants import STATUS_PUBLISHED, SUITE_BUILDER_SERVICE_NAME
from src.shared.logging import new_trace_id, setup_logging
from src.shared.utils import now_iso
from src.suite_builder import display
from src.suite_builder.config import SuiteBuilderConfig, load_suite_config
from src.suite_builder.exceptions import DependencyCycleError, InvalidVersionError
from src.suite_builder.executor import BuildExecutor, BuildResult, TestRunResult
from src.suite_builder.plan_wait import Sleep, wait_for_plan
from src.suite_builder.publisher import (
    PublishCoordinator,
    PublishResult,
    bump_version,
    classify_bump,
    compare_versions,
    parse_version,
)
from src.suite_builder.resolver import DependencyResolver, DependencyTree
from src.suite_builder.shutdown import GracefulShutdown
from src.suite_builder.state import SuiteState
from src.suite_builder.state_machine import create_package_machine
from src.suite_shared.models import (
    ComplianceResult,
    PackageNode,
    PackageOutcome,
    PackageStatus,
    StepStatus,
    SuiteReport,
    VersionChange,
)
from src.suite_shared.constants import DEFAULT_NAMESPACE
from src.suite_shared.protocols import ImplementationGenerator, RegistryLike

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 1500


def _tail(text: str) -> str:
    text = text.strip()
    return text[-_OUTPUT_TAIL:] if len(text) > _OUTPUT_TAIL else text


class PackageRun:
    """State machine model for one package in one suite run."""

    def __init__(self, node: PackageNode, deps_published: bool) -> None:
        self.node = node
        self.state: str = "pending"
        self._deps_published = deps_published
        self.build: BuildResult | None = None
        self.tests: TestRunResult | None = None
        self.compliance: ComplianceResult | None = None
        self.publish: PublishResult | None = None

    def dependencies_published(self, *args, **kwargs) -> bool:
        return self._deps_published

    def build_succeeded(self, *args, **kwargs) -> bool:
        return self.build is not None and self.build.success

    def tests_succeeded(self, *args, **kwargs) -> bool:
        return self.tests is not None and self.tests.success

    def gate_passed(self, *args, **kwargs) -> bool:
        return self.compliance is not None and self.compliance.passed

    def publish_succeeded(self, *args, **kwargs) -> bool:
        return self.publish is not None and self.publish.success


class SuiteOrchestrator:
    """Builds, verifies, publishes and propagates a suite of packages.

    Collaborators default to the real implementations rooted at
    ``config.workspace_root``; tests inject fakes.
    """

    def __init__(
        self,
        config: SuiteBuilderConfig,
        registry: RegistryLike,
        plan_client: PlanServiceClient | None = None,
        implementer: ImplementationGenerator | None = None,
        resolver: DependencyResolver | None = None,
        executor: BuildExecutor | None = None,
        gate: ComplianceGate | None = None,
        publisher: PublishCoordinator | None = None,
        shutdown: GracefulShutdown | None = None,
        sleep: Sleep = asyncio.sleep,
        show_progress: bool = False,
    ) -> None:
        self.config = config
        self.workspace_root = Path(config.workspace_root)
        self.registry = registry
        self.plan_client = plan_client
        self.implementer = implementer
        self.resolver = resolver or DependencyResolver(self.workspace_root, registry, config.resolver)
        self.executor = executor or BuildExecutor(self.workspace_root, config.executor)
        self.gate = gate or ComplianceGate(self.workspace_root, config.quality, config.executor)
        self.publisher = publisher or PublishCoordinator(
            self.workspace_root, registry, config=config.publish, packages_dir=config.resolver.packages_dir,
        )
        self.shutdown = shutdown
        self.sleep = sleep
        self.show_progress = show_progress

    @property
    def state_dir(self) -> Path:
        state_dir = Path(self.config.state_dir)
        return state_dir if state_dir.is_absolute() else self.workspace_root / state_dir

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, names: str | list[str]) -> SuiteReport:
        """Build every package reachable from *names*; never raises for package failures."""
        roots = [names] if isinstance(names, str) else list(names)
        state = self._load_or_create_state(roots)
        if self.shutdown is not None:
            self.shutdown.set_state(state)
        new_trace_id()
        report = SuiteReport(suite_id=state.suite_id)
        logger.info("Suite %s started for %s", state.suite_id, ", ".join(roots))

        suite, unresolved, satisfied = await self._resolve_suite(roots, state)
        order = suite.build_order
        report.outcomes.extend(unresolved)
        for missing in unresolved:
            state.package_states[missing.package_name] = missing.status.value
            state.outcomes[missing.package_name] = asdict(missing)
        if self.show_progress:
            display.print_suite_header(state.suite_id, roots, order)

        published: set[str] = set(satisfied)
        for index, node in enumerate(suite.ordered_nodes()):
            name = node.name
            if self.shutdown is not None and self.shutdown.should_stop:
                for remaining in order[index:]:
                    report.outcomes.append(PackageOutcome(
                        remaining, PackageStatus.SKIPPED, error="suite run interrupted",
                    ))
                break
            state.current_package = name
            outcome = await self._process_package(node, published, state)
            if outcome.status == PackageStatus.PUBLISHED:
                published.add(name)
            elif outcome.status != PackageStatus.SKIPPED:
                blocked = sorted(suite.dependents_of(name))
                if blocked:
                    logger.warning("%s did not publish; dependents will be skipped: %s", name, ", ".join(blocked))
            report.outcomes.append(outcome)
            state.package_states[name] = outcome.status.value
            state.outcomes[name] = asdict(outcome)
            state.save(self.state_dir)
            if self.show_progress:
                display.print_package_outcome(outcome)

        report.finished_at = now_iso()
        state.current_package = ""
        state.completed = not (self.shutdown is not None and self.shutdown.should_stop)
        state.save(self.state_dir)
        logger.info(
            "Suite %s finished: %d published, %d not published",
            state.suite_id, report.count(PackageStatus.PUBLISHED),
            len(report.outcomes) - report.count(PackageStatus.PUBLISHED),
        )
        if self.show_progress:
            display.print_suite_report(report)
        return report

    def _load_or_create_state(self, roots: list[str]) -> SuiteState:
        previous = SuiteState.load(self.state_dir)
        if previous is not None and not previous.completed and previous.roots == roots:
            logger.info(
                "Resuming suite %s (%d pending, %d unrecorded publish record(s))",
                previous.suite_id, len(previous.pending_publish), len(previous.unrecorded_publish),
            )
            previous.interrupted = False
            previous.interrupt_reason = ""
            return previous
        state = SuiteState(roots=roots, workspace_root=str(self.workspace_root), state_dir=str(self.state_dir))
        if previous is not None:
            # A different suite left publishes behind that were never recorded; keep them.
            state.pending_publish = dict(previous.pending_publish)
            state.unrecorded_publish = dict(previous.unrecorded_publish)
        return state

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve_suite(
        self, roots: list[str], state: SuiteState
    ) -> tuple[DependencyTree, list[PackageOutcome], set[str]]:
        """Resolve every root, fetching plans and implementations for missing packages.

        Returns:
            ``(suite_tree, unresolved_outcomes, satisfied)`` where *satisfied*
            holds missing names already published in the registry.
        """
        suite = DependencyTree()
        unresolved: dict[str, PackageOutcome] = {}
        satisfied: set[str] = set()

        for root in roots:
            tree = await self._resolve_root(root, state, unresolved, satisfied)
            if tree is not None:
                suite.merge(tree)

        return suite, list(unresolved.values()), satisfied

    async def _resolve_root(
        self,
        root: str,
        state: SuiteState,
        unresolved: dict[str, PackageOutcome],
        satisfied: set[str],
    ) -> DependencyTree | None:
        max_rounds = self.config.plan_wait.max_rounds
        tree: DependencyTree | None = None
        for round_no in range(max_rounds + 1):
            try:
                tree = await self.resolver.build_dependency_tree(root)
            except DependencyCycleError as exc:
                logger.error("Resolution of %s failed: %s", root, exc)
                unresolved[root] = PackageOutcome(root, PackageStatus.FAILED_RESOLUTION, error=str(exc))
                return None

            pending = [m for m in tree.missing if m not in unresolved and m not in satisfied]
            if not pending:
                return tree
            if round_no == max_rounds:
                break
            for name in pending:
                await self._obtain_package(name, tree.planned.get(name), state, unresolved, satisfied)

        for name in tree.missing if tree else []:
            if name not in unresolved and name not in satisfied:
                unresolved[name] = PackageOutcome(
                    name, PackageStatus.FAILED_RESOLUTION,
                    error=f"still unresolved after {max_rounds} resolution round(s)",
                )
        return tree

    async def _obtain_package(
        self,
        name: str,
        plan_path: str | None,
        state: SuiteState,
        unresolved: dict[str, PackageOutcome],
        satisfied: set[str],
    ) -> None:
        """Make *name* resolvable, or record why it cannot be."""
        try:
            record = await self.registry.get(name)
        except Exception as exc:
            logger.warning("Registry lookup for missing %s failed: %s", name, exc)
            record = None
        if record is not None and record.is_published:
            logger.info("%s is not in the workspace but is published as %s", name, record.version)
            satisfied.add(name)
            return
        if not plan_path and record is not None and record.plan_path:
            plan_path = record.plan_path

        if not plan_path:
            waited = await wait_for_plan(
                name,
                self.registry,
                self.plan_client,
                self.config.plan_wait,
                requester_id=state.suite_id,
                sleep=self.sleep,
            )
            if not waited.found:
                unresolved[name] = PackageOutcome(name, PackageStatus.AWAITING_PLAN, error=waited.reason)
                return
            plan_path = waited.plan_path

        if self.implementer is None:
            unresolved[name] = PackageOutcome(
                name, PackageStatus.AWAITING_PLAN,
                error=f"plan {plan_path} exists but no implementation generator is configured",
            )
            return
        logger.info("Generating implementation of %s from %s", name, plan_path)
        try:
            generated = await self.implementer.generate(name, plan_path, self.workspace_root)
        except Exception as exc:
            logger.exception("Implementation generator raised for %s", name)
            generated = False
            detail = str(exc)
        else:
            detail = "implementation generator did not produce a package"
        if not generated:
            unresolved[name] = PackageOutcome(name, PackageStatus.FAILED_RESOLUTION, error=detail)

    # ------------------------------------------------------------------
    # Per-package pipeline
    # ------------------------------------------------------------------

    async def _process_package(
        self, node: PackageNode, published: set[str], state: SuiteState
    ) -> PackageOutcome:
        start = time.monotonic()
        blocked_by = [d for d in node.dependencies if d not in published]
        run = PackageRun(node, deps_published=not blocked_by)
        create_package_machine(run)

        def outcome(status: PackageStatus, error: str = "", **extra: Any) -> PackageOutcome:
            score = run.compliance.score if run.compliance is not None else None
            return PackageOutcome(
                package_name=node.name,
                status=status,
                error=error,
                score=score.score if score else None,
                level=score.level.value if score else "",
                duration_s=round(time.monotonic() - start, 3),
                **extra,
            )

        unrecorded = state.unrecorded_publish.get(node.name)
        if unrecorded and not self.config.publish.dry_run:
            return await self._reconcile_publish(run, node, unrecorded, state, outcome)

        await run.start_build()
        if run.state != "building":
            await run.skip()
            logger.warning("Skipping %s: dependencies not published: %s", node.name, ", ".join(blocked_by))
            return outcome(PackageStatus.SKIPPED, f"dependencies not published: {', '.join(blocked_by)}")
        state.package_states[node.name] = run.state

        node.build_status = StepStatus.RUNNING
        run.build = await self.executor.build(node.path, node.build_command)
        node.build_status = StepStatus.PASSED if run.build.success else StepStatus.FAILED
        await run.build_done()
        if run.state != "testing":
            await run.fail()
            return outcome(PackageStatus.FAILED_BUILD, _tail(run.build.output) or "build failed")

        node.test_status = StepStatus.RUNNING
        run.tests = await self.executor.test(node.path, node.test_command)
        node.test_status = StepStatus.PASSED if run.tests.success else StepStatus.FAILED
        await run.tests_done()
        if run.state != "verifying":
            await run.fail()
            return outcome(PackageStatus.FAILED_TEST, _tail(run.tests.output) or "tests failed")

        run.compliance = await self.gate.evaluate(node, run.tests)
        await run.gate_done()
        if self.show_progress:
            display.print_compliance_breakdown(run.compliance)
        if run.state == "blocked":
            error = f"compliance score {run.compliance.score.score:.2f} is below 85"
            if self.config.quality.write_fix_instructions:
                tasks = build_remediation_tasks(run.compliance)
                path = write_fix_instructions(self.workspace_root / node.path, run.compliance, tasks)
                error += f"; see {path}"
            return outcome(PackageStatus.BLOCKED_BY_QUALITY, error)

        try:
            version, previous = await self._target_version(node, state)
        except InvalidVersionError as exc:
            await run.fail()
            return outcome(PackageStatus.FAILED_PUBLISH, str(exc))
        state.pending_publish[node.name] = version
        state.save(self.state_dir)

        run.publish = await self.publisher.publish_guarded(node.name, node.path, version)
        await run.publish_done()
        if run.state != "propagating":
            await run.fail()
            return outcome(PackageStatus.FAILED_PUBLISH, run.publish.error or "publish failed", version=version)
        return await self._finish_publish(run, node, version, previous, state, outcome)

    async def _reconcile_publish(
        self, run: PackageRun, node: PackageNode, version: str, state: SuiteState, outcome: Any
    ) -> PackageOutcome:
        """Record a publish an earlier run made but could not record; never publish again."""
        logger.info("%s@%s was published by an earlier run; recording it", node.name, version)
        await run.reconcile()
        run.publish = PublishResult(
            success=True,
            package_name=node.name,
            published_version=version,
            already_published=True,
        )
        await run.publish_done()
        return await self._finish_publish(run, node, version, "", state, outcome)

    async def _finish_publish(
        self,
        run: PackageRun,
        node: PackageNode,
        version: str,
        previous: str,
        state: SuiteState,
        outcome: Any,
    ) -> PackageOutcome:
        dry_run = self.config.publish.dry_run
        dependents: tuple[str, ...] = ()
        error = "dry run" if dry_run else ""
        if not dry_run:
            state.unrecorded_publish[node.name] = version
            state.save(self.state_dir)
            if await self._record_publish(node.name, version):
                state.unrecorded_publish.pop(node.name, None)
                state.pending_publish.pop(node.name, None)
            else:
                error = "published but not recorded in the registry; the next run records it"
            updates = await self.publisher.propagate_to_dependents(node.name, version, self.workspace_root)
            dependents = tuple(sorted({u.package_name for u in updates}))
        else:
            state.pending_publish.pop(node.name, None)
        await run.propagation_done()

        change = VersionChange(
            package_name=node.name,
            previous_version=previous,
            new_version=version,
            bump=classify_bump(previous, version) if previous else None,
            dependents_updated=dependents,
        )
        state.published_versions[node.name] = version
        state.version_changes.append(asdict(change))
        node.version = version
        return outcome(PackageStatus.PUBLISHED, error, version=version, version_change=change)

    async def _target_version(self, node: PackageNode, state: SuiteState) -> tuple[str, str]:
        """``(version_to_publish, previously_published_version)``."""
        pending = state.pending_publish.get(node.name)
        try:
            record = await self.registry.get(node.name)
        except Exception as exc:
            logger.warning("Registry lookup for %s failed before publish: %s", node.name, exc)
            record = None
        registry_version = record.version if record is not None and record.is_published else None

        if pending:
            logger.info("Reusing recorded publish target %s@%s", node.name, pending)
            return pending, registry_version or ""
        if not registry_version:
            parse_version(node.version)
            return node.version, ""
        if compare_versions(node.version, registry_version) > 0:
            return node.version, registry_version
        return bump_version(registry_version, self.config.publish.bump), registry_version

    async def _record_publish(self, name: str, version: str) -> bool:
        """Mark *name* published at *version* in the registry; ``False`` when that fails."""
        try:
            await self.registry.update(name, {
                "version": version,
                "is_published": True,
                "status": STATUS_PUBLISHED,
            })
        except Exception as exc:
            logger.warning("Published %s@%s but could not record it in the registry: %s", name, version, exc)
            return False
        return True


def build_orchestrator(
    config: SuiteBuilderConfig,
    settings: PlanServiceSettings | None = None,
    implementer: ImplementationGenerator | None = None,
    shutdown: GracefulShutdown | None = None,
) -> SuiteOrchestrator:
    """Wire a :class:`SuiteOrchestrator` from environment settings."""
    settings = settings or PlanServiceSettings()
    return SuiteOrchestrator(
        config=config,
        registry=RegistryClient.from_settings(settings),
        plan_client=PlanServiceClient(settings.plan_service_url),
        implementer=implementer,
        shutdown=shutdown,
        show_progress=True,
    )


async def execute_suite(
    names: str | list[str],
    config_path: str | Path | None = None,
    implementer: ImplementationGenerator | None = None,
) -> SuiteReport:
    """Run a suite build as a process: logging, settings, signals, cleanup.

    Parameters
    ----------
    names:
        Root package name(s) to build.
    config_path:
        Optional path to the suite builder YAML config.
    implementer:
        Generator used to write packages that only exist as plans.

    Returns
    -------
    SuiteReport
        The per-package outcome of the run.
    """
    settings = PlanServiceSettings()
    setup_logging(SUITE_BUILDER_SERVICE_NAME, settings.log_level)
    config = load_suite_config(config_path)

    # Environment settings fill in what the config file leaves at defaults.
    if config.workspace_root == ".":
        config.workspace_root = settings.workspace_root
    if config.resolver.namespace == DEFAULT_NAMESPACE:
        config.resolver.namespace = settings.package_namespace

    shutdown = GracefulShutdown()
    shutdown.on_stop(display.print_shutdown_notice)
    shutdown.install()
    orchestrator = build_orchestrator(config, settings, implementer=implementer, shutdown=shutdown)
    try:
        return await orchestrator.run(names)
    except Exception as exc:
        logger.exception("Suite run aborted")
        display.print_error_panel(exc)
        raise
    finally:
        aclose = getattr(orchestrator.registry, "aclose", None)
        if aclose is not None:
            await aclose()
