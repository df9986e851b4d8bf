"""Tests for the per-package state machine."""

from __future__ import annotations

import pytest

from src.suite_builder.state_machine import (
    STATES,
    TERMINAL_STATES,
    TRANSITIONS,
    create_package_machine,
)


class PackageModel:
    """Stub model with settable guard results."""

    def __init__(self, **guards: bool) -> None:
        self.state = "pending"
        self.guards = {
            "dependencies_published": True,
            "build_succeeded": True,
            "tests_succeeded": True,
            "gate_passed": True,
            "publish_succeeded": True,
        }
        self.guards.update(guards)

    def dependencies_published(self, *args, **kwargs) -> bool:
        return self.guards["dependencies_published"]

    def build_succeeded(self, *args, **kwargs) -> bool:
        return self.guards["build_succeeded"]

    def tests_succeeded(self, *args, **kwargs) -> bool:
        return self.guards["tests_succeeded"]

    def gate_passed(self, *args, **kwargs) -> bool:
        return self.guards["gate_passed"]

    def publish_succeeded(self, *args, **kwargs) -> bool:
        return self.guards["publish_succeeded"]


class TestDefinitions:
    def test_state_names(self) -> None:
        names = {s.name for s in STATES}
        assert names >= TERMINAL_STATES
        assert "pending" in names

    def test_every_transition_targets_known_state(self) -> None:
        names = {s.name for s in STATES}
        for transition in TRANSITIONS:
            assert transition["dest"] in names

    def test_terminal_states_have_no_outgoing_transitions(self) -> None:
        for transition in TRANSITIONS:
            sources = transition["source"]
            sources = sources if isinstance(sources, list) else [sources]
            assert not TERMINAL_STATES.intersection(sources)


class TestTransitions:
    @pytest.mark.asyncio
    async def test_happy_path(self) -> None:
        model = PackageModel()
        create_package_machine(model)
        for trigger in ("start_build", "build_done", "tests_done", "gate_done", "publish_done", "propagation_done"):
            await getattr(model, trigger)()
        assert model.state == "published"

    @pytest.mark.asyncio
    async def test_unpublished_dependency_skips(self) -> None:
        model = PackageModel(dependencies_published=False)
        create_package_machine(model)
        await model.start_build()
        assert model.state == "pending"
        await model.skip()
        assert model.state == "skipped"

    @pytest.mark.asyncio
    async def test_skip_refused_when_dependencies_published(self) -> None:
        model = PackageModel()
        create_package_machine(model)
        await model.skip()
        assert model.state == "pending"

    @pytest.mark.asyncio
    async def test_failed_build_stays_then_fails(self) -> None:
        model = PackageModel(build_succeeded=False)
        create_package_machine(model)
        await model.start_build()
        await model.build_done()
        assert model.state == "building"
        await model.fail()
        assert model.state == "failed"

    @pytest.mark.asyncio
    async def test_gate_failure_blocks(self) -> None:
        model = PackageModel(gate_passed=False)
        create_package_machine(model, initial_state="verifying")
        await model.gate_done()
        assert model.state == "blocked"

    @pytest.mark.asyncio
    async def test_invalid_trigger_is_ignored(self) -> None:
        model = PackageModel()
        create_package_machine(model)
        await model.publish_done()
        assert model.state == "pending"

    @pytest.mark.asyncio
    async def test_fail_not_allowed_from_terminal(self) -> None:
        model = PackageModel()
        create_package_machine(model, initial_state="published")
        await model.fail()
        assert model.state == "published"

    @pytest.mark.asyncio
    async def test_reconcile_skips_build_steps(self) -> None:
        model = PackageModel(dependencies_published=False)
        create_package_machine(model)
        await model.reconcile()
        assert model.state == "publishing"
        await model.publish_done()
        await model.propagation_done()
        assert model.state == "published"

    @pytest.mark.asyncio
    async def test_reconcile_only_from_pending(self) -> None:
        model = PackageModel()
        create_package_machine(model, initial_state="testing")
        await model.reconcile()
        assert model.state == "testing"
