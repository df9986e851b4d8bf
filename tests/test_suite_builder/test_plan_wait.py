"""Tests for plan polling with capped exponential backoff."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.suite_builder.config import PlanWaitConfig
from src.suite_builder.plan_wait import backoff_delays, wait_for_plan
from src.suite_shared.models import PlanPriority
from tests.fixtures import NS, FakePlanClient, FakeRegistry


class TestBackoffDelays:
    def test_geometric_growth_capped(self) -> None:
        config = PlanWaitConfig(base_delay=5, factor=2, max_delay=30, max_attempts=6)
        assert backoff_delays(config) == [5, 10, 20, 30, 30]

    def test_one_attempt_never_sleeps(self) -> None:
        assert backoff_delays(PlanWaitConfig(max_attempts=1)) == []

    def test_default_schedule_never_exceeds_cap(self) -> None:
        config = PlanWaitConfig()
        delays = backoff_delays(config)
        assert len(delays) == config.max_attempts - 1
        assert max(delays) <= config.max_delay
        assert delays == sorted(delays)


class TestWaitForPlan:
    @pytest.mark.asyncio
    async def test_plan_found_after_two_polls(self, registry: FakeRegistry, no_sleep: AsyncMock) -> None:
        client = FakePlanClient(registry, polls_until_plan=2)
        config = PlanWaitConfig(base_delay=1, factor=2, max_delay=10, max_attempts=5)

        result = await wait_for_plan(f"{NS}ghost", registry, client, config, "suite-1", sleep=no_sleep)

        assert result.found
        assert result.attempts == 2
        assert result.plan_path == "plans/packages/ghost.md"
        assert result.branch_ref == "plan/ghost"
        assert result.signal_delivered
        assert no_sleep.await_count == 1
        assert client.requests[0].priority == PlanPriority.HIGH
        assert client.requests[0].requester_id == "suite-1"

    @pytest.mark.asyncio
    async def test_never_appearing_plan_terminates(self, registry: FakeRegistry, no_sleep: AsyncMock) -> None:
        client = FakePlanClient(registry, polls_until_plan=0)
        config = PlanWaitConfig(base_delay=1, factor=2, max_delay=3, max_attempts=4)

        result = await wait_for_plan(f"{NS}ghost", registry, client, config, sleep=no_sleep)

        assert not result.found
        assert result.attempts == 4
        assert registry.get_calls[f"{NS}ghost"] == 4
        assert [c.args[0] for c in no_sleep.await_args_list] == [1, 2, 3]
        assert "check the plan service logs" in result.reason

    @pytest.mark.asyncio
    async def test_undelivered_signal_reports_service_absent(
        self, registry: FakeRegistry, no_sleep: AsyncMock,
    ) -> None:
        client = FakePlanClient(registry, deliver=False)
        result = await wait_for_plan(
            f"{NS}ghost", registry, client, PlanWaitConfig(max_attempts=2), sleep=no_sleep,
        )
        assert not result.found
        assert not result.signal_delivered
        assert "likely not running" in result.reason

    @pytest.mark.asyncio
    async def test_queued_status_reports_alive_but_slow(
        self, registry: FakeRegistry, no_sleep: AsyncMock,
    ) -> None:
        registry.add(f"{NS}ghost", status="planning")
        client = FakePlanClient(registry, polls_until_plan=0)
        result = await wait_for_plan(
            f"{NS}ghost", registry, client, PlanWaitConfig(max_attempts=3), sleep=no_sleep,
        )
        assert not result.found
        assert "alive but slow" in result.reason

    @pytest.mark.asyncio
    async def test_registry_errors_count_as_empty_polls(
        self, registry: FakeRegistry, no_sleep: AsyncMock,
    ) -> None:
        registry.fail_gets = True
        result = await wait_for_plan(
            f"{NS}ghost", registry, None, PlanWaitConfig(max_attempts=3), sleep=no_sleep,
        )
        assert not result.found
        assert result.attempts == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_no_plan_client_still_polls(self, registry: FakeRegistry, no_sleep: AsyncMock) -> None:
        registry.add(f"{NS}ghost", plan_path="plans/packages/ghost.md")
        result = await wait_for_plan(f"{NS}ghost", registry, None, PlanWaitConfig(), sleep=no_sleep)
        assert result.found
        assert result.attempts == 1
        no_sleep.assert_not_awaited()
