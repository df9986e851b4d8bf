"""Per-package state machine using the ``transitions`` library.

Every package in a suite run moves through the same sequence::

    pending -> building -> testing -> verifying -> publishing -> propagating -> published

with exits to ``blocked`` (quality gate), ``failed`` (build, test, publish)
and ``skipped`` (a dependency did not publish).  A package that already
reached the registry transport in an earlier run goes straight from
``pending`` to ``publishing`` via ``reconcile``.  Each forward transition is
guarded by a condition on the model.
"""

from __future__ import annotations

import logging
from typing import Any

from transitions.extensions.asyncio import AsyncMachine, AsyncState

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------
STATES: list[AsyncState] = [
    AsyncState("pending"),
    AsyncState("building"),
    AsyncState("testing"),
    AsyncState("verifying"),
    AsyncState("publishing"),
    AsyncState("propagating"),
    AsyncState("published"),
    AsyncState("blocked"),
    AsyncState("failed"),
    AsyncState("skipped"),
]

TERMINAL_STATES: frozenset[str] = frozenset({"published", "blocked", "failed", "skipped"})

_ACTIVE_STATES = ["pending", "building", "testing", "verifying", "publishing", "propagating"]

# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
TRANSITIONS: list[dict[str, Any]] = [
    {
        "trigger": "start_build",
        "source": "pending",
        "dest": "building",
        "conditions": ["dependencies_published"],
    },
    {
        "trigger": "skip",
        "source": "pending",
        "dest": "skipped",
        "unless": ["dependencies_published"],
    },
    {
        "trigger": "reconcile",
        "source": "pending",
        "dest": "publishing",
    },
    {
        "trigger": "build_done",
        "source": "building",
        "dest": "testing",
        "conditions": ["build_succeeded"],
    },
    {
        "trigger": "tests_done",
        "source": "testing",
        "dest": "verifying",
        "conditions": ["tests_succeeded"],
    },
    {
        "trigger": "gate_done",
        "source": "verifying",
        "dest": "publishing",
        "conditions": ["gate_passed"],
    },
    {
        "trigger": "gate_done",
        "source": "verifying",
        "dest": "blocked",
        "unless": ["gate_passed"],
    },
    {
        "trigger": "publish_done",
        "source": "publishing",
        "dest": "propagating",
        "conditions": ["publish_succeeded"],
    },
    {
        "trigger": "propagation_done",
        "source": "propagating",
        "dest": "published",
    },
    {
        "trigger": "fail",
        "source": _ACTIVE_STATES,
        "dest": "failed",
    },
]


def create_package_machine(model: Any, initial_state: str = "pending") -> AsyncMachine:
    """Create and return an ``AsyncMachine`` bound to *model*.

    The model must implement the guard methods referenced in
    ``TRANSITIONS``: ``dependencies_published``, ``build_succeeded``,
    ``tests_succeeded``, ``gate_passed`` and ``publish_succeeded``.
    """
    machine = AsyncMachine(
        model=model,
        states=STATES,
        transitions=TRANSITIONS,
        initial=initial_state,
        auto_transitions=False,
        send_event=True,
        queued=True,
        ignore_invalid_triggers=True,
    )
    return machine
