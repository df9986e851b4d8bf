"""Shared fixtures for the suite builder test suite."""
from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from tests.fixtures import FakeRegistry, RecordingTransport


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """An empty workspace with ``packages/`` and ``plans/packages/``."""
    (tmp_path / "packages").mkdir()
    (tmp_path / "plans" / "packages").mkdir(parents=True)
    return tmp_path


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Awaitable sleep that returns immediately and records its delays."""
    return AsyncMock(return_value=None)
