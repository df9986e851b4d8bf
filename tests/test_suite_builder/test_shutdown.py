"""Tests for GracefulShutdown."""

from __future__ import annotations

import signal
from pathlib import Path
from unittest.mock import MagicMock

from src.suite_builder.shutdown import GracefulShutdown
from src.suite_builder.state import SuiteState


class TestGracefulShutdown:
    def test_initial_should_stop_false(self) -> None:
        assert GracefulShutdown().should_stop is False

    def test_set_state(self) -> None:
        gs = GracefulShutdown()
        mock_state = MagicMock()
        gs.set_state(mock_state)
        assert gs._state is mock_state

    def test_signal_handler_sets_should_stop(self) -> None:
        gs = GracefulShutdown()
        gs._signal_handler(signal.SIGINT, None)
        assert gs.should_stop is True

    def test_request_stop_saves_interrupted_state(self, tmp_path: Path) -> None:
        gs = GracefulShutdown()
        state = SuiteState(state_dir=str(tmp_path))
        gs.set_state(state)
        gs.request_stop("signal SIGTERM")

        loaded = SuiteState.load(tmp_path)
        assert loaded is not None
        assert loaded.interrupted is True
        assert loaded.interrupt_reason == "signal SIGTERM"

    def test_emergency_save_without_state(self) -> None:
        GracefulShutdown()._emergency_save("test")

    def test_save_failure_is_contained(self) -> None:
        gs = GracefulShutdown()
        state = MagicMock()
        state.save.side_effect = OSError("disk full")
        gs.set_state(state)
        gs.request_stop()
        assert gs.should_stop is True

    def test_callbacks_run_once(self) -> None:
        gs = GracefulShutdown()
        callback = MagicMock()
        gs.on_stop(callback)
        gs.request_stop()
        gs.request_stop()
        callback.assert_called_once()

    def test_failing_callback_does_not_stop_others(self) -> None:
        gs = GracefulShutdown()
        second = MagicMock()
        gs.on_stop(MagicMock(side_effect=RuntimeError("boom")))
        gs.on_stop(second)
        gs.request_stop()
        second.assert_called_once()

    def test_reentrancy_guard(self) -> None:
        gs = GracefulShutdown()
        gs._handling = True
        gs._signal_handler(signal.SIGINT, None)
        assert gs.should_stop is False
