"""Graceful shutdown handling for suite runs.

A signal lets the package currently in flight finish, marks the persisted
suite state as interrupted, and stops the orchestrator before the next
package.  Build, test and verify are safe to repeat on the next run.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from src.suite_builder.state import SuiteState

logger = logging.getLogger(__name__)


class GracefulShutdown:
    """Manages graceful shutdown on SIGINT / SIGTERM.

    Usage::

        shutdown = GracefulShutdown()
        shutdown.install()
        shutdown.set_state(suite_state)

        # Between packages:
        if shutdown.should_stop:
            ...
    """

    def __init__(self) -> None:
        self._should_stop = False
        self._state: SuiteState | None = None
        self._callbacks: list[Callable[[], Any]] = []
        self._handling = False  # reentrancy guard

    @property
    def should_stop(self) -> bool:
        """Whether a shutdown signal has been received."""
        return self._should_stop

    def set_state(self, state: Any) -> None:
        """Attach the suite state to save when a signal arrives."""
        self._state = state

    def on_stop(self, callback: Callable[[], Any]) -> None:
        """Run *callback* once when shutdown begins."""
        self._callbacks.append(callback)

    def install(self) -> None:
        """Register handlers for SIGINT and SIGTERM.

        Uses ``loop.add_signal_handler`` when called inside a running event
        loop on Unix, ``signal.signal`` otherwise.
        """
        if sys.platform != "win32":
            try:
                loop = asyncio.get_running_loop()
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.add_signal_handler(sig, self.request_stop, f"signal {sig.name}")
                return
            except RuntimeError:
                pass  # no running loop
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum: int, frame: Any) -> None:
        self.request_stop(f"signal {signum}")

    def request_stop(self, reason: str = "stop requested") -> None:
        """Begin shutdown: save state and notify callbacks, once."""
        if self._handling or self._should_stop:
            return
        self._handling = True
        logger.warning("%s -- stopping after the current package", reason)
        self._should_stop = True
        self._emergency_save(reason)
        for callback in self._callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Shutdown callback failed")
        self._handling = False

    def _emergency_save(self, reason: str) -> None:
        if self._state is None:
            logger.warning("No suite state to save during shutdown")
            return
        try:
            self._state.interrupted = True
            self._state.interrupt_reason = reason
            self._state.save()
            logger.info("Suite state saved for resume")
        except Exception:
            logger.exception("Failed to save suite state during shutdown")
