"""Graceful shutdown handler for a pipeline run.

Handles both Windows (``signal.signal``) and Unix
(``loop.add_signal_handler``) signal registration with a reentrancy guard.
A running external command is never interrupted; the orchestrator checks
:attr:`GracefulShutdown.should_stop` between stages.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.deploy_orchestrator.state import PipelineRunState

logger = logging.getLogger(__name__)


class GracefulShutdown:
    """Manages graceful shutdown on SIGINT / SIGTERM.

    Usage::

        shutdown = GracefulShutdown()
        shutdown.install()
        shutdown.set_state(run_state, state_dir)

        # Between stages:
        if shutdown.should_stop:
            ...
    """

    def __init__(self) -> None:
        self._should_stop = False
        self._state: PipelineRunState | None = None
        self._state_dir: Path | None = None
        self._gate: Any = None
        self._handling = False  # reentrancy guard

    @property
    def should_stop(self) -> bool:
        """Whether a shutdown signal has been received."""
        return self._should_stop

    @should_stop.setter
    def should_stop(self, value: bool) -> None:
        self._should_stop = value

    def set_state(self, state: Any, directory: Path | str | None = None) -> None:
        """Inject the run state for emergency saving.

        Deferred injection lets the handler be created before the state
        object exists.
        """
        self._state = state
        self._state_dir = Path(directory) if directory else None

    def set_gate(self, gate: Any) -> None:
        """Inject the approval gate so a pending request can be withdrawn."""
        self._gate = gate

    def install(self) -> None:
        """Register signal handlers for SIGINT and SIGTERM.

        On Windows, uses ``signal.signal`` directly.
        On Unix, uses ``loop.add_signal_handler`` if a running event loop
        is available, falling back to ``signal.signal``.
        """
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)
        else:
            try:
                loop = asyncio.get_running_loop()
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.add_signal_handler(sig, self._async_handler)
            except RuntimeError:
                # No running loop -- fall back to signal.signal
                signal.signal(signal.SIGINT, self._signal_handler)
                signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows / fallback)."""
        if self._handling:
            return  # reentrancy guard
        self._handling = True
        logger.warning("Received signal %s -- stopping after the current stage", signum)
        self._request_stop()
        self._handling = False

    def _async_handler(self) -> None:
        """Async-compatible signal handler (Unix)."""
        if self._handling:
            return  # reentrancy guard
        self._handling = True
        logger.warning("Received shutdown signal -- stopping after the current stage")
        self._request_stop()
        self._handling = False

    def _request_stop(self) -> None:
        self._should_stop = True
        cancel = getattr(self._gate, "cancel", None)
        if callable(cancel) and cancel():
            logger.warning("Withdrew pending approval request")
        self._emergency_save()

    def _emergency_save(self) -> None:
        """Attempt to save run state during emergency shutdown."""
        if self._state is None:
            logger.warning("No run state to save during emergency shutdown")
            return
        try:
            self._state.interrupted = True
            self._state.interrupt_reason = "Signal received"
            self._state.save(self._state_dir)
            logger.info("Emergency state save completed")
        except Exception:
            logger.exception("Failed to save state during emergency shutdown")
