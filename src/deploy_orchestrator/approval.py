"""Approval gates: the operator checkpoint before mutating stages.

A gate exposes a single ``request(message) -> Decision`` coroutine.  The
orchestrator awaits it, which suspends the run without polling until a
decision, a timeout, or a cancellation arrives.  Timeouts and
cancellations resolve to :attr:`Decision.ABORT`.
"""

from __future__ import annotations

import asyncio
import logging
import threading

import typer

from src.deploy_orchestrator.config import ApprovalConfig
from src.deploy_orchestrator.exceptions import ConfigurationError, PipelineError
from src.deploy_shared.models import Decision

logger = logging.getLogger(__name__)


class QueuedApprovalGate:
    """Gate resolved by an external caller through :meth:`decide`.

    Only one request may be outstanding.  No decision history is kept:
    a decision delivered while nothing is pending is ignored.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout
        self._pending: asyncio.Future[Decision] | None = None
        self.message: str = ""

    @property
    def pending(self) -> bool:
        """Whether a request is currently waiting for a decision."""
        return self._pending is not None and not self._pending.done()

    async def request(self, message: str) -> Decision:
        if self.pending:
            raise PipelineError("An approval request is already outstanding")
        loop = asyncio.get_running_loop()
        pending: asyncio.Future[Decision] = loop.create_future()
        self._pending = pending
        self.message = message
        logger.info("Awaiting approval: %s", message)
        try:
            return await asyncio.wait_for(asyncio.shield(pending), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Approval request timed out after %ss", self.timeout)
            return Decision.ABORT
        except asyncio.CancelledError:
            if not pending.cancelled():
                raise
            logger.warning("Approval request cancelled")
            return Decision.ABORT
        finally:
            self._pending = None
            self.message = ""

    def decide(self, decision: Decision) -> bool:
        """Deliver *decision* to the outstanding request.

        Returns:
            ``True`` if a pending request was resolved.
        """
        if not self.pending:
            logger.warning("Decision %s delivered with no pending request", decision.value)
            return False
        assert self._pending is not None
        self._pending.set_result(decision)
        return True

    def approve(self) -> bool:
        return self.decide(Decision.APPROVE)

    def abort(self) -> bool:
        return self.decide(Decision.ABORT)

    def cancel(self) -> bool:
        """Withdraw the outstanding request; the requester sees an abort."""
        if not self.pending:
            return False
        assert self._pending is not None
        self._pending.cancel()
        return True


class ConsoleApprovalGate:
    """Interactive gate that asks the operator on the terminal.

    The prompt runs on a daemon thread so a withdrawn or timed-out request
    never blocks interpreter shutdown on a pending ``stdin`` read.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout
        self._pending: asyncio.Future[Decision] | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def request(self, message: str) -> Decision:
        from src.deploy_orchestrator.display import print_approval_request

        print_approval_request(message, timeout=self.timeout)
        loop = asyncio.get_running_loop()
        pending: asyncio.Future[Decision] = loop.create_future()
        self._pending = pending

        def _resolve(decision: Decision) -> None:
            if not pending.done():
                pending.set_result(decision)

        def _prompt() -> None:
            try:
                approved = typer.confirm("Proceed?", default=False)
            except (typer.Abort, EOFError):
                logger.warning("Approval prompt closed without an answer -- aborting")
                approved = False
            try:
                loop.call_soon_threadsafe(_resolve, Decision.APPROVE if approved else Decision.ABORT)
            except RuntimeError:
                logger.debug("Operator answered after the run ended")

        threading.Thread(target=_prompt, name="approval-prompt", daemon=True).start()
        try:
            return await asyncio.wait_for(asyncio.shield(pending), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("No operator response within %ss -- aborting", self.timeout)
            return Decision.ABORT
        except asyncio.CancelledError:
            if not pending.cancelled():
                raise
            logger.warning("Approval prompt withdrawn")
            return Decision.ABORT
        finally:
            self._pending = None

    def cancel(self) -> bool:
        """Withdraw the outstanding prompt; the requester sees an abort."""
        if not self.pending:
            return False
        assert self._pending is not None
        self._pending.cancel()
        return True


class StaticApprovalGate:
    """Gate that always returns the same decision (CI, dry runs, tests)."""

    def __init__(self, decision: Decision = Decision.ABORT) -> None:
        self.decision = decision
        self.requests: list[str] = []

    async def request(self, message: str) -> Decision:
        self.requests.append(message)
        logger.info("Static approval gate answering %s: %s", self.decision.value, message)
        return self.decision


def create_approval_gate(
    config: ApprovalConfig, interactive: bool = True
) -> QueuedApprovalGate | ConsoleApprovalGate | StaticApprovalGate:
    """Create the gate selected by *config*.

    A ``console`` gate without an interactive terminal cannot receive a
    decision, so it degrades to a static abort gate.

    Raises:
        ConfigurationError: If the configured mode is unknown.
    """
    mode = config.mode.lower()
    if mode == "console":
        if interactive:
            return ConsoleApprovalGate(timeout=config.timeout)
        logger.warning("Console approval requested without a terminal; requests will be aborted")
        return StaticApprovalGate(Decision.ABORT)
    if mode == "approve":
        return StaticApprovalGate(Decision.APPROVE)
    if mode == "abort":
        return StaticApprovalGate(Decision.ABORT)
    if mode == "queued":
        return QueuedApprovalGate(timeout=config.timeout)
    raise ConfigurationError(f"Unknown approval mode '{config.mode}'")
