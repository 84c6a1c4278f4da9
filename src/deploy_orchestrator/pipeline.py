"""Deploy Orchestrator Pipeline -- the stage orchestration engine.

Drives one run through the fixed stage sequence:

    checkout → credentials → setup → init → validate → fmt_check
    → security_scan → plan → [gate] apply → destroy_plan → [gate] destroy
    → outputs → finalization

.. rubric:: Key design decisions

* **Stage order is data** -- the sequence comes from
  :func:`~src.deploy_orchestrator.stages.build_stages`; the loop here
  only evaluates predicates and never branches on stage names.
* **Fail-fast** -- the first failed stage ends the loop.  Stages after
  the failure point get no result at all; skipped stages before it get
  an explicit ``skipped`` result.
* **Gate before mutation** -- a gated stage records
  ``awaiting_approval`` and awaits the injected gate before its body
  runs, so an abort issues no mutating command.
* **try/finally finalization** -- the terminal status is set first, then
  finalization runs exactly once on every exit path, including
  cancellation.  Finalization errors never change the status.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from src.deploy_orchestrator.approval import create_approval_gate
from src.deploy_orchestrator.artifacts import ArtifactStore
from src.deploy_orchestrator.config import DeployPipelineConfig, load_deploy_config
from src.deploy_orchestrator.exceptions import (
    ApprovalDenied,
    PipelineError,
    ToolInvocationFailure,
)
from src.deploy_orchestrator.finalization import Finalizer
from src.deploy_orchestrator.notifications import create_notifier
from src.deploy_orchestrator.shutdown import GracefulShutdown
from src.deploy_orchestrator.stages import Stage, StageContext, build_stages, stage_workdir
from src.deploy_orchestrator.state import PipelineRunState
from src.deploy_orchestrator.state_machine import TERMINAL_STATES, create_run_machine
from src.deploy_orchestrator.tools import TerraformToolAdapter
from src.deploy_shared.constants import (
    APPROVAL_DENIED_DETAIL,
    EXIT_APPROVAL_DENIED,
    EXIT_INTERRUPTED,
    EXIT_STAGE_FAILED,
    EXIT_SUCCESS,
)
from src.deploy_shared.models import (
    Decision,
    OverallStatus,
    RunParameters,
    StageResult,
    StageStatus,
    ToolResult,
)
from src.deploy_shared.protocols import ApprovalGate, Notifier, ToolAdapter
from src.deploy_shared.utils import now_iso
from src.shared.config import EnvironmentSettings
from src.shared.logging import run_id_var, stage_var

logger = logging.getLogger(__name__)

RunObserver = Callable[[str, PipelineRunState], None]


# ---------------------------------------------------------------------------
# RunModel -- state machine model with guard methods
# ---------------------------------------------------------------------------


class RunModel:
    """Model object for the ``transitions`` async state machine.

    Wraps a :class:`PipelineRunState` and exposes the guard methods
    required by :data:`~src.deploy_orchestrator.state_machine.TRANSITIONS`.
    """

    def __init__(self, run_state: PipelineRunState) -> None:
        self._rs = run_state
        self.state: str = "pending"

    def has_parameters(self, *args, **kwargs) -> bool:
        """True when the run was given its parameters."""
        return self._rs.parameters is not None

    def all_stages_passed(self, *args, **kwargs) -> bool:
        """True when no recorded stage failed."""
        return self._rs.failed_result is None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class StageOrchestrator:
    """Runs the stage sequence for one set of :class:`RunParameters`."""

    def __init__(
        self,
        adapter: ToolAdapter,
        gate: ApprovalGate,
        finalizer: Finalizer,
        config: DeployPipelineConfig,
        store: ArtifactStore | None = None,
        stages: tuple[Stage, ...] | None = None,
        shutdown: GracefulShutdown | None = None,
        state_dir: Path | str | None = None,
        observer: RunObserver | None = None,
    ) -> None:
        self.adapter = adapter
        self.gate = gate
        self.finalizer = finalizer
        self.config = config
        self.store = store if store is not None else ArtifactStore(config.artifacts.fingerprint)
        self.stages = stages if stages is not None else build_stages(config)
        self.shutdown = shutdown
        self.state_dir = Path(state_dir) if state_dir else None
        self.observer = observer

    async def run(self, parameters: RunParameters) -> PipelineRunState:
        """Execute one run and return its frozen state."""
        state = PipelineRunState(
            parameters=parameters,
            build_id=self.config.build_id,
            build_url=self.config.build_url,
        )
        model = RunModel(state)
        create_run_machine(model)
        run_token = run_id_var.set(state.run_id)
        if self.shutdown is not None:
            self.shutdown.set_state(state, self.state_dir)
            self.shutdown.set_gate(self.gate)

        logger.info(
            "Starting run %s: action=%s auto_approve=%s",
            state.run_id,
            parameters.action.value,
            parameters.auto_approve,
        )
        try:
            await model.start()  # type: ignore[attr-defined]
            self._save(state)
            self._notify("started", state)

            await self._run_stages(state, model)

            if model.state == "running":
                await model.succeed()  # type: ignore[attr-defined]
            if model.state not in TERMINAL_STATES:
                await model.fail()  # type: ignore[attr-defined]
            state.set_terminal(
                OverallStatus.SUCCEEDED if model.state == "succeeded" else OverallStatus.FAILED
            )
        except Exception:
            logger.exception("Unexpected error in run %s", state.run_id)
            self._close_unfinished(state, "unexpected orchestrator error", interrupted=False)
        finally:
            # Cancellation (BaseException) also lands here
            self._close_unfinished(state, "run cancelled", interrupted=True)
            logger.info("Run %s finished: %s", state.run_id, state.overall_status.value)
            await self._finalize(state)
            self._save(state)
            self._notify("finished", state)
            run_id_var.reset(run_token)
        return state

    # ------------------------------------------------------------------
    # Stage loop
    # ------------------------------------------------------------------

    async def _run_stages(self, state: PipelineRunState, model: RunModel) -> None:
        parameters = state.parameters
        assert parameters is not None

        for stage in self.stages:
            if self.shutdown is not None and self.shutdown.should_stop:
                logger.warning("Shutdown requested -- not starting stage '%s'", stage.name)
                state.interrupted = True
                state.interrupt_reason = state.interrupt_reason or "Signal received"
                await model.fail()  # type: ignore[attr-defined]
                return

            if not stage.should_run(parameters):
                now = now_iso()
                state.append_result(
                    StageResult(stage.name, StageStatus.SKIPPED, started_at=now, finished_at=now)
                )
                logger.info("Stage %s skipped for action=%s", stage.name, parameters.action.value)
                self._save(state)
                self._notify("stage", state)
                continue

            result = await self._execute_stage(stage, state, model)
            state.append_result(result)
            self._save(state)
            self._notify("stage", state)

            if result.status is StageStatus.FAILED:
                logger.error("Stage %s failed: %s", stage.name, result.error_detail)
                await model.fail()  # type: ignore[attr-defined]
                return
            logger.info("Stage %s succeeded", stage.name)

    async def _execute_stage(
        self, stage: Stage, state: PipelineRunState, model: RunModel
    ) -> StageResult:
        parameters = state.parameters
        assert parameters is not None
        started_at = now_iso()
        stage_token = stage_var.set(stage.name)
        state.current_stage = stage.name
        try:
            with stage_workdir(stage.working_directory) as workdir:
                if stage.needs_gate(parameters):
                    denial = await self._await_approval(stage, state, model)
                    if denial is not None:
                        return self._failed(stage, started_at, denial)

                ctx = StageContext(
                    adapter=self.adapter,
                    store=self.store,
                    config=self.config,
                    parameters=parameters,
                    stage_name=stage.name,
                    working_directory=workdir,
                )
                try:
                    tool_result = await stage.body(ctx)
                except PipelineError as exc:
                    return self._failed(stage, started_at, exc)
                except Exception as exc:
                    logger.exception("Stage %s raised an unexpected error", stage.name)
                    return self._failed(stage, started_at, exc)

                artifacts = self._record_artifacts(stage, tool_result)
                if not tool_result.succeeded:
                    failure = ToolInvocationFailure(
                        stage.name, tool_result.exit_code, tool_result.error_summary
                    )
                    result = self._failed(stage, started_at, failure)
                    result.exit_code = tool_result.exit_code
                    result.artifacts = artifacts
                    return result

                return StageResult(
                    stage_name=stage.name,
                    status=StageStatus.SUCCEEDED,
                    exit_code=tool_result.exit_code,
                    artifacts=artifacts,
                    started_at=started_at,
                    finished_at=now_iso(),
                )
        finally:
            stage_var.reset(stage_token)

    async def _await_approval(
        self, stage: Stage, state: PipelineRunState, model: RunModel
    ) -> ApprovalDenied | None:
        """Suspend on the gate.  Returns ``None`` on approval, the denial otherwise."""
        state.mark_awaiting_approval(stage.name)
        await model.await_approval()  # type: ignore[attr-defined]
        self._save(state)
        self._notify("awaiting_approval", state)

        message = stage.approval_message or f"Run stage '{stage.name}'?"
        action = state.parameters.action.value if state.parameters else ""
        try:
            decision = await self.gate.request(f"[{action}] {message}")
        except Exception as exc:
            logger.exception("Approval gate error for %s", stage.name)
            return ApprovalDenied(stage.name, str(exc))

        if self.shutdown is not None and self.shutdown.should_stop:
            logger.warning("Shutdown requested while %s awaited approval", stage.name)
            return ApprovalDenied(stage.name, "shutdown requested")
        if decision is Decision.APPROVE:
            logger.info("Stage %s approved", stage.name)
            await model.approval_granted()  # type: ignore[attr-defined]
            state.awaiting_approval = ""
            return None
        logger.warning("Stage %s not approved", stage.name)
        return ApprovalDenied(stage.name)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_artifacts(self, stage: Stage, tool_result: ToolResult) -> list:
        return [
            self.store.put(name, path, allow_empty=name in stage.allow_empty_artifacts, stage=stage.name)
            for name, path in tool_result.produced_paths.items()
        ]

    @staticmethod
    def _failed(stage: Stage, started_at: str, exc: Exception) -> StageResult:
        detail = APPROVAL_DENIED_DETAIL if isinstance(exc, ApprovalDenied) else str(exc)
        if isinstance(exc, ApprovalDenied) and exc.reason:
            detail = f"{APPROVAL_DENIED_DETAIL}: {exc.reason}"
        return StageResult(
            stage_name=stage.name,
            status=StageStatus.FAILED,
            error_detail=detail,
            error_type=type(exc).__name__,
            started_at=started_at,
            finished_at=now_iso(),
        )

    def _close_unfinished(
        self, state: PipelineRunState, reason: str, interrupted: bool = True
    ) -> None:
        """Force a terminal FAILED status on a run that did not reach one."""
        if state.frozen:
            return
        pending = state.awaiting_approval
        if pending and state.result_for(pending) is None:
            state.append_result(
                StageResult(
                    stage_name=pending,
                    status=StageStatus.FAILED,
                    error_detail=f"{APPROVAL_DENIED_DETAIL}: {reason}",
                    error_type=ApprovalDenied.__name__,
                    finished_at=now_iso(),
                )
            )
        if interrupted:
            state.interrupted = True
            state.interrupt_reason = state.interrupt_reason or reason
        state.set_terminal(OverallStatus.FAILED)

    async def _finalize(self, state: PipelineRunState) -> None:
        try:
            await self.finalizer.finalize(state, self.store)
        except Exception:
            logger.exception("Finalization failed for run %s", state.run_id)

    def _save(self, state: PipelineRunState) -> None:
        if self.state_dir is None:
            return
        try:
            state.save(self.state_dir)
        except OSError:
            logger.exception("Could not persist run state to %s", self.state_dir)

    def _notify(self, event: str, state: PipelineRunState) -> None:
        if self.observer is None:
            return
        try:
            self.observer(event, state)
        except Exception:
            logger.exception("Run observer failed on '%s'", event)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def exit_code_for(state: PipelineRunState) -> int:
    """Map a finished run to a process exit code.

    0 on success; 3 when interrupted; 2 when an approval was denied;
    1 for any other failure.
    """
    if state.overall_status is OverallStatus.SUCCEEDED:
        return EXIT_SUCCESS
    if state.interrupted:
        return EXIT_INTERRUPTED
    failed = state.failed_result
    if failed is not None and failed.error_type == ApprovalDenied.__name__:
        return EXIT_APPROVAL_DENIED
    return EXIT_STAGE_FAILED


async def execute_pipeline(
    parameters: RunParameters,
    config_path: str | Path | None = None,
    config: DeployPipelineConfig | None = None,
    adapter: ToolAdapter | None = None,
    gate: ApprovalGate | None = None,
    notifier: Notifier | None = None,
    interactive: bool = False,
    install_signal_handlers: bool = False,
    observer: RunObserver | None = None,
) -> PipelineRunState:
    """Execute a full run with default collaborators wired from config.

    Parameters
    ----------
    parameters:
        The run's action and auto-approve flag.
    config_path:
        Optional path to config YAML (ignored when *config* is given).
    config:
        Pre-built configuration.
    adapter, gate, notifier:
        Collaborator overrides; defaults come from the configuration.
    interactive:
        Whether a terminal is attached for console approvals.
    install_signal_handlers:
        Install SIGINT/SIGTERM handlers for cooperative shutdown.

    Returns
    -------
    PipelineRunState
        Final, frozen run state.
    """
    if config is None:
        config = load_deploy_config(config_path, env=EnvironmentSettings())

    adapter = adapter or TerraformToolAdapter(config.tool, config.source, config.scan)
    gate = gate or create_approval_gate(config.approval, interactive=interactive)
    notifier = notifier or create_notifier(config.notification)

    shutdown = GracefulShutdown()
    if install_signal_handlers:
        shutdown.install()

    orchestrator = StageOrchestrator(
        adapter=adapter,
        gate=gate,
        finalizer=Finalizer(config, notifier),
        config=config,
        shutdown=shutdown,
        state_dir=config.state_dir,
        observer=observer,
    )
    return await orchestrator.run(parameters)
