"""Tests for the Rich display layer."""

from __future__ import annotations

import io

from rich.console import Console

import src.deploy_orchestrator.display as display_mod
from src.deploy_orchestrator.display import (
    print_approval_request,
    print_error_panel,
    print_final_summary,
    print_run_header,
    print_stage_table,
)
from src.deploy_orchestrator.state import PipelineRunState
from src.deploy_shared.models import (
    Action,
    ArtifactRef,
    OverallStatus,
    RunParameters,
    StageResult,
    StageStatus,
)


def _capture_output(fn, *args, **kwargs) -> str:
    """Capture Rich console output by temporarily replacing the module console."""
    buf = io.StringIO()
    original = display_mod._console
    display_mod._console = Console(file=buf, force_terminal=False, width=160)
    try:
        fn(*args, **kwargs)
    finally:
        display_mod._console = original
    return buf.getvalue()


def _failed_apply_state() -> PipelineRunState:
    state = PipelineRunState(parameters=RunParameters(Action.APPLY), build_id="31")
    state.append_result(StageResult("checkout", StageStatus.SUCCEEDED, exit_code=0))
    state.append_result(
        StageResult(
            "plan",
            StageStatus.SUCCEEDED,
            exit_code=0,
            artifacts=[ArtifactRef("tfplan", "/ws/tfplan", fingerprint="0123456789abcdef")],
        )
    )
    state.append_result(
        StageResult("apply", StageStatus.FAILED, error_detail="approval denied", error_type="ApprovalDenied")
    )
    state.set_terminal(OverallStatus.FAILED)
    state.artifacts = [{"name": "tfplan", "fingerprint": "0123456789abcdef"}]
    state.finalization = {"notification": {"ok": False, "error": "smtp down"}}
    return state


class TestRunHeader:
    def test_shows_run_identity(self) -> None:
        state = PipelineRunState(parameters=RunParameters(Action.DESTROY, auto_approve=True), build_id="5")
        out = _capture_output(print_run_header, state)
        assert state.run_id in out
        assert "#5" in out
        assert "destroy" in out
        assert "Auto-approve: yes" in out


class TestStageTable:
    def test_finished_run_lists_recorded_stages(self) -> None:
        out = _capture_output(print_stage_table, _failed_apply_state())
        assert "checkout" in out
        assert "SUCCEEDED" in out
        assert "FAILED" in out
        assert "approval denied" in out
        assert "tfplan" in out
        # Stages past the failure are absent from a finished run
        assert "outputs" not in out

    def test_live_run_shows_pending_and_awaiting(self) -> None:
        state = PipelineRunState(parameters=RunParameters(Action.APPLY))
        state.append_result(StageResult("checkout", StageStatus.SUCCEEDED, exit_code=0))
        state.mark_awaiting_approval("apply")
        out = _capture_output(print_stage_table, state)
        assert "AWAITING APPROVAL" in out
        assert "NOT RUN" in out


class TestPanels:
    def test_approval_request_with_timeout(self) -> None:
        out = _capture_output(print_approval_request, "Apply the saved plan?", timeout=300)
        assert "Apply the saved plan?" in out
        assert "300s" in out

    def test_approval_request_without_timeout(self) -> None:
        out = _capture_output(print_approval_request, "Destroy?")
        assert "paused" in out

    def test_error_panel(self) -> None:
        out = _capture_output(print_error_panel, ValueError("bad config"))
        assert "bad config" in out
        assert "Error" in out

    def test_final_summary_failure(self) -> None:
        out = _capture_output(print_final_summary, _failed_apply_state())
        assert "Run Failed" in out
        assert "Failed Stage: apply" in out
        assert "0123456789ab" in out
        assert "notification failed: smtp down" in out

    def test_final_summary_success(self) -> None:
        state = PipelineRunState(parameters=RunParameters(Action.PLAN))
        state.append_result(StageResult("checkout", StageStatus.SUCCEEDED))
        state.append_result(StageResult("apply", StageStatus.SKIPPED))
        state.set_terminal(OverallStatus.SUCCEEDED)
        out = _capture_output(print_final_summary, state)
        assert "Run Succeeded" in out
        assert "Stages Executed: 1 / Recorded: 2" in out
