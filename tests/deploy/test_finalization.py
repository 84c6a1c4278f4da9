"""Tests for the Finalizer."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.deploy_orchestrator.artifacts import ArtifactStore
from src.deploy_orchestrator.config import CleanupConfig
from src.deploy_orchestrator.finalization import Finalizer
from src.deploy_orchestrator.state import PipelineRunState
from src.deploy_shared.models import (
    Action,
    OverallStatus,
    RunParameters,
    StageResult,
    StageStatus,
)

from tests.deploy.conftest import RecordingNotifier


def _finished_state(status: OverallStatus) -> PipelineRunState:
    state = PipelineRunState(parameters=RunParameters(Action.APPLY), build_id="42")
    if status is OverallStatus.FAILED:
        state.append_result(
            StageResult("plan", StageStatus.FAILED, exit_code=1, error_detail="Error: invalid provider")
        )
    state.set_terminal(status)
    return state


class TestFinalize:
    @pytest.mark.asyncio
    async def test_archives_cleans_and_notifies(self, deploy_config, workspace: Path) -> None:
        plan = workspace / "tfplan"
        plan.write_bytes(b"plan")
        store = ArtifactStore()
        store.put("tfplan", plan, stage="plan")
        notifier = RecordingNotifier()
        state = _finished_state(OverallStatus.SUCCEEDED)

        report = await Finalizer(deploy_config, notifier).finalize(state, store)

        assert report["archive"] == {"ok": True, "archived": ["tfplan"]}
        assert (Path(deploy_config.artifacts.archive_dir) / "42" / "tfplan").is_file()
        assert not plan.exists()
        assert report["cleanup"]["ok"] is True
        assert [n.success for n in notifier.sent] == [True]
        assert state.artifacts[0]["name"] == "tfplan"
        assert state.finalization is report

    @pytest.mark.asyncio
    async def test_archive_failure_does_not_stop_notification(self, deploy_config, tmp_path: Path) -> None:
        store = ArtifactStore()
        store.put("outputs.json", tmp_path / "missing.json")
        notifier = RecordingNotifier()
        state = _finished_state(OverallStatus.SUCCEEDED)

        report = await Finalizer(deploy_config, notifier).finalize(state, store)

        assert report["archive"]["ok"] is False
        assert "outputs.json" in report["archive"]["error"]
        assert len(notifier.sent) == 1
        assert state.overall_status is OverallStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_notification_failure_recorded(self, deploy_config) -> None:
        notifier = RecordingNotifier(error=ConnectionError("refused"))
        state = _finished_state(OverallStatus.FAILED)

        report = await Finalizer(deploy_config, notifier).finalize(state, ArtifactStore())

        assert report["notification"] == {"ok": False, "success": False, "error": "refused"}
        assert state.overall_status is OverallStatus.FAILED

    def test_archive_dir_uses_build_id(self, deploy_config) -> None:
        finalizer = Finalizer(deploy_config, RecordingNotifier())
        state = _finished_state(OverallStatus.SUCCEEDED)
        assert finalizer.archive_dir_for(state) == Path(deploy_config.artifacts.archive_dir) / "42"


class TestCleanWorkspace:
    def test_removes_transient_files_keeps_cache(self, deploy_config, workspace: Path) -> None:
        (workspace / "tfplan").write_text("x")
        (workspace / "destroy.tfplan").write_text("x")
        (workspace / "extra.tfplan").write_text("x")
        (workspace / "main.tf").write_text("resource {}")
        cache = workspace / ".terraform"
        cache.mkdir()

        removed = Finalizer(deploy_config, RecordingNotifier()).clean_workspace()

        assert len(removed) == 3
        assert (workspace / "main.tf").exists()
        assert cache.is_dir()

    def test_cache_removed_when_not_preserved(self, deploy_config, workspace: Path) -> None:
        deploy_config.cleanup = CleanupConfig(preserve_tool_cache=False)
        cache = workspace / ".terraform"
        (cache / "providers").mkdir(parents=True)

        removed = Finalizer(deploy_config, RecordingNotifier()).clean_workspace()

        assert removed == [str(cache)]
        assert not cache.exists()

    def test_missing_workdir_is_noop(self, deploy_config, tmp_path: Path) -> None:
        deploy_config.source.workspace = str(tmp_path / "gone")
        assert Finalizer(deploy_config, RecordingNotifier()).clean_workspace() == []
