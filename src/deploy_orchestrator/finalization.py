"""Finalization sequencer: archive, workspace hygiene, one notification.

Runs once per run after the terminal status is set, whatever the outcome.
Each step is isolated: a failure is logged and recorded in the returned
report, the next step still runs, and the run's status never changes.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

from src.deploy_orchestrator.artifacts import ArtifactStore
from src.deploy_orchestrator.config import DeployPipelineConfig
from src.deploy_orchestrator.notifications import build_notification
from src.deploy_orchestrator.state import PipelineRunState
from src.deploy_shared.constants import TOOL_CACHE_DIR, TRANSIENT_PLAN_FILES
from src.deploy_shared.protocols import Notifier

logger = logging.getLogger(__name__)


class Finalizer:
    """Runs the post-run sequence for a finished :class:`PipelineRunState`."""

    def __init__(self, config: DeployPipelineConfig, notifier: Notifier) -> None:
        self.config = config
        self.notifier = notifier

    def archive_dir_for(self, state: PipelineRunState) -> Path:
        return Path(self.config.artifacts.archive_dir) / str(state.build_id)

    async def finalize(self, state: PipelineRunState, store: ArtifactStore) -> dict[str, Any]:
        """Archive artifacts, clean the workspace, and send one notification."""
        report: dict[str, Any] = {}

        try:
            archived = store.archive(self.archive_dir_for(state))
            report["archive"] = {"ok": True, "archived": [ref.name for ref in archived]}
        except Exception as exc:
            logger.exception("Artifact archival failed")
            report["archive"] = {"ok": False, "error": str(exc)}
        state.artifacts = [ref.to_dict() for ref in store.list()]

        try:
            removed = self.clean_workspace()
            report["cleanup"] = {"ok": True, "removed": removed}
        except Exception as exc:
            logger.exception("Workspace cleanup failed")
            report["cleanup"] = {"ok": False, "error": str(exc)}

        notification = build_notification(
            state,
            job_name=self.config.job_name,
            recipients=self.config.notification.recipients,
        )
        try:
            await self.notifier.send(notification)
            report["notification"] = {"ok": True, "success": notification.success}
        except Exception as exc:
            logger.exception("Notification delivery failed")
            report["notification"] = {"ok": False, "success": notification.success, "error": str(exc)}

        state.finalization = report
        return report

    def clean_workspace(self) -> list[str]:
        """Remove transient plan files; keep the tool cache unless configured otherwise.

        Returns:
            Paths that were removed.
        """
        workdir = self.config.working_dir
        removed: list[str] = []
        if not workdir.is_dir():
            return removed

        candidates: set[Path] = {workdir / name for name in TRANSIENT_PLAN_FILES}
        for pattern in self.config.cleanup.transient_patterns:
            candidates.update(workdir.glob(pattern))
        for path in sorted(candidates):
            if path.is_file():
                path.unlink()
                removed.append(str(path))

        cache = workdir / TOOL_CACHE_DIR
        if not self.config.cleanup.preserve_tool_cache and cache.is_dir():
            shutil.rmtree(cache)
            removed.append(str(cache))

        if removed:
            logger.info("Removed %d transient path(s) from %s", len(removed), workdir)
        return removed
