"""Shared fixtures for deploy orchestrator tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from src.deploy_orchestrator.approval import StaticApprovalGate
from src.deploy_orchestrator.config import (
    ApprovalConfig,
    ArtifactConfig,
    DeployPipelineConfig,
    NotificationConfig,
    SourceConfig,
)
from src.deploy_orchestrator.finalization import Finalizer
from src.deploy_orchestrator.pipeline import StageOrchestrator
from src.deploy_orchestrator.stages import current_stage_dir
from src.deploy_shared.constants import (
    ARTIFACT_DESTROY_PLAN,
    ARTIFACT_OUTPUTS,
    ARTIFACT_PLAN,
    ARTIFACT_SCAN_REPORT,
)
from src.deploy_shared.models import Decision, Notification, ToolResult
from src.shared.logging import stage_var


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeToolAdapter:
    """Programmable tool adapter that records every call.

    ``failures`` maps a method name to the exit code it should report;
    ``raises`` maps a method name to an exception it should raise.
    """

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.failures: dict[str, int] = {}
        self.raises: dict[str, BaseException] = {}
        self.produce_plan = True

    def fail(self, method: str, exit_code: int = 1) -> None:
        self.failures[method] = exit_code

    @property
    def methods(self) -> list[str]:
        return [c["method"] for c in self.calls]

    @property
    def mutating_calls(self) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == "apply"]

    def _record(self, method: str, **args: Any) -> ToolResult | None:
        self.calls.append({
            "method": method,
            "cwd": current_stage_dir.get(),
            "stage": stage_var.get(),
            **args,
        })
        if method in self.raises:
            raise self.raises[method]
        if method in self.failures:
            return ToolResult(
                succeeded=False,
                exit_code=self.failures[method],
                stderr=f"Error: {method} failed",
                command=["fake", method],
            )
        return None

    @staticmethod
    def _ok(method: str, **produced: str) -> ToolResult:
        return ToolResult(succeeded=True, exit_code=0, command=["fake", method], produced_paths=produced)

    async def checkout(self, source_ref: str) -> ToolResult:
        return self._record("checkout", source_ref=source_ref) or self._ok("checkout")

    async def check_credentials(self) -> ToolResult:
        return self._record("check_credentials") or self._ok("check_credentials")

    async def ensure_tool_installed(self, version: str) -> ToolResult:
        return self._record("ensure_tool_installed", version=version) or self._ok("ensure_tool_installed")

    async def init(self, directory: Path) -> ToolResult:
        return self._record("init", directory=directory) or self._ok("init")

    async def validate(self, directory: Path) -> ToolResult:
        return self._record("validate", directory=directory) or self._ok("validate")

    async def format_check(self, directory: Path) -> ToolResult:
        return self._record("format_check", directory=directory) or self._ok("format_check")

    async def security_scan(self, directory: Path) -> ToolResult:
        failed = self._record("security_scan", directory=directory)
        report = str(Path(directory) / ARTIFACT_SCAN_REPORT)
        if failed:
            failed.produced_paths[ARTIFACT_SCAN_REPORT] = report
            return failed
        return self._ok("security_scan", **{ARTIFACT_SCAN_REPORT: report})

    async def plan(self, directory: Path, destructive: bool = False) -> ToolResult:
        failed = self._record("plan", directory=directory, destructive=destructive)
        if failed:
            return failed
        if not self.produce_plan:
            return self._ok("plan")
        name = ARTIFACT_DESTROY_PLAN if destructive else ARTIFACT_PLAN
        path = Path(directory) / name
        path.write_text(f"fake {name}\n", encoding="utf-8")
        return self._ok("plan", **{name: str(path)})

    async def apply(self, directory: Path, plan_file: Path) -> ToolResult:
        return self._record("apply", directory=directory, plan_file=Path(plan_file)) or self._ok("apply")

    async def show_outputs(self, directory: Path) -> ToolResult:
        failed = self._record("show_outputs", directory=directory)
        if failed:
            return failed
        path = Path(directory) / ARTIFACT_OUTPUTS
        path.write_text('{"vpc_id": {"value": "vpc-123"}}', encoding="utf-8")
        return self._ok("show_outputs", **{ARTIFACT_OUTPUTS: str(path)})


class RecordingNotifier:
    """Notifier that keeps every notification it is asked to send."""

    def __init__(self, error: Exception | None = None) -> None:
        self.sent: list[Notification] = []
        self.error = error

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)
        if self.error is not None:
            raise self.error


class CountingFinalizer(Finalizer):
    """Finalizer that counts how often it runs."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.calls = 0

    async def finalize(self, state, store):
        self.calls += 1
        return await super().finalize(state, store)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws


@pytest.fixture
def deploy_config(tmp_path: Path, workspace: Path) -> DeployPipelineConfig:
    return DeployPipelineConfig(
        source=SourceConfig(workspace=str(workspace)),
        approval=ApprovalConfig(mode="abort"),
        artifacts=ArtifactConfig(archive_dir=str(tmp_path / "archive")),
        notification=NotificationConfig(channel="log"),
        state_dir=str(tmp_path / "state"),
        build_id="42",
        build_url="https://ci.example.com/job/deploy/42/",
    )


@pytest.fixture
def fake_adapter() -> FakeToolAdapter:
    return FakeToolAdapter()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_orchestrator(deploy_config, fake_adapter, notifier):
    """Factory building a :class:`StageOrchestrator` around the fakes."""

    def _make(gate=None, finalizer=None, **kwargs) -> StageOrchestrator:
        return StageOrchestrator(
            adapter=fake_adapter,
            gate=gate if gate is not None else StaticApprovalGate(Decision.APPROVE),
            finalizer=finalizer or CountingFinalizer(deploy_config, notifier),
            config=deploy_config,
            **kwargs,
        )

    return _make
