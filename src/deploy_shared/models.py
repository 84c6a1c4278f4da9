"""Shared data models for the deploy pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class Action(str, Enum):
    """Operator-selected pipeline action."""
    PLAN = "plan"
    APPLY = "apply"
    DESTROY = "destroy"


class StageStatus(str, Enum):
    """Status of a single stage in the run log."""
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"
    AWAITING_APPROVAL = "awaiting_approval"


class OverallStatus(str, Enum):
    """Aggregate status of a pipeline run."""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Decision(str, Enum):
    """Operator decision delivered through the approval gate."""
    APPROVE = "approve"
    ABORT = "abort"


@dataclass(frozen=True)
class RunParameters:
    """Parameters supplied once at pipeline invocation."""
    action: Action
    auto_approve: bool = False

    @classmethod
    def from_raw(cls, action: str | Action, auto_approve: bool | str = False) -> RunParameters:
        """Build parameters from loosely typed input (CLI, env, YAML).

        Raises:
            ValueError: If *action* is not one of the supported actions.
        """
        if isinstance(action, Action):
            parsed = action
        else:
            try:
                parsed = Action(str(action).strip().lower())
            except ValueError:
                valid = ", ".join(a.value for a in Action)
                raise ValueError(f"Unknown action '{action}' (expected one of: {valid})") from None
        if isinstance(auto_approve, str):
            auto_approve = auto_approve.strip().lower() in ("1", "true", "yes", "on")
        return cls(action=parsed, auto_approve=bool(auto_approve))

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action.value, "auto_approve": self.auto_approve}


@dataclass
class ToolResult:
    """Structured result of one external tool invocation."""
    succeeded: bool
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    produced_paths: dict[str, str] = field(default_factory=dict)
    command: list[str] = field(default_factory=list)

    @property
    def error_summary(self) -> str:
        """Last non-empty line of stderr (or stdout), for error details."""
        for stream in (self.stderr, self.stdout):
            lines = [line for line in stream.strip().splitlines() if line.strip()]
            if lines:
                return lines[-1].strip()
        return ""


@dataclass(frozen=True)
class ArtifactRef:
    """Reference to a named file byproduct of a stage."""
    name: str
    path: str
    fingerprint: str | None = None
    allow_empty: bool = False
    stage: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StageResult:
    """Outcome of one stage, appended to the run log."""
    stage_name: str
    status: StageStatus
    exit_code: int | None = None
    artifacts: list[ArtifactRef] = field(default_factory=list)
    error_detail: str = ""
    error_type: str = ""
    started_at: str = ""
    finished_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StageResult:
        return cls(
            stage_name=data.get("stage_name", ""),
            status=StageStatus(data.get("status", StageStatus.SKIPPED.value)),
            exit_code=data.get("exit_code"),
            artifacts=[ArtifactRef(**a) for a in data.get("artifacts", [])],
            error_detail=data.get("error_detail", ""),
            error_type=data.get("error_type", ""),
            started_at=data.get("started_at", ""),
            finished_at=data.get("finished_at", ""),
        )


@dataclass
class Notification:
    """A single run-outcome notification."""
    success: bool
    subject: str
    body: str
    action: str = ""
    build_id: str = ""
    build_url: str = ""
    recipients: list[str] = field(default_factory=list)
