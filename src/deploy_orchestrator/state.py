"""Pipeline run state: the ordered run log plus persistence with atomic writes."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from src.deploy_orchestrator.exceptions import PipelineError
from src.deploy_shared.constants import STATE_DIR, STATE_FILE
from src.deploy_shared.models import (
    OverallStatus,
    RunParameters,
    StageResult,
    StageStatus,
)
from src.deploy_shared.utils import atomic_write_json, load_json, now_iso


@dataclass
class PipelineRunState:
    """Represents the full state of one pipeline run.

    Only the orchestrator mutates it, through :meth:`append_result`,
    :meth:`mark_awaiting_approval` and :meth:`set_terminal`.  Once a
    terminal status is set the run log is frozen.

    Persisted to ``RUN_STATE.json`` using atomic writes.
    """

    parameters: RunParameters | None = None
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    build_id: str = "local"
    build_url: str = ""
    results: list[StageResult] = field(default_factory=list)
    overall_status: OverallStatus = OverallStatus.RUNNING
    current_stage: str = ""
    awaiting_approval: str = ""
    artifacts: list[dict[str, Any]] = field(default_factory=list)
    finalization: dict[str, Any] = field(default_factory=dict)
    interrupted: bool = False
    interrupt_reason: str = ""
    started_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    finished_at: str = ""
    schema_version: int = 1

    # ------------------------------------------------------------------
    # Run log
    # ------------------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self.overall_status is not OverallStatus.RUNNING

    def append_result(self, result: StageResult) -> None:
        """Append one stage result to the run log.

        Raises:
            PipelineError: If the run is already terminal, or the stage
                already has a result.
        """
        if self.frozen:
            raise PipelineError(
                f"Run {self.run_id} is {self.overall_status.value}; cannot record '{result.stage_name}'"
            )
        if self.result_for(result.stage_name) is not None:
            raise PipelineError(f"Stage '{result.stage_name}' already has a result")
        self.awaiting_approval = ""
        self.results.append(result)

    def mark_awaiting_approval(self, stage_name: str) -> None:
        if self.frozen:
            raise PipelineError(f"Run {self.run_id} is already terminal")
        self.current_stage = stage_name
        self.awaiting_approval = stage_name

    def set_terminal(self, status: OverallStatus) -> None:
        """Set the single terminal status for the run.

        Raises:
            PipelineError: If *status* is not terminal or one is already set.
        """
        if status is OverallStatus.RUNNING:
            raise PipelineError("RUNNING is not a terminal status")
        if self.frozen:
            raise PipelineError(
                f"Run {self.run_id} already finished as {self.overall_status.value}"
            )
        self.overall_status = status
        self.current_stage = ""
        self.awaiting_approval = ""
        self.finished_at = now_iso()

    def result_for(self, stage_name: str) -> StageResult | None:
        for result in self.results:
            if result.stage_name == stage_name:
                return result
        return None

    def status_of(self, stage_name: str) -> StageStatus | None:
        """Status of *stage_name*, including a live ``awaiting_approval``."""
        if self.awaiting_approval == stage_name:
            return StageStatus.AWAITING_APPROVAL
        result = self.result_for(stage_name)
        return result.status if result else None

    @property
    def executed_stages(self) -> list[str]:
        return [r.stage_name for r in self.results if r.status is not StageStatus.SKIPPED]

    @property
    def skipped_stages(self) -> list[str]:
        return [r.stage_name for r in self.results if r.status is StageStatus.SKIPPED]

    @property
    def failed_result(self) -> StageResult | None:
        for result in self.results:
            if result.status is StageStatus.FAILED:
                return result
        return None

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialise the state to a plain dictionary."""
        data = asdict(self)
        data["parameters"] = self.parameters.to_dict() if self.parameters else None
        data["results"] = [r.to_dict() for r in self.results]
        data["overall_status"] = self.overall_status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineRunState:
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        params = filtered.pop("parameters", None)
        results = filtered.pop("results", [])
        status = filtered.pop("overall_status", OverallStatus.RUNNING.value)
        return cls(
            parameters=RunParameters.from_raw(**params) if params else None,
            results=[StageResult.from_dict(r) for r in results],
            overall_status=OverallStatus(status),
            **filtered,
        )

    def save(self, directory: Path | str | None = None) -> Path:
        """Persist state to disk using atomic writes.

        Args:
            directory: Target directory.  Defaults to the standard state
                       directory location.

        Returns:
            The path the state was written to.
        """
        directory = Path(directory) if directory else Path(STATE_DIR)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / STATE_FILE
        self.updated_at = now_iso()
        atomic_write_json(target, self.to_dict())
        return target

    @classmethod
    def load(cls, directory: Path | str | None = None) -> PipelineRunState | None:
        """Load state from a JSON file.

        Returns:
            Reconstructed ``PipelineRunState``, or ``None`` if the file is
            missing or invalid.
        """
        directory = Path(directory) if directory else Path(STATE_DIR)
        data = load_json(directory / STATE_FILE)
        if data is None:
            return None
        return cls.from_dict(data)
