"""Tests for the run lifecycle state machine."""

from __future__ import annotations

import pytest
from transitions import MachineError

from src.deploy_orchestrator.pipeline import RunModel
from src.deploy_orchestrator.state import PipelineRunState
from src.deploy_orchestrator.state_machine import (
    STATES,
    TERMINAL_STATES,
    TRANSITIONS,
    create_run_machine,
)
from src.deploy_shared.models import Action, RunParameters, StageResult, StageStatus


def _model(parameters: RunParameters | None = RunParameters(Action.APPLY)) -> RunModel:
    model = RunModel(PipelineRunState(parameters=parameters))
    create_run_machine(model)
    return model


class TestDefinitions:
    def test_state_names(self) -> None:
        names = {s.name for s in STATES}
        assert names == {"pending", "running", "awaiting_approval", "succeeded", "failed"}
        assert TERMINAL_STATES <= names

    def test_no_transition_leaves_terminal_states(self) -> None:
        for t in TRANSITIONS:
            sources = t["source"] if isinstance(t["source"], list) else [t["source"]]
            assert not set(sources) & TERMINAL_STATES, t["trigger"]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_happy_path_with_gate(self) -> None:
        model = _model()
        await model.start()
        await model.await_approval()
        assert model.state == "awaiting_approval"
        await model.approval_granted()
        await model.succeed()
        assert model.state == "succeeded"

    @pytest.mark.asyncio
    async def test_start_requires_parameters(self) -> None:
        model = _model(parameters=None)
        assert await model.start() is False
        assert model.state == "pending"

    @pytest.mark.asyncio
    async def test_succeed_blocked_by_failed_stage(self) -> None:
        model = _model()
        model._rs.results.append(StageResult("validate", StageStatus.FAILED))
        await model.start()
        assert await model.succeed() is False
        assert model.state == "running"

    @pytest.mark.asyncio
    async def test_fail_from_awaiting_approval(self) -> None:
        model = _model()
        await model.start()
        await model.await_approval()
        await model.fail()
        assert model.state == "failed"

    @pytest.mark.asyncio
    async def test_terminal_state_is_final(self) -> None:
        model = _model()
        await model.start()
        await model.fail()
        with pytest.raises(MachineError):
            await model.succeed()
        with pytest.raises(MachineError):
            await model.fail()
