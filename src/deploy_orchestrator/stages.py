"""Stage definitions: the fixed, ordered sequence a run walks through.

Stage order lives in exactly one place, :func:`build_stages`.  Each stage
is an immutable descriptor with a pure run-predicate over
:class:`RunParameters`, so which stages execute is a function of the
parameters alone and can be tested without running anything.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Iterator

from src.deploy_orchestrator.config import DeployPipelineConfig
from src.deploy_orchestrator.exceptions import MissingArtifact
from src.deploy_shared.constants import (
    ARTIFACT_DESTROY_PLAN,
    ARTIFACT_OUTPUTS,
    ARTIFACT_PLAN,
    ARTIFACT_SCAN_REPORT,
    STAGE_APPLY,
    STAGE_CHECKOUT,
    STAGE_CREDENTIALS,
    STAGE_DESTROY,
    STAGE_DESTROY_PLAN,
    STAGE_FMT_CHECK,
    STAGE_INIT,
    STAGE_OUTPUTS,
    STAGE_PLAN,
    STAGE_SECURITY_SCAN,
    STAGE_SETUP,
    STAGE_VALIDATE,
)
from src.deploy_shared.models import Action, RunParameters, ToolResult

if TYPE_CHECKING:
    from src.deploy_orchestrator.artifacts import ArtifactStore
    from src.deploy_shared.protocols import ToolAdapter

# Directory of the stage currently executing; unset outside a stage
current_stage_dir: contextvars.ContextVar[Path | None] = contextvars.ContextVar(
    "current_stage_dir", default=None
)


@contextmanager
def stage_workdir(path: Path | str) -> Iterator[Path]:
    """Bind *path* as the current stage directory for the enclosed block.

    The binding is reset on exit, including on error, so one stage's
    directory never leaks into the next.  The process cwd is not touched.
    """
    resolved = Path(path)
    token = current_stage_dir.set(resolved)
    try:
        yield resolved
    finally:
        current_stage_dir.reset(token)


@dataclass
class StageContext:
    """Everything a stage body may use."""

    adapter: ToolAdapter
    store: ArtifactStore
    config: DeployPipelineConfig
    parameters: RunParameters
    stage_name: str = ""
    working_directory: Path = field(default_factory=lambda: Path("."))

    def require_artifact(self, name: str) -> Path:
        """Return the path of a recorded, non-empty artifact.

        Raises:
            MissingArtifact: If the artifact was never recorded or its file
                is absent or empty.
        """
        ref = self.store.get(name)
        if ref is None:
            raise MissingArtifact(name)
        path = Path(ref.path)
        if not path.is_file() or path.stat().st_size == 0:
            raise MissingArtifact(name, ref.path)
        return path


StageBody = Callable[[StageContext], Awaitable[ToolResult]]
Predicate = Callable[[RunParameters], bool]


@dataclass(frozen=True)
class Stage:
    """Immutable stage descriptor."""

    name: str
    predicate: Predicate
    working_directory: Path
    body: StageBody
    requires_approval: bool = False
    approval_message: str = ""
    allow_empty_artifacts: frozenset[str] = frozenset()

    def should_run(self, parameters: RunParameters) -> bool:
        return bool(self.predicate(parameters))

    def needs_gate(self, parameters: RunParameters) -> bool:
        """Whether the approval gate must be consulted before the body."""
        return self.requires_approval and not parameters.auto_approve


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def always(parameters: RunParameters) -> bool:
    return True


def computes_plan(parameters: RunParameters) -> bool:
    return parameters.action in (Action.PLAN, Action.APPLY)


def is_apply(parameters: RunParameters) -> bool:
    return parameters.action is Action.APPLY


def is_destroy(parameters: RunParameters) -> bool:
    return parameters.action is Action.DESTROY


# ---------------------------------------------------------------------------
# Stage bodies
# ---------------------------------------------------------------------------


async def _checkout(ctx: StageContext) -> ToolResult:
    return await ctx.adapter.checkout(ctx.config.source.ref)


async def _check_credentials(ctx: StageContext) -> ToolResult:
    return await ctx.adapter.check_credentials()


async def _setup(ctx: StageContext) -> ToolResult:
    return await ctx.adapter.ensure_tool_installed(ctx.config.tool.version)


async def _init(ctx: StageContext) -> ToolResult:
    return await ctx.adapter.init(ctx.working_directory)


async def _validate(ctx: StageContext) -> ToolResult:
    return await ctx.adapter.validate(ctx.working_directory)


async def _format_check(ctx: StageContext) -> ToolResult:
    return await ctx.adapter.format_check(ctx.working_directory)


async def _security_scan(ctx: StageContext) -> ToolResult:
    return await ctx.adapter.security_scan(ctx.working_directory)


async def _plan(ctx: StageContext) -> ToolResult:
    return await ctx.adapter.plan(ctx.working_directory, destructive=False)


async def _apply(ctx: StageContext) -> ToolResult:
    plan_file = ctx.require_artifact(ARTIFACT_PLAN)
    return await ctx.adapter.apply(ctx.working_directory, plan_file)


async def _destroy_plan(ctx: StageContext) -> ToolResult:
    return await ctx.adapter.plan(ctx.working_directory, destructive=True)


async def _destroy(ctx: StageContext) -> ToolResult:
    plan_file = ctx.require_artifact(ARTIFACT_DESTROY_PLAN)
    return await ctx.adapter.apply(ctx.working_directory, plan_file)


async def _outputs(ctx: StageContext) -> ToolResult:
    return await ctx.adapter.show_outputs(ctx.working_directory)


# ---------------------------------------------------------------------------
# Sequence
# ---------------------------------------------------------------------------


def build_stages(config: DeployPipelineConfig) -> tuple[Stage, ...]:
    """Return the ordered stage tuple for *config*.

    The security scan is skipped when scanning is disabled.
    The output stage runs on ``apply`` only, or on ``plan`` and
    ``apply`` when ``outputs_on_plan`` is set.
    """
    workspace = Path(config.source.workspace)
    tf_dir = config.working_dir

    def outputs_predicate(parameters: RunParameters) -> bool:
        if config.outputs_on_plan:
            return computes_plan(parameters)
        return is_apply(parameters)

    def scan_predicate(parameters: RunParameters) -> bool:
        return config.scan.enabled

    return (
        Stage(STAGE_CHECKOUT, always, workspace, _checkout),
        Stage(STAGE_CREDENTIALS, always, workspace, _check_credentials),
        Stage(STAGE_SETUP, always, workspace, _setup),
        Stage(STAGE_INIT, always, tf_dir, _init),
        Stage(STAGE_VALIDATE, always, tf_dir, _validate),
        Stage(STAGE_FMT_CHECK, always, tf_dir, _format_check),
        Stage(
            STAGE_SECURITY_SCAN,
            scan_predicate,
            tf_dir,
            _security_scan,
            allow_empty_artifacts=frozenset({ARTIFACT_SCAN_REPORT}),
        ),
        Stage(STAGE_PLAN, computes_plan, tf_dir, _plan),
        Stage(
            STAGE_APPLY,
            is_apply,
            tf_dir,
            _apply,
            requires_approval=True,
            approval_message="Apply the saved plan to the target environment?",
        ),
        Stage(STAGE_DESTROY_PLAN, is_destroy, tf_dir, _destroy_plan),
        Stage(
            STAGE_DESTROY,
            is_destroy,
            tf_dir,
            _destroy,
            requires_approval=True,
            approval_message="Destroy all managed infrastructure in the target environment?",
        ),
        Stage(
            STAGE_OUTPUTS,
            outputs_predicate,
            tf_dir,
            _outputs,
            allow_empty_artifacts=frozenset({ARTIFACT_OUTPUTS}),
        ),
    )
