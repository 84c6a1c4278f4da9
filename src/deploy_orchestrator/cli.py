"""Typer CLI for the deploy orchestrator.

Commands: ``run``, ``status``, ``init``.  The ``run`` command is the
pipeline entry point; its process exit code reports the outcome
(0 success, 1 stage failure, 2 approval denied, 3 interrupted).
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
import yaml

from src.deploy_orchestrator.config import DEFAULT_CONFIG_TEMPLATE, load_deploy_config
from src.deploy_orchestrator.display import (
    print_error_panel,
    print_final_summary,
    print_run_header,
    print_stage_table,
)
from src.deploy_orchestrator.exceptions import PipelineError
from src.deploy_orchestrator.pipeline import exit_code_for, execute_pipeline
from src.deploy_orchestrator.state import PipelineRunState
from src.deploy_shared import __version__
from src.deploy_shared.constants import EXIT_STAGE_FAILED, STATE_DIR
from src.deploy_shared.models import RunParameters
from src.shared.config import EnvironmentSettings
from src.shared.logging import setup_logging

app = typer.Typer(
    name="deploy-orchestrator",
    help="Run infrastructure-as-code changes through a gated deployment pipeline.",
    no_args_is_help=True,
)

_CONFIG_FILENAME = "deploy-orchestrator.yaml"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"deploy-orchestrator v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Deploy orchestrator."""


def _observer(event: str, state: PipelineRunState) -> None:
    if event == "started":
        print_run_header(state)


@app.command()
def run(
    action: str = typer.Option(
        ..., "--action", "-a", envvar="ACTION", help="plan, apply, or destroy."
    ),
    auto_approve: bool = typer.Option(
        False,
        "--auto-approve/--no-auto-approve",
        envvar="AUTO_APPROVE",
        help="Skip the approval gate before apply/destroy.",
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to the pipeline config YAML."
    ),
    interactive: Optional[bool] = typer.Option(
        None,
        "--interactive/--no-interactive",
        help="Prompt on the terminal for approvals (default: when stdin is a TTY).",
    ),
    json_logs: bool = typer.Option(
        True, "--json-logs/--plain-logs", help="Emit JSON log lines."
    ),
) -> None:
    """Execute one pipeline run."""
    try:
        parameters = RunParameters.from_raw(action, auto_approve)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--action") from None

    try:
        cfg = load_deploy_config(config, env=EnvironmentSettings())
    except (yaml.YAMLError, TypeError) as exc:
        print_error_panel(f"Invalid configuration: {exc}")
        raise typer.Exit(code=EXIT_STAGE_FAILED) from None

    setup_logging("deploy-orchestrator", cfg.log_level, json_output=json_logs)
    if interactive is None:
        interactive = sys.stdin.isatty()

    try:
        state = asyncio.run(
            execute_pipeline(
                parameters,
                config=cfg,
                interactive=interactive,
                install_signal_handlers=True,
                observer=_observer,
            )
        )
    except PipelineError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=EXIT_STAGE_FAILED) from None

    print_stage_table(state)
    print_final_summary(state)
    raise typer.Exit(code=exit_code_for(state))


@app.command()
def status(
    state_dir: Path = typer.Option(
        Path(STATE_DIR), "--state-dir", help="Directory holding RUN_STATE.json."
    ),
) -> None:
    """Show the most recent run recorded in the state directory."""
    state = PipelineRunState.load(state_dir)
    if state is None:
        print_error_panel(f"No run state found in {state_dir}")
        raise typer.Exit(code=1)

    print_run_header(state)
    print_stage_table(state)
    if state.finished_at:
        print_final_summary(state)


@app.command()
def init(
    output: Path = typer.Option(
        Path(_CONFIG_FILENAME), "--output", "-o", help="Where to write the config template."
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    """Write a commented default configuration file."""
    if output.exists() and not force:
        print_error_panel(f"{output} already exists (use --force to overwrite)")
        raise typer.Exit(code=1)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    typer.echo(f"Wrote {output}")
