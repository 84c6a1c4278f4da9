"""Rich-based terminal display layer for pipeline runs.

Provides formatted output for the run header, the stage-by-stage audit
table, approval prompts, error panels, and the final summary.  Uses a
module-level :class:`~rich.console.Console` singleton for consistent output.

.. rubric:: Design decisions

* **Module-level Console singleton** -- all display functions share
  ``_console`` so that Rich formatting is consistent across the session.
* **Functions, not a class** -- each display function is standalone and
  stateless, making them easy to test and compose.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from src.deploy_shared import __version__
from src.deploy_shared.constants import ALL_STAGES

# ---------------------------------------------------------------------------
# Module-level Console singleton
# ---------------------------------------------------------------------------

_console = Console()

_STATUS_STYLES = {
    "succeeded": "[green]SUCCEEDED[/green]",
    "skipped": "[dim]SKIPPED[/dim]",
    "failed": "[red]FAILED[/red]",
    "awaiting_approval": "[yellow]AWAITING APPROVAL[/yellow]",
}


# ---------------------------------------------------------------------------
# Display functions
# ---------------------------------------------------------------------------


def print_run_header(state: Any) -> None:
    """Print a Rich panel header identifying the run.

    Parameters
    ----------
    state:
        A ``PipelineRunState`` instance (or duck-typed object with
        ``run_id``, ``build_id``, ``parameters``).
    """
    params = _get_attr(state, "parameters", None)
    action = _enum_value(_get_attr(params, "action", "unknown"))
    auto_approve = _get_attr(params, "auto_approve", False)

    header = Text()
    header.append("Deploy Orchestrator", style="bold white")
    header.append(f" v{__version__}\n", style="dim")
    header.append("Run: ", style="bold")
    header.append(f"{_get_attr(state, 'run_id', 'unknown')}\n", style="cyan")
    header.append("Build: ", style="bold")
    header.append(f"#{_get_attr(state, 'build_id', 'local')}\n", style="cyan")
    header.append("Action: ", style="bold")
    header.append(f"{action}", style="green")
    header.append("  Auto-approve: ", style="bold")
    header.append("yes" if auto_approve else "no", style="yellow" if auto_approve else "dim")

    _console.print(
        Panel(
            header,
            title="[bold]Pipeline Run[/bold]",
            border_style="blue",
            expand=False,
        )
    )


def print_stage_table(state: Any) -> None:
    """Print the stage-by-stage audit table, skipped stages included.

    Stages with no result (never reached because of an earlier failure)
    are shown as ``NOT RUN``.
    """
    table = Table(title="Stage Status", show_header=True, header_style="bold magenta")
    table.add_column("Stage", style="cyan", min_width=16)
    table.add_column("Status", justify="center", min_width=18)
    table.add_column("Exit", justify="right", min_width=5)
    table.add_column("Artifacts", min_width=14)
    table.add_column("Detail", min_width=20)

    results = {_get_attr(r, "stage_name", ""): r for r in _get_attr(state, "results", [])}
    awaiting = _get_attr(state, "awaiting_approval", "")
    names = [n for n in ALL_STAGES if n in results or n == awaiting]
    names += [n for n in results if n not in names]
    if not _get_attr(state, "finished_at", ""):
        names += [n for n in ALL_STAGES if n not in names]

    for name in names:
        result = results.get(name)
        if name == awaiting:
            status = _STATUS_STYLES["awaiting_approval"]
        elif result is None:
            status = "[dim]NOT RUN[/dim]"
        else:
            status = _STATUS_STYLES.get(_enum_value(_get_attr(result, "status", "")), "?")
        exit_code = _get_attr(result, "exit_code", None) if result is not None else None
        artifacts = _get_attr(result, "artifacts", []) if result is not None else []
        detail = _get_attr(result, "error_detail", "") if result is not None else ""
        table.add_row(
            name,
            status,
            "-" if exit_code is None else str(exit_code),
            ", ".join(_get_attr(a, "name", "") for a in artifacts) or "-",
            detail or "",
        )

    _console.print(table)


def print_approval_request(message: str, timeout: float | None = None) -> None:
    """Print the approval request panel shown before a gated stage."""
    content = Text()
    content.append(message + "\n", style="bold white")
    if timeout:
        content.append(f"No answer within {timeout:g}s aborts the run.", style="dim")
    else:
        content.append("The run is paused until you answer.", style="dim")
    _console.print(
        Panel(
            content,
            title="[bold yellow]Approval Required[/bold yellow]",
            border_style="yellow",
            expand=False,
        )
    )


def print_error_panel(error: str | Exception) -> None:
    """Print an error message in a red Rich panel."""
    _console.print(
        Panel(
            Text(str(error), style="bold white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            expand=False,
        )
    )


def print_final_summary(state: Any) -> None:
    """Print the final run summary with status, artifacts, and bookkeeping."""
    status = _enum_value(_get_attr(state, "overall_status", "unknown"))
    if status == "succeeded":
        style, title = "green", "Run Succeeded"
    elif status == "failed":
        style, title = "red", "Run Failed"
    else:
        style, title = "yellow", "Run Status"

    results = _get_attr(state, "results", [])
    executed = [r for r in results if _enum_value(_get_attr(r, "status", "")) != "skipped"]

    content = Text()
    content.append("Run ID: ", style="bold")
    content.append(f"{_get_attr(state, 'run_id', 'unknown')}\n", style="cyan")
    content.append("Final Status: ", style="bold")
    content.append(f"{status}\n", style=style)
    content.append(f"Stages Executed: {len(executed)} / Recorded: {len(results)}\n")

    for r in results:
        if _enum_value(_get_attr(r, "status", "")) == "failed":
            content.append(f"Failed Stage: {_get_attr(r, 'stage_name', '')}\n", style="red")
            detail = _get_attr(r, "error_detail", "")
            if detail:
                content.append(f"  {detail}\n")
            break

    artifacts = _get_attr(state, "artifacts", [])
    if artifacts:
        content.append("\nArtifacts:\n", style="bold")
        for a in artifacts:
            fp = _get_attr(a, "fingerprint", None)
            content.append(f"  {_get_attr(a, 'name', '')}")
            content.append(f"  {fp[:12]}\n" if fp else "  (empty)\n", style="dim")

    finalization = _get_attr(state, "finalization", {}) or {}
    for step, outcome in finalization.items():
        if isinstance(outcome, dict) and not outcome.get("ok", True):
            content.append(f"\n{step} failed: {outcome.get('error', '')}", style="yellow")

    if _get_attr(state, "interrupted", False):
        content.append(f"\nInterrupted: {_get_attr(state, 'interrupt_reason', '')}\n", style="yellow")

    _console.print(
        Panel(
            content,
            title=f"[bold]{title}[/bold]",
            border_style=style,
            expand=False,
        )
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_attr(obj: Any, name: str, default: Any = None) -> Any:
    """Get attribute from object or dict, with fallback to default."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value
