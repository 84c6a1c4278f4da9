"""Runtime-checkable protocols for the pipeline's injected collaborators."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from src.deploy_shared.models import Decision, Notification, ToolResult


@runtime_checkable
class ToolAdapter(Protocol):
    """Protocol for the external tool adapter.

    Every method invokes one external command (or a short, fixed sequence
    of them) and reports a :class:`ToolResult`.  Non-zero exits are reported,
    never raised.
    """

    async def checkout(self, source_ref: str) -> ToolResult:
        ...

    async def check_credentials(self) -> ToolResult:
        ...

    async def ensure_tool_installed(self, version: str) -> ToolResult:
        ...

    async def init(self, directory: Path) -> ToolResult:
        ...

    async def validate(self, directory: Path) -> ToolResult:
        ...

    async def format_check(self, directory: Path) -> ToolResult:
        ...

    async def security_scan(self, directory: Path) -> ToolResult:
        """Run the security scanner; ``produced_paths`` holds the report path."""
        ...

    async def plan(self, directory: Path, destructive: bool = False) -> ToolResult:
        """Compute a plan; ``produced_paths`` holds the plan file path."""
        ...

    async def apply(self, directory: Path, plan_file: Path) -> ToolResult:
        ...

    async def show_outputs(self, directory: Path) -> ToolResult:
        """Capture outputs; ``produced_paths`` holds the outputs JSON path."""
        ...


@runtime_checkable
class ApprovalGate(Protocol):
    """Protocol for the human approval checkpoint."""

    async def request(self, message: str) -> Decision:
        """Block until an operator decision (or timeout) is available."""
        ...


@runtime_checkable
class Notifier(Protocol):
    """Protocol for run-outcome notification channels."""

    async def send(self, notification: Notification) -> None:
        ...
