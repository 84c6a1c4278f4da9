"""Custom exceptions for the deploy pipeline."""

from __future__ import annotations

from src.deploy_shared.constants import APPROVAL_DENIED_DETAIL


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    pass


class ToolInvocationFailure(PipelineError):
    """Raised when an external command exits non-zero."""

    def __init__(self, stage: str, exit_code: int | None = None, detail: str = "") -> None:
        self.stage = stage
        self.exit_code = exit_code
        self.detail = detail
        message = f"Stage '{stage}' failed"
        if exit_code is not None:
            message += f" with exit code {exit_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ApprovalDenied(PipelineError):
    """Raised when the operator declines (or never answers) an approval request."""

    def __init__(self, stage: str, reason: str = "") -> None:
        self.stage = stage
        self.reason = reason
        message = f"Stage '{stage}': {APPROVAL_DENIED_DETAIL}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class MissingArtifact(PipelineError):
    """Raised when a required artifact is absent or empty."""

    def __init__(self, name: str, path: str = "") -> None:
        self.name = name
        self.path = path
        super().__init__(f"Artifact '{name}' is missing or empty" + (f" at {path}" if path else ""))


class StageTimeoutError(PipelineError):
    """Raised when an external command exceeds its timeout."""

    def __init__(self, command: str, timeout: int) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command '{command}' timed out after {timeout}s")


class ConfigurationError(PipelineError):
    """Raised for configuration issues (bad config, invalid parameters, etc.)."""

    pass


class NotificationError(PipelineError):
    """Raised when a notification cannot be delivered."""

    pass
