"""Configuration dataclasses and loader for the deploy orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.deploy_shared.constants import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_REGION,
    DEFAULT_TOOL_VERSION,
    STATE_DIR,
)
from src.shared.config import EnvironmentSettings


@dataclass
class ToolConfig:
    """Configuration for the IaC tool and the directory it runs in."""

    binary: str = "terraform"
    version: str = DEFAULT_TOOL_VERSION
    working_dir: str = "."
    region: str = DEFAULT_REGION
    tool_dir: str = ".deploy-orchestrator/bin"
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT
    aws_binary: str = "aws"
    git_binary: str = "git"


@dataclass
class SourceConfig:
    """Configuration for the checkout stage."""

    repository_url: str = ""
    ref: str = "main"
    workspace: str = "."


@dataclass
class ScanConfig:
    """Configuration for the security scan stage."""

    enabled: bool = True
    binary: str = "tfsec"
    soft_fail: bool = False


@dataclass
class ApprovalConfig:
    """Configuration for the approval gate."""

    timeout: int | None = None
    mode: str = "console"  # "console", "approve", "abort", or "queued"


@dataclass
class ArtifactConfig:
    """Configuration for artifact archival."""

    archive_dir: str = ".deploy-orchestrator/archive"
    fingerprint: bool = True


@dataclass
class CleanupConfig:
    """Configuration for post-run workspace hygiene."""

    transient_patterns: list[str] = field(default_factory=lambda: ["*.tfplan", "tfplan"])
    preserve_tool_cache: bool = True


@dataclass
class NotificationConfig:
    """Configuration for run-outcome notifications."""

    channel: str = "log"  # "log", "webhook", or "email"
    recipients: list[str] = field(default_factory=list)
    webhook_url: str = ""
    smtp_host: str = "localhost"
    smtp_port: int = 25
    sender: str = "deploy-orchestrator@localhost"
    timeout: float = 10.0


@dataclass
class DeployPipelineConfig:
    """Top-level configuration composing all sub-configs."""

    tool: ToolConfig = field(default_factory=ToolConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    artifacts: ArtifactConfig = field(default_factory=ArtifactConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)
    outputs_on_plan: bool = False
    state_dir: str = STATE_DIR
    build_id: str = "local"
    build_url: str = ""
    job_name: str = "deploy"
    log_level: str = "info"

    @property
    def working_dir(self) -> Path:
        """Directory the IaC tool runs in, resolved against the workspace."""
        return Path(self.source.workspace) / self.tool.working_dir


_SECTIONS: dict[str, type] = {
    "tool": ToolConfig,
    "source": SourceConfig,
    "scan": ScanConfig,
    "approval": ApprovalConfig,
    "artifacts": ArtifactConfig,
    "cleanup": CleanupConfig,
    "notification": NotificationConfig,
}


def _pick(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter *data* to only keys accepted by *cls*."""
    valid = {f.name for f in cls.__dataclass_fields__.values()}
    return {k: v for k, v in data.items() if k in valid}


def apply_environment(cfg: DeployPipelineConfig, env: EnvironmentSettings) -> DeployPipelineConfig:
    """Overlay CI environment values onto *cfg* (environment wins)."""
    if env.region:
        cfg.tool.region = env.region
    if env.tool_version:
        cfg.tool.version = env.tool_version
    if env.working_dir:
        cfg.tool.working_dir = env.working_dir
    if env.log_level:
        cfg.log_level = env.log_level
    if env.job_name:
        cfg.job_name = env.job_name
    if env.build_id:
        cfg.build_id = env.build_id
    if env.build_url:
        cfg.build_url = env.build_url
    return cfg


def load_deploy_config(
    path: Path | str | None = None,
    env: EnvironmentSettings | None = None,
) -> DeployPipelineConfig:
    """Load pipeline configuration from a YAML file.

    Missing sections fall back to defaults.  Unknown keys are silently
    ignored so that forward-compatible config files work.

    Args:
        path: Path to config YAML.  If ``None`` or the file does not
              exist, full defaults are used.
        env: Environment settings to overlay.  When ``None`` no
             environment overlay is applied.

    Returns:
        Populated configuration dataclass.
    """
    raw: dict[str, Any] = {}
    if path is not None and Path(path).exists():
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    top_level = _pick(raw, DeployPipelineConfig)
    for key in _SECTIONS:
        top_level.pop(key, None)

    sections = {
        key: cls(**_pick(raw.get(key) or {}, cls))
        for key, cls in _SECTIONS.items()
    }
    cfg = DeployPipelineConfig(**sections, **top_level)

    if env is not None:
        apply_environment(cfg, env)
    return cfg


DEFAULT_CONFIG_TEMPLATE = """\
# Deploy orchestrator configuration
# Environment variables (AWS_DEFAULT_REGION, TF_VERSION, TF_WORKING_DIR,
# BUILD_NUMBER, BUILD_URL) override the matching values below.

tool:
  binary: terraform
  version: "1.6.6"
  working_dir: .          # relative to source.workspace
  region: us-east-1
  tool_dir: .deploy-orchestrator/bin
  command_timeout: 1800   # seconds per external command

source:
  repository_url: ""      # empty: use the already checked-out workspace
  ref: main
  workspace: .

scan:
  enabled: true
  binary: tfsec
  soft_fail: false        # report findings without failing the stage

approval:
  timeout: null           # seconds; null waits indefinitely
  mode: console           # console | approve | abort | queued

artifacts:
  archive_dir: .deploy-orchestrator/archive
  fingerprint: true

cleanup:
  transient_patterns: ["*.tfplan", "tfplan"]
  preserve_tool_cache: true   # keep .terraform/ for faster subsequent runs

notification:
  channel: log            # log | webhook | email
  recipients: []
  webhook_url: ""
  smtp_host: localhost
  smtp_port: 25
  sender: deploy-orchestrator@localhost

# Run the output stage on plan runs too (apply-only by default)
outputs_on_plan: false
state_dir: .deploy-orchestrator
"""
