"""Tests for configuration loading and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from src.deploy_orchestrator.config import (
    DEFAULT_CONFIG_TEMPLATE,
    DeployPipelineConfig,
    load_deploy_config,
)
from src.shared.config import EnvironmentSettings


class TestLoadDeployConfig:
    def test_defaults_when_no_file(self) -> None:
        cfg = load_deploy_config(None)
        assert cfg == DeployPipelineConfig()
        assert cfg.tool.binary == "terraform"
        assert cfg.scan.enabled is True
        assert cfg.outputs_on_plan is False

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        assert load_deploy_config(tmp_path / "nope.yaml") == DeployPipelineConfig()

    def test_sections_and_unknown_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.yaml"
        path.write_text(
            yaml.safe_dump({
                "tool": {"version": "1.5.7", "working_dir": "envs/dev", "colour": "blue"},
                "scan": {"enabled": False},
                "approval": {"mode": "queued", "timeout": 300},
                "outputs_on_plan": True,
                "unknown_section": {"x": 1},
            }),
            encoding="utf-8",
        )
        cfg = load_deploy_config(path)
        assert cfg.tool.version == "1.5.7"
        assert cfg.tool.region == "us-east-1"
        assert cfg.scan.enabled is False
        assert cfg.approval.mode == "queued"
        assert cfg.approval.timeout == 300
        assert cfg.outputs_on_plan is True
        assert cfg.working_dir == Path(".") / "envs/dev"

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.yaml"
        path.write_text("", encoding="utf-8")
        assert load_deploy_config(path) == DeployPipelineConfig()

    def test_template_parses_to_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.yaml"
        path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
        assert load_deploy_config(path) == DeployPipelineConfig()


class TestEnvironmentOverrides:
    def test_environment_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "cfg.yaml"
        path.write_text("tool:\n  region: eu-west-1\n  version: '1.5.0'\n", encoding="utf-8")
        monkeypatch.setenv("AWS_DEFAULT_REGION", "ap-south-1")
        monkeypatch.setenv("TF_VERSION", "1.6.6")
        monkeypatch.setenv("TF_WORKING_DIR", "stacks/network")
        monkeypatch.setenv("BUILD_NUMBER", "118")
        monkeypatch.setenv("BUILD_URL", "https://ci.example.com/job/deploy/118/")

        cfg = load_deploy_config(path, env=EnvironmentSettings())

        assert cfg.tool.region == "ap-south-1"
        assert cfg.tool.version == "1.6.6"
        assert cfg.tool.working_dir == "stacks/network"
        assert cfg.build_id == "118"
        assert cfg.build_url.endswith("/118/")

    def test_unset_environment_keeps_file_values(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        for var in ("AWS_DEFAULT_REGION", "TF_VERSION", "TF_WORKING_DIR", "BUILD_NUMBER"):
            monkeypatch.delenv(var, raising=False)
        path = tmp_path / "cfg.yaml"
        path.write_text("tool:\n  region: eu-west-1\n", encoding="utf-8")

        cfg = load_deploy_config(path, env=EnvironmentSettings())

        assert cfg.tool.region == "eu-west-1"
        assert cfg.build_id == "local"

    def test_log_level_and_job_name_from_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.delenv("JOB_NAME", raising=False)
        path = tmp_path / "cfg.yaml"
        path.write_text("log_level: debug\njob_name: network\n", encoding="utf-8")

        cfg = load_deploy_config(path, env=EnvironmentSettings())

        assert cfg.log_level == "debug"
        assert cfg.job_name == "network"

    def test_build_identity_from_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("BUILD_NUMBER", raising=False)
        monkeypatch.delenv("BUILD_URL", raising=False)
        path = tmp_path / "cfg.yaml"
        path.write_text("build_id: '99'\nbuild_url: https://ci.example.com/job/deploy/99/\n", encoding="utf-8")

        cfg = load_deploy_config(path, env=EnvironmentSettings())

        assert cfg.build_id == "99"
        assert cfg.build_url == "https://ci.example.com/job/deploy/99/"
