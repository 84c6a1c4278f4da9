"""External tool adapter: thin async wrappers around git, aws, terraform, tfsec.

Every public method issues one external command (or a short fixed
sequence) and reports a :class:`ToolResult`.  Non-zero exits are
reported, not raised; the orchestrator decides what a failure means.
Only a command exceeding its timeout raises (:class:`StageTimeoutError`).

.. rubric:: Key design decisions

* **Explicit configuration** -- region, tool version, and directories
  come from :class:`ToolConfig`; the subprocess environment is built
  from it rather than read ad hoc.
* **Stage-scoped cwd** -- when no directory is passed, commands run in
  the directory bound by :func:`stage_workdir` for the current stage.
* **try/finally cleanup** -- a timed-out process is killed and reaped
  before the error propagates.
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
import os
import platform
import shutil
import stat
import zipfile
from pathlib import Path

import httpx

from src.deploy_orchestrator.config import ScanConfig, SourceConfig, ToolConfig
from src.deploy_orchestrator.exceptions import StageTimeoutError
from src.deploy_orchestrator.stages import current_stage_dir
from src.deploy_shared.constants import (
    ARTIFACT_DESTROY_PLAN,
    ARTIFACT_OUTPUTS,
    ARTIFACT_PLAN,
    ARTIFACT_SCAN_REPORT,
    TOOL_RELEASE_URL,
)
from src.deploy_shared.models import ToolResult
from src.deploy_shared.utils import ensure_dir

logger = logging.getLogger(__name__)

_ARCH_ALIASES = {"x86_64": "amd64", "amd64": "amd64", "aarch64": "arm64", "arm64": "arm64"}

# CI secrets the external tools never need
_FILTERED_ENV_KEYS = {"JENKINS_API_TOKEN", "SMTP_PASSWORD", "WEBHOOK_TOKEN"}


def release_platform() -> str:
    """Return the ``<os>_<arch>`` suffix used by tool release archives."""
    system = platform.system().lower()
    machine = platform.machine().lower()
    return f"{system}_{_ARCH_ALIASES.get(machine, machine)}"


class TerraformToolAdapter:
    """Tool adapter backed by real subprocess invocations."""

    def __init__(
        self,
        tool: ToolConfig,
        source: SourceConfig | None = None,
        scan: ScanConfig | None = None,
    ) -> None:
        self.tool = tool
        self.source = source or SourceConfig()
        self.scan = scan or ScanConfig()
        self._binary = tool.binary

    # ------------------------------------------------------------------
    # Subprocess plumbing
    # ------------------------------------------------------------------

    def _tool_env(self) -> dict[str, str]:
        env = {k: v for k, v in os.environ.items() if k not in _FILTERED_ENV_KEYS}
        env["AWS_DEFAULT_REGION"] = self.tool.region
        env["TF_IN_AUTOMATION"] = "1"
        env["TF_INPUT"] = "0"
        tool_dir = str(Path(self.tool.tool_dir).resolve())
        env["PATH"] = tool_dir + os.pathsep + env.get("PATH", "")
        return env

    async def _run(
        self,
        args: list[str],
        cwd: Path | str | None = None,
        timeout: int | None = None,
    ) -> ToolResult:
        """Run *args* and capture its output."""
        cwd = cwd if cwd is not None else current_stage_dir.get()
        timeout = timeout or self.tool.command_timeout
        logger.info("Running: %s (cwd=%s)", " ".join(args), cwd or ".")

        proc = None
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._tool_env(),
            )
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except FileNotFoundError as exc:
            logger.error("Executable not found: %s", args[0])
            return ToolResult(
                succeeded=False,
                exit_code=127,
                stderr=f"executable not found: {exc.filename or args[0]}",
                command=list(args),
            )
        except asyncio.TimeoutError:
            raise StageTimeoutError(" ".join(args), timeout) from None
        finally:
            if proc is not None and proc.returncode is None:
                proc.kill()
                await proc.wait()

        result = ToolResult(
            succeeded=proc.returncode == 0,
            exit_code=proc.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            command=list(args),
        )
        if not result.succeeded:
            logger.warning("Command exited %s: %s", result.exit_code, result.error_summary)
        return result

    # ------------------------------------------------------------------
    # Source and credentials
    # ------------------------------------------------------------------

    async def checkout(self, source_ref: str) -> ToolResult:
        """Fetch the source tree at *source_ref* into the workspace."""
        workspace = Path(self.source.workspace)
        git = self.tool.git_binary

        if not self.source.repository_url:
            if workspace.is_dir():
                return ToolResult(
                    succeeded=True,
                    exit_code=0,
                    stdout=f"using existing workspace {workspace}",
                )
            return ToolResult(
                succeeded=False,
                exit_code=1,
                stderr=f"no repository configured and workspace {workspace} does not exist",
            )

        if (workspace / ".git").is_dir():
            fetched = await self._run([git, "fetch", "--prune", "origin"], cwd=workspace)
            if not fetched.succeeded:
                return fetched
        else:
            ensure_dir(workspace.parent)
            cloned = await self._run(
                [git, "clone", self.source.repository_url, str(workspace)], cwd=workspace.parent
            )
            if not cloned.succeeded:
                return cloned
        return await self._run([git, "checkout", "--force", source_ref], cwd=workspace)

    async def check_credentials(self) -> ToolResult:
        """Verify ambient cloud credentials resolve to an identity."""
        return await self._run(
            [self.tool.aws_binary, "sts", "get-caller-identity", "--output", "json"]
        )

    # ------------------------------------------------------------------
    # Tool installation
    # ------------------------------------------------------------------

    async def _installed_version(self, binary: str) -> str | None:
        result = await self._run([binary, "version", "-json"], cwd=".")
        if not result.succeeded:
            return None
        try:
            return json.loads(result.stdout).get("terraform_version")
        except json.JSONDecodeError:
            return None

    async def ensure_tool_installed(self, version: str) -> ToolResult:
        """Install the IaC binary at *version* unless it is already present."""
        local = Path(self.tool.tool_dir) / self.tool.binary
        candidates = [str(local.resolve())] if local.exists() else []
        on_path = shutil.which(self.tool.binary)
        if on_path:
            candidates.append(on_path)

        for candidate in candidates:
            if await self._installed_version(candidate) == version:
                self._binary = candidate
                return ToolResult(
                    succeeded=True,
                    exit_code=0,
                    stdout=f"{self.tool.binary} {version} already installed at {candidate}",
                )

        url = TOOL_RELEASE_URL.format(version=version, platform=release_platform())
        logger.info("Downloading %s %s from %s", self.tool.binary, version, url)
        try:
            async with httpx.AsyncClient(timeout=120.0, follow_redirects=True) as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            return ToolResult(succeeded=False, exit_code=1, stderr=f"download failed: {exc}")

        ensure_dir(local.parent)
        with zipfile.ZipFile(io.BytesIO(resp.content)) as archive:
            archive.extract(self.tool.binary, path=local.parent)
        local.chmod(local.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

        installed = await self._installed_version(str(local.resolve()))
        if installed != version:
            return ToolResult(
                succeeded=False,
                exit_code=1,
                stderr=f"installed binary reports version {installed!r}, expected {version!r}",
            )
        self._binary = str(local.resolve())
        return ToolResult(succeeded=True, exit_code=0, stdout=f"installed {self.tool.binary} {version}")

    # ------------------------------------------------------------------
    # IaC lifecycle
    # ------------------------------------------------------------------

    async def init(self, directory: Path) -> ToolResult:
        return await self._run([self._binary, "init", "-input=false", "-no-color"], cwd=directory)

    async def validate(self, directory: Path) -> ToolResult:
        return await self._run([self._binary, "validate", "-no-color"], cwd=directory)

    async def format_check(self, directory: Path) -> ToolResult:
        return await self._run([self._binary, "fmt", "-check", "-recursive", "-diff"], cwd=directory)

    async def security_scan(self, directory: Path) -> ToolResult:
        report = Path(directory) / ARTIFACT_SCAN_REPORT
        args = [self.scan.binary, ".", "--format", "json", "--out", ARTIFACT_SCAN_REPORT]
        if self.scan.soft_fail:
            args.append("--soft-fail")
        result = await self._run(args, cwd=directory)
        result.produced_paths[ARTIFACT_SCAN_REPORT] = str(report)
        return result

    async def plan(self, directory: Path, destructive: bool = False) -> ToolResult:
        name = ARTIFACT_DESTROY_PLAN if destructive else ARTIFACT_PLAN
        args = [self._binary, "plan", "-input=false", "-no-color", f"-out={name}"]
        if destructive:
            args.append("-destroy")
        result = await self._run(args, cwd=directory)
        if result.succeeded:
            result.produced_paths[name] = str(Path(directory) / name)
        return result

    async def apply(self, directory: Path, plan_file: Path) -> ToolResult:
        return await self._run(
            [self._binary, "apply", "-input=false", "-no-color", str(plan_file)], cwd=directory
        )

    async def show_outputs(self, directory: Path) -> ToolResult:
        result = await self._run([self._binary, "output", "-json"], cwd=directory)
        if result.succeeded:
            target = Path(directory) / ARTIFACT_OUTPUTS
            target.write_text(result.stdout, encoding="utf-8")
            result.produced_paths[ARTIFACT_OUTPUTS] = str(target)
        return result
