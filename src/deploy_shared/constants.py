"""Shared constants for the deploy pipeline."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Stage names (definition order is execution order)
# ---------------------------------------------------------------------------
STAGE_CHECKOUT = "checkout"
STAGE_CREDENTIALS = "credentials"
STAGE_SETUP = "setup"
STAGE_INIT = "init"
STAGE_VALIDATE = "validate"
STAGE_FMT_CHECK = "fmt_check"
STAGE_SECURITY_SCAN = "security_scan"
STAGE_PLAN = "plan"
STAGE_APPLY = "apply"
STAGE_DESTROY_PLAN = "destroy_plan"
STAGE_DESTROY = "destroy"
STAGE_OUTPUTS = "outputs"

ALL_STAGES = [
    STAGE_CHECKOUT,
    STAGE_CREDENTIALS,
    STAGE_SETUP,
    STAGE_INIT,
    STAGE_VALIDATE,
    STAGE_FMT_CHECK,
    STAGE_SECURITY_SCAN,
    STAGE_PLAN,
    STAGE_APPLY,
    STAGE_DESTROY_PLAN,
    STAGE_DESTROY,
    STAGE_OUTPUTS,
]

# ---------------------------------------------------------------------------
# Artifact names -- file names must match what archival tooling expects
# ---------------------------------------------------------------------------
ARTIFACT_PLAN = "tfplan"
ARTIFACT_DESTROY_PLAN = "destroy.tfplan"
ARTIFACT_SCAN_REPORT = "tfsec-results.json"
ARTIFACT_OUTPUTS = "outputs.json"

TRANSIENT_PLAN_FILES = [ARTIFACT_PLAN, ARTIFACT_DESTROY_PLAN]
TOOL_CACHE_DIR = ".terraform"
FINGERPRINTS_FILE = "fingerprints.json"

# ---------------------------------------------------------------------------
# Error details
# ---------------------------------------------------------------------------
APPROVAL_DENIED_DETAIL = "approval denied"

# ---------------------------------------------------------------------------
# Process exit codes
# ---------------------------------------------------------------------------
EXIT_SUCCESS = 0
EXIT_STAGE_FAILED = 1
EXIT_APPROVAL_DENIED = 2
EXIT_INTERRUPTED = 3

# ---------------------------------------------------------------------------
# Tool defaults
# ---------------------------------------------------------------------------
DEFAULT_TOOL_VERSION = "1.6.6"
DEFAULT_REGION = "us-east-1"
DEFAULT_COMMAND_TIMEOUT = 1800  # 30 minutes
TOOL_RELEASE_URL = (
    "https://releases.hashicorp.com/terraform/{version}/"
    "terraform_{version}_{platform}.zip"
)

# ---------------------------------------------------------------------------
# State persistence
# ---------------------------------------------------------------------------
STATE_DIR = ".deploy-orchestrator"
STATE_FILE = "RUN_STATE.json"
