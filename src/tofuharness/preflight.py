"""
Preflight checks — are the tools and variables the live tests need present?

Checks for:
  - tofu     (required: every stack)
  - gcloud   (required: probes, assertions, fallbacks)
  - curl     (required: anonymous-access assertions)
  - kubectl  (optional: only the end-to-end app deployment)
  - NEO4J_GKE_* environment variables

Each check reports the version when the tool is present and a download
URL when it is not.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from .config import ENV_VARS


class ToolStatus(str, Enum):
    """Status of a system tool or variable."""
    INSTALLED = "installed"
    MISSING = "missing"


@dataclass
class ToolCheck:
    """Result of checking a single tool or environment variable."""

    name: str
    status: ToolStatus
    required: bool
    version: str = ""
    download_url: str = ""
    install_note: str = ""

    @property
    def installed(self) -> bool:
        return self.status == ToolStatus.INSTALLED

    @property
    def ok(self) -> bool:
        """Whether this check passes (present, or optional and missing)."""
        return self.installed or not self.required

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "status": self.status.value,
            "required": self.required,
            "version": self.version,
            "download_url": self.download_url,
            "install_note": self.install_note,
        }


@dataclass
class PreflightResult:
    """Combined result of all preflight checks."""

    tools: list[ToolCheck] = field(default_factory=list)
    env: list[ToolCheck] = field(default_factory=list)

    @property
    def checks(self) -> list[ToolCheck]:
        return self.tools + self.env

    @property
    def all_ok(self) -> bool:
        return all(c.ok for c in self.checks)

    @property
    def required_missing(self) -> list[ToolCheck]:
        return [c for c in self.checks if c.required and not c.installed]

    def to_dict(self) -> dict:
        return {
            "all_ok": self.all_ok,
            "tools": [c.to_dict() for c in self.tools],
            "env": [c.to_dict() for c in self.env],
        }


# binary -> (display name, version args, download url, note)
_TOOLS = {
    "tofu": ("OpenTofu", ["version"], "https://opentofu.org/docs/intro/install/",
             "Every stack is applied and destroyed with tofu."),
    "gcloud": ("Google Cloud CLI", ["version"], "https://cloud.google.com/sdk/docs/install",
               "Used for existence probes, assertions and fallback deletes."),
    "curl": ("curl", ["--version"], "https://curl.se/download.html",
             "Used to prove anonymous bucket reads are refused."),
    "kubectl": ("kubectl", ["version", "--client"], "https://kubernetes.io/docs/tasks/tools/",
                "Only needed for the end-to-end app deployment test."),
}

REQUIRED_ENV = ("project_id",)
OPTIONAL_ENV = ("state_bucket_location", "region")


def _first_line(binary: str, args: list[str]) -> str:
    try:
        result = subprocess.run(
            [binary, *args],
            capture_output=True, text=True, timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired):
        return ""
    if result.returncode != 0:
        return ""
    lines = result.stdout.strip().split("\n")
    return lines[0][:60] if lines else ""


def check_tool(binary: str, required: bool = True) -> ToolCheck:
    """Check whether one of the known tools is on PATH.

    Args:
        binary: 'tofu', 'gcloud', 'curl' or 'kubectl'.
        required: Whether a missing tool fails preflight.

    Returns:
        ToolCheck for the tool.
    """
    name, version_args, url, note = _TOOLS[binary]
    if shutil.which(binary):
        return ToolCheck(
            name=name,
            status=ToolStatus.INSTALLED,
            required=required,
            version=_first_line(binary, version_args),
        )
    return ToolCheck(
        name=name,
        status=ToolStatus.MISSING,
        required=required,
        download_url=url,
        install_note=note,
    )


def check_env(field_name: str, required: bool, environ: Optional[Mapping[str, str]] = None) -> ToolCheck:
    """Check that a configuration environment variable is set."""
    environ = os.environ if environ is None else environ
    var = ENV_VARS[field_name]
    value = environ.get(var, "").strip()
    return ToolCheck(
        name=var,
        status=ToolStatus.INSTALLED if value else ToolStatus.MISSING,
        required=required,
        version=value,
        install_note="" if value else f"export {var}=...",
    )


def run_preflight(
    require_kubectl: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> PreflightResult:
    """Run all preflight checks.

    Args:
        require_kubectl: Whether kubectl is required (end-to-end runs).
        environ: Environment mapping (defaults to os.environ).

    Returns:
        PreflightResult with tool and environment checks.
    """
    return PreflightResult(
        tools=[
            check_tool("tofu"),
            check_tool("gcloud"),
            check_tool("curl"),
            check_tool("kubectl", required=require_kubectl),
        ],
        env=[check_env(f, True, environ) for f in REQUIRED_ENV]
        + [check_env(f, False, environ) for f in OPTIONAL_ENV],
    )
