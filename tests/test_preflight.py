"""Tests for preflight tool and environment checks."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

from tofuharness.preflight import (
    PreflightResult,
    ToolCheck,
    ToolStatus,
    check_env,
    check_tool,
    run_preflight,
)


def _proc(stdout: str, returncode: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.stdout = stdout
    proc.returncode = returncode
    return proc


class TestCheckTool:
    """Tests for check_tool()."""

    @patch("tofuharness.preflight.subprocess.run")
    @patch("tofuharness.preflight.shutil.which", return_value="/usr/bin/tofu")
    def test_installed_has_version(self, mock_which: MagicMock, mock_run: MagicMock) -> None:
        """First line of the version output is reported."""
        mock_run.return_value = _proc("OpenTofu v1.8.2\non linux_amd64\n")
        result = check_tool("tofu")
        assert result.name == "OpenTofu"
        assert result.installed is True
        assert result.version == "OpenTofu v1.8.2"
        assert mock_run.call_args.args[0] == ["tofu", "version"]

    @patch("tofuharness.preflight.shutil.which", return_value=None)
    def test_missing_has_install_info(self, mock_which: MagicMock) -> None:
        """When missing, provides a download URL and a note."""
        result = check_tool("gcloud")
        assert result.status == ToolStatus.MISSING
        assert result.download_url.startswith("https://")
        assert result.install_note != ""

    @patch("tofuharness.preflight.subprocess.run", side_effect=subprocess.TimeoutExpired("curl", 10))
    @patch("tofuharness.preflight.shutil.which", return_value="/usr/bin/curl")
    def test_version_timeout(self, mock_which: MagicMock, mock_run: MagicMock) -> None:
        """A hanging version command still counts as installed."""
        result = check_tool("curl")
        assert result.installed is True
        assert result.version == ""

    @patch("tofuharness.preflight.subprocess.run")
    @patch("tofuharness.preflight.shutil.which", return_value="/usr/bin/kubectl")
    def test_version_failure(self, mock_which: MagicMock, mock_run: MagicMock) -> None:
        mock_run.return_value = _proc("", returncode=1)
        assert check_tool("kubectl", required=False).version == ""


class TestCheckEnv:
    """Tests for check_env()."""

    def test_set(self) -> None:
        result = check_env("project_id", True, {"NEO4J_GKE_GCP_PROJECT_ID": "p-1"})
        assert result.name == "NEO4J_GKE_GCP_PROJECT_ID"
        assert result.installed is True
        assert result.version == "p-1"

    def test_blank_is_missing(self) -> None:
        result = check_env("project_id", True, {"NEO4J_GKE_GCP_PROJECT_ID": "  "})
        assert result.installed is False
        assert result.install_note == "export NEO4J_GKE_GCP_PROJECT_ID=..."

    def test_optional_missing_is_ok(self) -> None:
        result = check_env("region", False, {})
        assert result.installed is False
        assert result.ok is True


class TestRunPreflight:
    """Tests for run_preflight()."""

    @patch("tofuharness.preflight.subprocess.run")
    @patch("tofuharness.preflight.shutil.which", return_value="/bin/x")
    def test_all_ok(self, mock_which: MagicMock, mock_run: MagicMock) -> None:
        mock_run.return_value = _proc("v1\n")
        result = run_preflight(environ={"NEO4J_GKE_GCP_PROJECT_ID": "p"})
        assert [c.name for c in result.tools] == ["OpenTofu", "Google Cloud CLI", "curl", "kubectl"]
        assert result.all_ok is True
        assert result.required_missing == []

    @patch("tofuharness.preflight.shutil.which", return_value=None)
    def test_kubectl_optional_by_default(self, mock_which: MagicMock) -> None:
        result = run_preflight(environ={})
        kubectl = result.tools[-1]
        assert kubectl.required is False
        assert kubectl not in result.required_missing

    @patch("tofuharness.preflight.shutil.which", return_value=None)
    def test_kubectl_required(self, mock_which: MagicMock) -> None:
        result = run_preflight(require_kubectl=True, environ={})
        assert result.tools[-1] in result.required_missing

    @patch("tofuharness.preflight.shutil.which", return_value=None)
    def test_missing_project(self, mock_which: MagicMock) -> None:
        result = run_preflight(environ={})
        names = [c.name for c in result.required_missing]
        assert "NEO4J_GKE_GCP_PROJECT_ID" in names
        assert "NEO4J_GKE_TEST_REGION" not in names
        assert result.all_ok is False


class TestSerialization:
    """Tests for to_dict()."""

    def test_tool_check(self) -> None:
        d = ToolCheck(name="curl", status=ToolStatus.MISSING, required=True).to_dict()
        assert d["status"] == "missing"
        assert d["required"] is True

    def test_result(self) -> None:
        result = PreflightResult(
            tools=[ToolCheck(name="a", status=ToolStatus.INSTALLED, required=True)],
            env=[ToolCheck(name="B", status=ToolStatus.MISSING, required=False)],
        )
        d = result.to_dict()
        assert d["all_ok"] is True
        assert len(d["tools"]) == 1
        assert len(d["env"]) == 1
