"""Tests for tofuharness.tofu with run_command mocked out."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from tofuharness.command import CommandResult
from tofuharness.errors import CommandError
from tofuharness.tofu import (
    DEFAULT_RETRYABLE_ERRORS,
    StackOptions,
    TofuStack,
)


def _ok(stdout: str = "") -> CommandResult:
    return CommandResult(args=["tofu"], returncode=0, stdout=stdout)


def _fail(stderr: str) -> CommandError:
    return CommandError(["tofu"], 1, "", stderr)


@pytest.fixture
def stack(tmp_path: Path) -> TofuStack:
    return TofuStack(StackOptions(
        workdir=tmp_path,
        name="vpc",
        vars={"project_id": "p-1", "region": "us-central1"},
        retry_interval_s=0,
    ))


# ── Options ──────────────────────────────────────────────


class TestStackOptions:
    """Tests for StackOptions."""

    def test_defaults(self, tmp_path: Path):
        opts = StackOptions(workdir=tmp_path)
        assert opts.binary == "tofu"
        assert opts.no_color is True
        assert opts.max_retries == 3
        assert opts.retry_interval_s == 5.0
        assert opts.retryable_errors == DEFAULT_RETRYABLE_ERRORS
        assert opts.retryable_errors is not DEFAULT_RETRYABLE_ERRORS

    def test_label_falls_back_to_dir(self, tmp_path: Path):
        assert StackOptions(workdir=tmp_path / "gke").label == "gke"
        assert StackOptions(workdir=tmp_path, name="x").label == "x"


# ── Arguments ────────────────────────────────────────────


class TestBuildArgs:
    """Tests for TofuStack.build_args()."""

    def test_apply(self, stack: TofuStack):
        args = stack.build_args("apply", "-auto-approve")
        assert args == [
            "tofu", "apply", "-input=false", "-no-color",
            f"-var-file={stack.var_file}", "-auto-approve",
        ]

    def test_init_has_no_var_file(self, stack: TofuStack):
        assert stack.build_args("init") == ["tofu", "init", "-input=false", "-no-color"]

    def test_state_has_no_flags(self, stack: TofuStack):
        assert stack.build_args("state", "rm", "a.b") == ["tofu", "state", "rm", "a.b"]

    def test_output(self, stack: TofuStack):
        assert stack.build_args("output", "-json") == ["tofu", "output", "-no-color", "-json"]

    @pytest.mark.parametrize("sub", ["plan", "destroy", "import", "refresh"])
    def test_var_file_commands(self, stack: TofuStack, sub):
        args = stack.build_args(sub)
        assert f"-var-file={stack.var_file}" in args
        assert "-input=false" in args

    def test_color_kept(self, tmp_path: Path):
        stack = TofuStack(StackOptions(workdir=tmp_path, no_color=False, binary="terraform"))
        assert stack.build_args("plan")[:3] == ["terraform", "plan", "-input=false"]
        assert "-no-color" not in stack.build_args("plan")


# ── Variables ────────────────────────────────────────────


class TestVariables:
    """Tests for the variable file."""

    def test_write_var_file(self, stack: TofuStack):
        path = stack.write_var_file()
        assert path == stack.workdir / "harness.tfvars.json"
        assert json.loads(path.read_text()) == {"project_id": "p-1", "region": "us-central1"}
        assert path.stat().st_mode & 0o777 == 0o600

    def test_update_vars_in_place(self, stack: TofuStack):
        before = stack.options.vars
        stack.update_vars(network="net-1", region="europe-west1")
        assert stack.options.vars is before
        assert stack.options.vars["network"] == "net-1"
        assert stack.options.vars["region"] == "europe-west1"

    @patch("tofuharness.tofu.run_command")
    def test_destroy_sees_updated_vars(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok()
        stack.update_vars(network="net-late")
        stack.destroy()
        assert json.loads(stack.var_file.read_text())["network"] == "net-late"

    @patch("tofuharness.tofu.run_command")
    def test_init_does_not_write_var_file(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok()
        stack.init()
        assert not stack.var_file.exists()


# ── Running ──────────────────────────────────────────────


class TestRun:
    """Tests for TofuStack.run() and the lifecycle helpers."""

    @patch("tofuharness.tofu.run_command")
    def test_env_and_cwd(self, mock_run: MagicMock, tmp_path: Path):
        mock_run.return_value = _ok()
        stack = TofuStack(StackOptions(workdir=tmp_path, env_vars={"GOOGLE_PROJECT": "p"}))
        stack.init()
        kwargs = mock_run.call_args.kwargs
        assert kwargs["cwd"] == tmp_path
        assert kwargs["env"] == {"TF_IN_AUTOMATION": "1", "GOOGLE_PROJECT": "p"}

    @patch("tofuharness.tofu.run_command")
    def test_init_and_apply(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok()
        stack.init_and_apply()
        subs = [c.args[0][1] for c in mock_run.call_args_list]
        assert subs == ["init", "apply"]
        assert mock_run.call_args.args[0][-1] == "-auto-approve"

    @patch("tofuharness.tofu.run_command")
    def test_plan_returns_text(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok("No changes.")
        assert stack.plan() == "No changes."

    @patch("tofuharness.tofu.run_command")
    def test_targeted_destroy(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok()
        stack.destroy(targets=["google_storage_bucket.a", "google_kms_crypto_key_iam_member.b"])
        args = mock_run.call_args.args[0]
        assert args[-3:] == [
            "-auto-approve",
            "-target=google_storage_bucket.a",
            "-target=google_kms_crypto_key_iam_member.b",
        ]

    @patch("tofuharness.tofu.run_command")
    def test_import_and_state_rm(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok()
        stack.import_resource("google_kms_key_ring.r", "projects/p/locations/us/keyRings/r")
        assert mock_run.call_args.args[0][-2:] == [
            "google_kms_key_ring.r", "projects/p/locations/us/keyRings/r",
        ]
        stack.state_rm("google_kms_key_ring.r")
        assert mock_run.call_args.args[0] == ["tofu", "state", "rm", "google_kms_key_ring.r"]

    @patch("tofuharness.tofu.time.sleep")
    @patch("tofuharness.tofu.run_command")
    def test_retries_transient(self, mock_run: MagicMock, mock_sleep: MagicMock, stack: TofuStack):
        mock_run.side_effect = [
            _fail("Error: Failed to query available provider packages"),
            _fail("net/http: TLS handshake timeout"),
            _ok("done"),
        ]
        assert stack.init().stdout == "done"
        assert mock_run.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("tofuharness.tofu.time.sleep")
    @patch("tofuharness.tofu.run_command")
    def test_gives_up_after_max_retries(self, mock_run: MagicMock, mock_sleep: MagicMock, stack: TofuStack):
        mock_run.side_effect = _fail("read: connection reset by peer")
        with pytest.raises(CommandError):
            stack.apply()
        assert mock_run.call_count == 4  # first try + 3 retries

    @patch("tofuharness.tofu.time.sleep")
    @patch("tofuharness.tofu.run_command")
    def test_no_retry_on_real_error(self, mock_run: MagicMock, mock_sleep: MagicMock, stack: TofuStack):
        mock_run.side_effect = _fail("Error: Invalid value for variable")
        with pytest.raises(CommandError):
            stack.apply()
        assert mock_run.call_count == 1
        mock_sleep.assert_not_called()

    @patch("tofuharness.tofu.time.sleep")
    @patch("tofuharness.tofu.run_command")
    def test_custom_patterns(self, mock_run: MagicMock, mock_sleep: MagicMock, tmp_path: Path):
        stack = TofuStack(StackOptions(
            workdir=tmp_path, retryable_errors={"flaky": "custom"}, max_retries=1,
        ))
        mock_run.side_effect = [_fail("flaky thing"), _ok()]
        stack.plan()
        assert mock_run.call_count == 2


# ── Outputs ──────────────────────────────────────────────


class TestOutputs:
    """Tests for output parsing."""

    @patch("tofuharness.tofu.run_command")
    def test_outputs_unwrapped(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok(json.dumps({
            "network_name": {"value": "net-1", "type": "string", "sensitive": False},
            "subnets": {"value": ["a", "b"], "type": ["list", "string"]},
        }))
        assert stack.outputs() == {"network_name": "net-1", "subnets": ["a", "b"]}

    @patch("tofuharness.tofu.run_command")
    def test_outputs_empty(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok("")
        assert stack.outputs() == {}

    @patch("tofuharness.tofu.run_command")
    def test_output_string(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok('"net-1"\n')
        assert stack.output("network_name") == "net-1"
        assert mock_run.call_args.args[0][-2:] == ["-json", "network_name"]

    @patch("tofuharness.tofu.run_command")
    def test_output_non_string_as_json(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok("3")
        assert stack.output("node_count") == "3"

    @patch("tofuharness.tofu.run_command")
    def test_output_map(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok('{"neo4j": "sa@p.iam.gserviceaccount.com"}')
        assert stack.output_map("emails") == {"neo4j": "sa@p.iam.gserviceaccount.com"}

    @patch("tofuharness.tofu.run_command")
    def test_output_map_wrong_type(self, mock_run: MagicMock, stack: TofuStack):
        mock_run.return_value = _ok('["not", "a", "map"]')
        with pytest.raises(TypeError, match="not a map"):
            stack.output_map("emails")
