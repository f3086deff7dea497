"""
OpenTofu stack wrapper.

A TofuStack is one module directory plus the options needed to drive it
non-interactively: binary, variables, environment, retry policy. Every
command that loads configuration gets ``-var-file`` pointing at a JSON
file the stack writes next to the module, so import and targeted destroy
see the same variables as apply.
"""

from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from pydantic import BaseModel, Field

from .command import CommandResult, run_command
from .errors import CommandError

logger = logging.getLogger(__name__)

# Transient failures worth another attempt: regex -> reason.
DEFAULT_RETRYABLE_ERRORS: Dict[str, str] = {
    r".*read: connection reset by peer.*": "Connection reset while talking to a remote endpoint.",
    r".*transport is closing.*": "Failed to reach Kubernetes API.",
    r".*unable to verify signature.*": "Failed to retrieve plugin due to transient network error.",
    r".*unable to verify checksum.*": "Failed to retrieve plugin due to transient network error.",
    r".*registry service is unreachable.*": "Failed to retrieve plugin due to transient network error.",
    r".*Error installing provider.*": "Failed to retrieve plugin due to transient network error.",
    r".*Failed to query available provider packages.*": "Failed to retrieve plugin due to transient network error.",
    r".*timeout while waiting for plugin to start.*": "Failed to retrieve plugin due to transient network error.",
    r".*timed out waiting for server handshake.*": "Failed to retrieve plugin due to transient network error.",
    r"could not query provider registry for": "Failed to retrieve plugin due to transient network error.",
    r".*TLS handshake timeout.*": "Transient TLS failure.",
    r".*Error 409: .*is being (?:created|deleted).*": "Resource operation still in progress.",
}

# Sub-commands that evaluate the configuration and therefore need variables.
VAR_FILE_COMMANDS = frozenset({"plan", "apply", "destroy", "import", "refresh"})
# Sub-commands that would otherwise prompt.
INPUT_COMMANDS = VAR_FILE_COMMANDS | {"init"}


class StackOptions(BaseModel):
    """How to run tofu against one module."""

    workdir: Path
    name: Optional[str] = Field(default=None, description="Label for logs and the orphan ledger")
    binary: str = "tofu"
    vars: Dict[str, Any] = Field(default_factory=dict)
    env_vars: Dict[str, str] = Field(default_factory=dict)
    no_color: bool = True
    retryable_errors: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_RETRYABLE_ERRORS),
    )
    max_retries: int = Field(default=3, ge=0)
    retry_interval_s: float = Field(default=5.0, ge=0)
    var_file_name: str = "harness.tfvars.json"
    command_timeout: Optional[float] = Field(default=None, description="Seconds per tofu call")

    @property
    def label(self) -> str:
        return self.name or self.workdir.name


class TofuStack:
    """Drives tofu for one module copy.

    Args:
        options: Stack options.
    """

    def __init__(self, options: StackOptions) -> None:
        self.options = options
        self._patterns = [
            (re.compile(pattern, re.DOTALL), reason)
            for pattern, reason in options.retryable_errors.items()
        ]

    def __repr__(self) -> str:
        return f"TofuStack({self.options.label!r}, workdir={str(self.workdir)!r})"

    @property
    def name(self) -> str:
        return self.options.label

    @property
    def workdir(self) -> Path:
        return self.options.workdir

    @property
    def var_file(self) -> Path:
        return self.workdir / self.options.var_file_name

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def update_vars(self, **overrides: Any) -> None:
        """Merge variable values in place.

        Use when values are only known after an upstream stack is applied;
        any destroy already registered for this stack sees the new values.
        """
        self.options.vars.update(overrides)

    def write_var_file(self) -> Path:
        """Write the current variables as JSON and return the file path."""
        self.var_file.write_text(
            json.dumps(self.options.vars, indent=2, sort_keys=True, default=str),
            encoding="utf-8",
        )
        self.var_file.chmod(0o600)
        return self.var_file

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    def build_args(self, sub: str, *rest: str) -> list[str]:
        """Assemble the argument vector for a sub-command.

        Flag order matters to tofu: global flags for the sub-command come
        right after it, positional arguments last.

        Args:
            sub: Sub-command ('apply', 'state', ...).
            rest: Remaining arguments, passed through in order.

        Returns:
            list[str]: Full argv, binary first.
        """
        args = [self.options.binary, sub]
        if sub in INPUT_COMMANDS:
            args.append("-input=false")
        if self.options.no_color and sub != "state":
            args.append("-no-color")
        if sub in VAR_FILE_COMMANDS:
            args.append(f"-var-file={self.var_file}")
        args.extend(rest)
        return args

    def _env(self) -> Dict[str, str]:
        env = {"TF_IN_AUTOMATION": "1"}
        env.update(self.options.env_vars)
        return env

    def _retry_reason(self, output: str) -> Optional[str]:
        for pattern, reason in self._patterns:
            if pattern.search(output):
                return reason
        return None

    def run(self, sub: str, *rest: str) -> CommandResult:
        """Run a tofu sub-command, retrying known transient failures.

        Raises:
            CommandError: Non-retryable failure, or retries exhausted.
        """
        if sub in VAR_FILE_COMMANDS:
            self.write_var_file()
        args = self.build_args(sub, *rest)

        attempt = 0
        while True:
            try:
                return run_command(
                    args,
                    cwd=self.workdir,
                    env=self._env(),
                    timeout=self.options.command_timeout,
                )
            except CommandError as exc:
                reason = self._retry_reason(exc.output)
                if reason is None or attempt >= self.options.max_retries:
                    raise
                attempt += 1
                logger.warning(
                    "%s %s failed (%s); retry %d/%d in %.0fs",
                    self.options.binary, sub, reason, attempt,
                    self.options.max_retries, self.options.retry_interval_s,
                )
                time.sleep(self.options.retry_interval_s)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> CommandResult:
        logger.info("[%s] tofu init", self.name)
        return self.run("init")

    def apply(self) -> CommandResult:
        logger.info("[%s] tofu apply", self.name)
        return self.run("apply", "-auto-approve")

    def init_and_apply(self) -> CommandResult:
        self.init()
        return self.apply()

    def plan(self) -> str:
        """Run a plan and return its text output."""
        return self.run("plan").stdout

    def destroy(self, targets: Sequence[str] = ()) -> CommandResult:
        """Destroy the stack, or only the given resource addresses."""
        extra = [f"-target={t}" for t in targets]
        logger.info(
            "[%s] tofu destroy%s", self.name,
            f" ({', '.join(targets)})" if targets else "",
        )
        return self.run("destroy", "-auto-approve", *extra)

    def import_resource(self, address: str, resource_id: str) -> CommandResult:
        """Bring an existing cloud object under this stack's state."""
        logger.info("[%s] tofu import %s %s", self.name, address, resource_id)
        return self.run("import", address, resource_id)

    def state_rm(self, address: str) -> CommandResult:
        """Forget a resource without touching the cloud object."""
        logger.info("[%s] tofu state rm %s", self.name, address)
        return self.run("state", "rm", address)

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def outputs(self) -> Dict[str, Any]:
        """All root outputs, unwrapped from tofu's {value, type} envelope."""
        raw = json.loads(self.run("output", "-json").stdout or "{}")
        return {key: entry.get("value") for key, entry in raw.items()}

    def output_json(self, name: str) -> Any:
        """One output, decoded from JSON."""
        return json.loads(self.run("output", "-json", name).stdout)

    def output(self, name: str) -> str:
        """One output as text; non-string values come back as JSON."""
        value = self.output_json(name)
        return value if isinstance(value, str) else json.dumps(value)

    def output_map(self, name: str) -> Dict[str, Any]:
        """One map-typed output.

        Raises:
            TypeError: If the output is not a map.
        """
        value = self.output_json(name)
        if not isinstance(value, dict):
            raise TypeError(f"output {name!r} is {type(value).__name__}, not a map")
        return value
