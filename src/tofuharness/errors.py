"""Exception hierarchy for the harness.

Wrappers around ``tofu`` and ``gcloud`` raise these; only the teardown
paths (cleanup stack, adoption release) catch and log them.
"""

from __future__ import annotations

from typing import Sequence


class HarnessError(Exception):
    """Base class for every error raised by tofu-harness."""


class ConfigError(HarnessError):
    """The harness configuration file is malformed."""


class MissingEnvironmentError(HarnessError):
    """A required environment variable is not set."""

    def __init__(self, name: str) -> None:
        super().__init__(f"required environment variable {name} is not set")
        self.name = name


class RepoRootNotFound(HarnessError):
    """No repository root above the starting directory."""


class ToolNotFoundError(HarnessError):
    """The binary for an external command is not on PATH."""

    def __init__(self, binary: str) -> None:
        super().__init__(f"{binary}: command not found")
        self.binary = binary


class CommandError(HarnessError):
    """An external command exited non-zero.

    Attributes:
        cmd: Full argument vector, binary first.
        returncode: Process exit status.
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    def __init__(
        self,
        args: Sequence[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.cmd = list(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout).strip().splitlines()
        tail = detail[-1] if detail else ""
        super().__init__(
            f"{' '.join(self.cmd)} exited with status {returncode}"
            + (f": {tail}" if tail else "")
        )

    @property
    def output(self) -> str:
        """Stdout and stderr combined, for pattern matching."""
        return self.stdout + self.stderr


class CommandTimeout(HarnessError):
    """An external command ran past its timeout."""

    def __init__(self, args: Sequence[str], timeout: float) -> None:
        self.cmd = list(args)
        self.timeout = timeout
        super().__init__(f"{' '.join(self.cmd)} timed out after {timeout:g}s")
