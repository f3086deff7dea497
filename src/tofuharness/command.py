"""Thin subprocess layer shared by the tofu and gcloud wrappers."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from .errors import CommandError, CommandTimeout, ToolNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command.

    Attributes:
        args: Argument vector, binary first.
        returncode: Exit status.
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration_s: Wall-clock runtime in seconds.
    """

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        """Whether the command exited zero."""
        return self.returncode == 0


def run_command(
    args: Sequence[str],
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    check: bool = True,
) -> CommandResult:
    """Run a command and capture its output.

    Args:
        args: Argument vector, binary first.
        cwd: Working directory.
        env: Variables merged over the current environment.
        timeout: Seconds before the process is killed. None = no limit.
        check: Raise CommandError on non-zero exit.

    Returns:
        CommandResult for the finished process.

    Raises:
        ToolNotFoundError: If the binary does not exist.
        CommandTimeout: If the timeout expires.
        CommandError: If check is set and the exit status is non-zero.
    """
    argv = [str(a) for a in args]
    merged_env = None
    if env:
        merged_env = dict(os.environ)
        merged_env.update(env)

    logger.debug("Running %s (cwd=%s)", " ".join(argv), cwd or ".")
    start = time.monotonic()
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd) if cwd else None,
            env=merged_env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise ToolNotFoundError(argv[0])
    except subprocess.TimeoutExpired:
        raise CommandTimeout(argv, timeout or 0)

    result = CommandResult(
        args=argv,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
        duration_s=time.monotonic() - start,
    )
    if check and not result.ok:
        raise CommandError(argv, result.returncode, result.stdout, result.stderr)
    return result
