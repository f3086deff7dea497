"""gcloud wrapper: project-scoped commands, existence probes, output parsing."""

from __future__ import annotations

import logging
from typing import Optional

from .command import run_command

logger = logging.getLogger(__name__)


def parse_bool(text: str) -> bool:
    """Interpret a gcloud ``--format=value(...)`` boolean.

    gcloud prints ``True`` for true, but an empty string (not ``False``)
    when a boolean field is false or unset.

    Raises:
        ValueError: The text is not a boolean rendering.
    """
    value = text.strip().lower()
    if value == "true":
        return True
    if value in ("false", ""):
        return False
    raise ValueError(f"not a gcloud boolean: {text!r}")


class Gcloud:
    """Runs gcloud against one project.

    Args:
        project: GCP project id, passed as ``--project`` on every call.
        binary: gcloud executable.
        timeout: Seconds per call (None = no limit).
    """

    def __init__(self, project: str, binary: str = "gcloud", timeout: Optional[float] = None) -> None:
        self.project = project
        self.binary = binary
        self.timeout = timeout

    def _argv(self, args: tuple[str, ...]) -> list[str]:
        return [self.binary, "--project", self.project, *args]

    def run(self, *args: str) -> str:
        """Run a command and return stdout.

        Raises:
            CommandError: Non-zero exit.
        """
        return run_command(self._argv(args), timeout=self.timeout).stdout

    def run_quiet(self, *args: str) -> None:
        """Run a command for its side effect."""
        run_command(self._argv(args), timeout=self.timeout)

    def try_run(self, *args: str) -> bool:
        """Run a command and report success instead of raising."""
        result = run_command(self._argv(args), timeout=self.timeout, check=False)
        if not result.ok:
            logger.debug("gcloud %s failed: %s", " ".join(args), result.stderr.strip())
        return result.ok

    def describe_value(self, *args: str, field: str) -> str:
        """``describe ... --format=value(<field>)``, stripped."""
        return self.run(*args, f"--format=value({field})").strip()

    # ------------------------------------------------------------------
    # KMS probes (exit code only; no --format)
    # ------------------------------------------------------------------

    def kms_keyring_exists(self, location: str, ring: str) -> bool:
        return self.try_run("kms", "keyrings", "describe", ring, "--location", location)

    def kms_crypto_key_exists(self, location: str, ring: str, key: str) -> bool:
        return self.try_run(
            "kms", "keys", "describe", key, "--keyring", ring, "--location", location,
        )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def bucket_value(self, bucket: str, field: str) -> str:
        return self.describe_value("storage", "buckets", "describe", f"gs://{bucket}", field=field)

    def delete_bucket(self, bucket: str) -> None:
        """Delete a bucket and its contents.

        Raises:
            CommandError: The bucket is missing or cannot be deleted.
        """
        self.run_quiet("storage", "buckets", "delete", f"gs://{bucket}", "--quiet")
