"""
Harness configuration.

Values come from, lowest priority first:
  1. model defaults
  2. a YAML file (TOFU_HARNESS_CONFIG, else ./tofu-harness.yaml)
  3. environment variables (NEO4J_GKE_* for the target project,
     TOFU_HARNESS_* for the harness itself)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from . import HARNESS_HOME
from .errors import ConfigError, MissingEnvironmentError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "tofu-harness.yaml"

# field name -> environment variable
ENV_VARS: dict[str, str] = {
    "project_id": "NEO4J_GKE_GCP_PROJECT_ID",
    "state_bucket_location": "NEO4J_GKE_STATE_BUCKET_LOCATION",
    "region": "NEO4J_GKE_TEST_REGION",
    "repo_root": "NEO4J_GKE_REPO_ROOT",
    "home": "TOFU_HARNESS_HOME",
    "timeout": "TOFU_HARNESS_TIMEOUT",
    "tofu_binary": "TOFU_HARNESS_TOFU_BINARY",
    "gcloud_binary": "TOFU_HARNESS_GCLOUD_BINARY",
}


class HarnessConfig(BaseModel):
    """Settings shared by the plugin, the fixtures and the CLI."""

    project_id: Optional[str] = Field(default=None, description="GCP project for live tests")
    state_bucket_location: Optional[str] = Field(
        default=None, description="Location for the bootstrap state bucket and KMS ring",
    )
    region: str = Field(default="us-central1", description="GCP region for regional resources")
    repo_root: Optional[Path] = Field(default=None, description="Skip .git discovery")
    home: Path = Field(default=Path(HARNESS_HOME), description="Harness state (orphan ledger)")
    timeout: Optional[str] = Field(
        default=None, description="Whole-run deadline, e.g. '45m'. '0' = unlimited",
    )
    tofu_binary: str = "tofu"
    gcloud_binary: str = "gcloud"
    max_retries: int = Field(default=3, ge=0)
    retry_interval_s: float = Field(default=5.0, ge=0)

    @property
    def home_path(self) -> Path:
        """Expanded harness home directory."""
        return self.home.expanduser()

    def require(self, field_name: str) -> str:
        """Return a field that live tests cannot run without.

        Args:
            field_name: Attribute name, e.g. 'project_id'.

        Returns:
            The configured value as a string.

        Raises:
            MissingEnvironmentError: If the value is unset or empty.
        """
        value = getattr(self, field_name)
        if value is None or str(value).strip() == "":
            raise MissingEnvironmentError(ENV_VARS.get(field_name, field_name))
        return str(value)


def _read_yaml(path: Path) -> dict:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    return data


def find_config_file(
    environ: Optional[Mapping[str, str]] = None,
    search_dir: Optional[Path] = None,
) -> Optional[Path]:
    """Locate the YAML config file, if any."""
    environ = os.environ if environ is None else environ
    explicit = environ.get("TOFU_HARNESS_CONFIG", "").strip()
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ConfigError(f"TOFU_HARNESS_CONFIG points at missing file {path}")
        return path

    candidate = (search_dir or Path.cwd()) / CONFIG_FILE_NAME
    return candidate if candidate.is_file() else None


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    search_dir: Optional[Path] = None,
) -> HarnessConfig:
    """Build the effective configuration.

    Args:
        environ: Environment mapping (defaults to os.environ).
        search_dir: Directory searched for tofu-harness.yaml.

    Returns:
        HarnessConfig with file and environment overrides applied.

    Raises:
        ConfigError: If the file or the merged values fail validation.
    """
    environ = os.environ if environ is None else environ
    data: dict = {}

    path = find_config_file(environ, search_dir)
    if path is not None:
        logger.debug("Loading harness config from %s", path)
        data.update(_read_yaml(path))

    for field_name, var in ENV_VARS.items():
        value = environ.get(var, "").strip()
        if value:
            data[field_name] = value

    try:
        return HarnessConfig(**data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
