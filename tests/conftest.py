"""Shared test fixtures for tofu-harness."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Variables a developer may have exported; unit tests must not see them.
_HARNESS_ENV = (
    "NEO4J_GKE_GCP_PROJECT_ID",
    "NEO4J_GKE_STATE_BUCKET_LOCATION",
    "NEO4J_GKE_TEST_REGION",
    "NEO4J_GKE_REPO_ROOT",
    "TOFU_HARNESS_HOME",
    "TOFU_HARNESS_TIMEOUT",
    "TOFU_HARNESS_TOFU_BINARY",
    "TOFU_HARNESS_GCLOUD_BINARY",
    "TOFU_HARNESS_CONFIG",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every harness variable from the environment."""
    for var in _HARNESS_ENV:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


@pytest.fixture
def harness_home(tmp_path: Path) -> Path:
    """Provide a temporary harness home directory."""
    home = tmp_path / ".tofu-harness"
    home.mkdir()
    return home


@pytest.fixture
def fake_repo(tmp_path: Path) -> Path:
    """A repository with an infra tree: two modules, an env and an app."""
    repo = tmp_path / "repo"
    (repo / ".git").mkdir(parents=True)

    vpc = repo / "infra" / "modules" / "vpc"
    vpc.mkdir(parents=True)
    (vpc / "main.tf").write_text('resource "google_compute_network" "vpc" {}\n')
    (vpc / "terraform.tfstate").write_text("{}")
    (vpc / "local.tfvars").write_text('project_id = "leak"\n')
    (vpc / ".terraform").mkdir()
    (vpc / ".terraform" / "plugin").write_text("binary")
    (vpc / ".terraform.lock.hcl").write_text('provider "registry.opentofu.org/hashicorp/google" {}\n')
    (vpc / ".terraform-version").write_text("1.8.0\n")

    gke = repo / "infra" / "modules" / "gke"
    gke.mkdir(parents=True)
    (gke / "main.tf").write_text('module "vpc" { source = "../vpc" }\n')

    nested = repo / "infra" / "modules" / "neo4j" / "test"
    nested.mkdir(parents=True)
    (nested / "main.tf").write_text("")

    env = repo / "infra" / "envs" / "dev"
    env.mkdir(parents=True)
    (env / "main.tf").write_text("")

    app = repo / "infra" / "apps" / "neo4j"
    app.mkdir(parents=True)
    (app / "main.tf").write_text("")
    return repo


@pytest.fixture
def fake_stack(tmp_path: Path) -> MagicMock:
    """A TofuStack stand-in with a real workdir."""
    workdir = tmp_path / "tofu-harness-vpc-abc123" / "infra" / "modules" / "vpc"
    workdir.mkdir(parents=True)
    stack = MagicMock()
    stack.name = "vpc"
    stack.workdir = workdir
    stack.var_file = workdir / "harness.tfvars.json"
    stack.options.binary = "tofu"
    stack.options.env_vars = {"GOOGLE_PROJECT": "p-123"}
    return stack
