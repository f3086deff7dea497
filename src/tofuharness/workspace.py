"""
Isolated module workspaces.

Every test works on a throwaway copy of the repository's ``infra/`` tree,
so ``.terraform/`` and the local state file never leak between runs.
The whole tree is copied (not just the module) because modules refer to
each other by relative path.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import secrets
import shutil
import string
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import RepoRootNotFound

logger = logging.getLogger(__name__)

REPO_ROOT_ENV = "NEO4J_GKE_REPO_ROOT"
INFRA_DIR = "infra"
WORKSPACE_PREFIX = "tofu-harness-"
MODULE_KINDS = ("modules", "envs", "apps")

_SKIP_PATTERNS = ("*.tfstate", "*.tfstate.*", "*.tfvars", "*.tfvars.json")
# provider and binary pins
_KEEP_HIDDEN = (".terraform.lock.hcl", ".terraform-version")
_ALPHABET = string.ascii_lowercase + string.digits


def repo_root(start: Optional[Path] = None) -> Path:
    """Locate the repository root.

    Honours NEO4J_GKE_REPO_ROOT, otherwise walks up from ``start`` (default:
    the current directory) until a directory containing ``.git`` is found.

    Raises:
        RepoRootNotFound: If the filesystem root is reached first.
    """
    override = os.environ.get(REPO_ROOT_ENV, "").strip()
    if override:
        return Path(override).expanduser()

    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            return candidate
    raise RepoRootNotFound(
        f"could not locate repository root from {current}; set {REPO_ROOT_ENV}"
    )


def _ignore(directory: str, names: list[str]) -> set[str]:
    skipped = set()
    for name in names:
        if name in _KEEP_HIDDEN:
            continue
        if name.startswith("."):
            skipped.add(name)
        elif any(fnmatch.fnmatch(name, pat) for pat in _SKIP_PATTERNS):
            skipped.add(name)
    return skipped


@dataclass
class Workspace:
    """A temp copy of the infra tree and the module selected inside it.

    Attributes:
        root: Temp directory holding the copy; removing it removes everything.
        module_dir: The module to run tofu in.
    """

    root: Path
    module_dir: Path

    def remove(self) -> None:
        """Delete the temp copy (state included)."""
        if self.root.exists():
            shutil.rmtree(self.root, ignore_errors=True)
            logger.debug("Removed workspace %s", self.root)


def copy_module_to_temp(
    relative: str,
    kind: str = "modules",
    root: Optional[Path] = None,
) -> Workspace:
    """Copy the infra tree to a temp dir and select one module.

    Args:
        relative: Module path under ``infra/<kind>/`` (e.g. 'vpc', 'neo4j/test').
        kind: 'modules', 'envs' or 'apps'.
        root: Repository root (default: discovered).

    Returns:
        Workspace pointing at the copied module.

    Raises:
        ValueError: Unknown kind.
        FileNotFoundError: The module does not exist in the repository.
    """
    if kind not in MODULE_KINDS:
        raise ValueError(f"kind must be one of {MODULE_KINDS}, got {kind!r}")

    source_root = root or repo_root()
    source_infra = source_root / INFRA_DIR
    module_source = source_infra / kind / relative
    if not module_source.is_dir():
        raise FileNotFoundError(f"module not found: {module_source}")

    temp_root = Path(tempfile.mkdtemp(prefix=f"{WORKSPACE_PREFIX}{Path(relative).name}-"))
    shutil.copytree(source_infra, temp_root / INFRA_DIR, ignore=_ignore)
    module_dir = temp_root / INFRA_DIR / kind / relative
    logger.info("Copied %s to %s", module_source, module_dir)
    return Workspace(root=temp_root, module_dir=module_dir)


def unique_id(length: int = 6) -> str:
    """Random lower-case suffix for resource names."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))
