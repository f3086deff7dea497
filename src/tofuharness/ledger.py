"""
Orphan ledger — stacks whose teardown failed.

When a destroy fails, the stack's workspace (and with it the only copy
of its state) is kept on disk and recorded here. ``tofu-harness orphans``
lists the records and can retry the destroy later.

Layout: one JSON file per record under ``<home>/orphans/``.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import HarnessError
from .workspace import WORKSPACE_PREFIX

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def workspace_root(workdir: Path) -> Optional[Path]:
    """The harness temp copy containing ``workdir``, if any."""
    for parent in (workdir, *workdir.parents):
        if parent.name.startswith(WORKSPACE_PREFIX):
            return parent
    return None


class OrphanRecord(BaseModel):
    """A stack left behind by a failed teardown."""

    name: str
    workdir: Path
    binary: str = "tofu"
    var_file: Optional[Path] = None
    env_vars: Dict[str, str] = Field(default_factory=dict)
    error: str = ""
    recorded_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def record_id(self) -> str:
        """Filesystem-safe identifier: label plus workspace directory name."""
        root = workspace_root(self.workdir)
        suffix = root.name if root is not None else self.workdir.name
        return _UNSAFE.sub("-", f"{self.name}-{suffix}")


class OrphanLedger:
    """Persists OrphanRecords.

    Args:
        home: Harness home directory (default ~/.tofu-harness).
    """

    def __init__(self, home: Optional[Path] = None) -> None:
        self._home = (home or Path("~/.tofu-harness")).expanduser()
        self._dir = self._home / "orphans"

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, record_id: str) -> Path:
        return self._dir / f"{record_id}.json"

    def record(self, record: OrphanRecord) -> Path:
        """Save a record, replacing any with the same id.

        The file is readable by the owner only: ``env_vars`` may carry
        credentials.

        Returns:
            Path to the written JSON file.
        """
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._path(record.record_id)
        path.write_text(
            json.dumps(record.model_dump(mode="json"), indent=2),
            encoding="utf-8",
        )
        path.chmod(0o600)
        logger.error(
            "Orphaned stack %s recorded at %s (workdir %s)",
            record.name, path, record.workdir,
        )
        return path

    def list(self) -> List[OrphanRecord]:
        """All records, oldest first."""
        if not self._dir.is_dir():
            return []
        records = []
        for f in sorted(self._dir.glob("*.json")):
            try:
                data = json.loads(f.read_text(encoding="utf-8"))
                records.append(OrphanRecord(**data))
            except Exception as exc:
                logger.warning("Skipping %s: %s", f, exc)
        return sorted(records, key=lambda r: r.recorded_at)

    def get(self, record_id: str) -> Optional[OrphanRecord]:
        path = self._path(record_id)
        if not path.exists():
            return None
        return OrphanRecord(**json.loads(path.read_text(encoding="utf-8")))

    def remove(self, record_id: str) -> bool:
        """Forget a record. Returns False if it did not exist."""
        path = self._path(record_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def retry_destroy(self, record: OrphanRecord) -> bool:
        """Re-run destroy in the preserved workspace.

        On success the record is removed and the workspace deleted.

        Returns:
            True if the destroy succeeded.
        """
        from .tofu import StackOptions, TofuStack

        if not record.workdir.is_dir():
            logger.warning("Workspace %s is gone; cannot retry %s", record.workdir, record.name)
            return False

        options = StackOptions(
            workdir=record.workdir,
            name=record.name,
            binary=record.binary,
            env_vars=record.env_vars,
        )
        if record.var_file is not None:
            options.var_file_name = record.var_file.name
            if record.var_file.exists():
                options.vars = json.loads(record.var_file.read_text(encoding="utf-8"))

        try:
            TofuStack(options).destroy()
        except HarnessError as exc:
            logger.error("Retry destroy of %s failed: %s", record.name, exc)
            return False

        self.remove(record.record_id)
        root = workspace_root(record.workdir)
        if root is not None:
            shutil.rmtree(root, ignore_errors=True)
        return True
