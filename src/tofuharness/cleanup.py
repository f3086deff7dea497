"""
Cleanup registry — LIFO stack of deferred teardown actions.

Register a destroy for every stack BEFORE applying it, in dependency
order (VPC, then GKE, then the service account...). When the test ends,
however it ends, ``run()`` executes the actions last-registered-first,
so dependents are torn down before what they depend on.

A failing action never stops the ones after it. Its error is logged,
the stack is recorded in the orphan ledger (when one is attached), and
its workspace is kept because the local state file inside it is the
only handle left on the cloud resources.

Usage:

    with CleanupStack() as cleanup:
        cleanup.defer_destroy_many(vpc, gke)   # gke destroyed first
        vpc.init_and_apply()
        gke.init_and_apply()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .ledger import OrphanLedger, OrphanRecord
from .workspace import Workspace

if TYPE_CHECKING:
    from .tofu import TofuStack

logger = logging.getLogger(__name__)


@dataclass
class CleanupAction:
    """One deferred teardown step.

    Attributes:
        name: Label used in logs and the orphan ledger.
        func: Zero-argument callable doing the teardown.
        workdir: Module directory holding the state, if any. A failure of
            an action with a workdir means cloud resources may be orphaned.
        var_file: Variable file needed to retry the teardown by hand.
        binary: tofu/terraform binary, for manual retries.
        env_vars: Extra environment the stack ran with, for retries.
    """

    name: str
    func: Callable[[], Any]
    workdir: Optional[Path] = None
    var_file: Optional[Path] = None
    binary: str = "tofu"
    env_vars: Dict[str, str] = field(default_factory=dict)


@dataclass
class CleanupOutcome:
    """Result of running one CleanupAction."""

    name: str
    ok: bool
    error: str = ""
    workdir: Optional[Path] = None
    duration_s: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "ok": self.ok,
            "error": self.error,
            "workdir": str(self.workdir) if self.workdir else None,
            "duration_s": round(self.duration_s, 2),
        }


@dataclass
class CleanupReport:
    """Outcomes of a cleanup run, in execution order."""

    outcomes: List[CleanupOutcome] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failed(self) -> List[CleanupOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def orphaned_workdirs(self) -> List[Path]:
        """Workspaces kept because their teardown failed."""
        return [o.workdir for o in self.failed if o.workdir is not None]

    def to_dict(self) -> dict:
        return {
            "all_ok": self.all_ok,
            "failed": len(self.failed),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class CleanupStack:
    """LIFO registry of teardown actions.

    Args:
        ledger: Where failed teardowns are recorded. None = log only.
    """

    def __init__(self, ledger: Optional[OrphanLedger] = None) -> None:
        self._ledger = ledger
        self._actions: List[CleanupAction] = []
        self._orphaned: List[Path] = []

    def __len__(self) -> int:
        return len(self._actions)

    def __enter__(self) -> "CleanupStack":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.run()
        return False

    @property
    def pending(self) -> List[str]:
        """Names of registered actions, in the order they will run."""
        return [a.name for a in reversed(self._actions)]

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def push(self, action: CleanupAction) -> CleanupAction:
        self._actions.append(action)
        logger.debug("Registered cleanup %s (%d pending)", action.name, len(self._actions))
        return action

    def register(
        self,
        name: str,
        func: Callable[[], Any],
        workdir: Optional[Path] = None,
    ) -> CleanupAction:
        """Register an arbitrary teardown callable."""
        return self.push(CleanupAction(name=name, func=func, workdir=workdir))

    def defer_destroy(self, stack: "TofuStack") -> CleanupAction:
        """Register ``tofu destroy`` for a stack.

        Call before init/apply so a half-applied stack is still destroyed.
        """
        return self.push(CleanupAction(
            name=f"destroy {stack.name}",
            func=stack.destroy,
            workdir=stack.workdir,
            var_file=stack.var_file,
            binary=stack.options.binary,
            env_vars=stack.options.env_vars,
        ))

    def defer_destroy_many(self, *stacks: "TofuStack") -> List[CleanupAction]:
        """Register destroys in dependency order; the last one runs first."""
        return [self.defer_destroy(s) for s in stacks]

    def defer_workspace_removal(self, workspace: Workspace) -> CleanupAction:
        """Register deletion of a module copy.

        Register right after copying, so it runs after the stack's destroy.
        The copy is kept if any teardown inside it failed.
        """
        return self.push(CleanupAction(
            name=f"remove workspace {workspace.root.name}",
            func=lambda: self._remove_workspace(workspace),
        ))

    def _remove_workspace(self, workspace: Workspace) -> None:
        root = workspace.root.resolve()
        for orphan in self._orphaned:
            if orphan.resolve() == root or root in orphan.resolve().parents:
                logger.warning(
                    "Keeping workspace %s: it holds state for orphaned resources",
                    workspace.root,
                )
                return
        workspace.remove()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self) -> CleanupReport:
        """Execute and discard every registered action, newest first.

        Never raises for a failing action. Calling again with nothing
        registered returns an empty report.
        """
        report = CleanupReport()
        if self._actions:
            logger.info("Running %d cleanup action(s)", len(self._actions))

        while self._actions:
            action = self._actions.pop()
            report.outcomes.append(self._run_one(action))

        if report.failed:
            logger.error(
                "%d cleanup action(s) failed; manual cleanup may be required",
                len(report.failed),
            )
        return report

    def _run_one(self, action: CleanupAction) -> CleanupOutcome:
        logger.info("Cleanup: %s", action.name)
        start = time.monotonic()
        try:
            action.func()
        except Exception as exc:
            outcome = CleanupOutcome(
                name=action.name,
                ok=False,
                error=str(exc),
                workdir=action.workdir,
                duration_s=time.monotonic() - start,
            )
            self._handle_failure(action, exc)
            return outcome
        return CleanupOutcome(
            name=action.name,
            ok=True,
            workdir=action.workdir,
            duration_s=time.monotonic() - start,
        )

    def _handle_failure(self, action: CleanupAction, exc: Exception) -> None:
        logger.error("CLEANUP ERROR (resources may be orphaned): %s", exc)
        if action.workdir is None:
            return

        logger.error("Workdir: %s", action.workdir)
        logger.error("Manual cleanup may be required (tofu-harness orphans list)")
        self._orphaned.append(action.workdir)

        if self._ledger is None:
            return
        try:
            self._ledger.record(OrphanRecord(
                name=action.name,
                workdir=action.workdir,
                binary=action.binary,
                var_file=action.var_file,
                env_vars=action.env_vars,
                error=str(exc),
            ))
        except OSError as ledger_exc:
            logger.error("Could not write orphan ledger: %s", ledger_exc)

