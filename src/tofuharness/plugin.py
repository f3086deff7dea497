"""
pytest plugin — wires the harness into a test session.

Installed through the ``pytest11`` entry point, so any project with
tofu-harness installed gets:

  --harness-timeout   whole-run deadline ('45m'; '0' = unlimited)
  --run-integration   opt in to tests marked ``integration``

  @pytest.mark.min_timeout("gke")   skip unless 30m remain in the run
  @pytest.mark.integration          live GCP test

and the fixtures ``harness_config``, ``timeout_guard``, ``orphan_ledger``,
``cleanup``, ``gcloud``, ``unique_suffix`` and ``module_stack``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import pytest

from .cleanup import CleanupStack
from .config import HarnessConfig, load_config
from .errors import ConfigError, MissingEnvironmentError
from .gcloud import Gcloud
from .ledger import OrphanLedger
from .timeouts import TimeoutGuard, install_session_guard, resolve_configured_timeout
from .tofu import StackOptions, TofuStack
from .workspace import copy_module_to_temp, unique_id

logger = logging.getLogger(__name__)

_CONFIG_KEY = pytest.StashKey[HarnessConfig]()
_GUARD_KEY = pytest.StashKey[TimeoutGuard]()
_OUTER_GUARD_KEY = pytest.StashKey[Optional[TimeoutGuard]]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("tofu-harness", "OpenTofu integration test lifecycle")
    group.addoption(
        "--harness-timeout",
        default=None,
        help="Whole-run deadline used to skip tests that could not finish "
             "their teardown (e.g. 45m, 1h30m; 0 = unlimited). "
             "Default: TOFU_HARNESS_TIMEOUT, then 10m.",
    )
    group.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked 'integration' (they create real GCP resources).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "integration: provisions real GCP resources (needs --run-integration)",
    )
    config.addinivalue_line(
        "markers",
        "min_timeout(value): skip unless the remaining run time covers value "
        "(profile name default/vpc/gke/e2e, or a duration such as '30m')",
    )

    try:
        harness_config = load_config()
    except ConfigError as exc:
        raise pytest.UsageError(f"tofu-harness: {exc}") from exc

    configured = resolve_configured_timeout(
        config.getoption("harness_timeout"),
        harness_config.timeout,
    )
    guard = TimeoutGuard(configured)
    config.stash[_CONFIG_KEY] = harness_config
    config.stash[_GUARD_KEY] = guard
    config.stash[_OUTER_GUARD_KEY] = install_session_guard(guard)


def pytest_unconfigure(config: pytest.Config) -> None:
    if _OUTER_GUARD_KEY in config.stash:
        install_session_guard(config.stash[_OUTER_GUARD_KEY])


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    if config.getoption("run_integration"):
        return
    skip = pytest.mark.skip(reason="live GCP test: pass --run-integration to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.hookimpl(tryfirst=True)
def pytest_runtest_setup(item: pytest.Item) -> None:
    # Before fixtures, i.e. before any resource exists.
    marker = item.get_closest_marker("min_timeout")
    if marker is None:
        return
    if not marker.args:
        raise pytest.UsageError(f"{item.nodeid}: min_timeout needs a value")
    item.config.stash[_GUARD_KEY].require(marker.args[0])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def harness_config(pytestconfig: pytest.Config) -> HarnessConfig:
    """Effective harness configuration (YAML file + environment)."""
    return pytestconfig.stash[_CONFIG_KEY]


@pytest.fixture(scope="session")
def timeout_guard(pytestconfig: pytest.Config) -> TimeoutGuard:
    """The session's run-deadline guard."""
    return pytestconfig.stash[_GUARD_KEY]


@pytest.fixture(scope="session")
def orphan_ledger(harness_config: HarnessConfig) -> OrphanLedger:
    return OrphanLedger(harness_config.home_path)


@pytest.fixture
def cleanup(orphan_ledger: OrphanLedger):
    """A CleanupStack run when the test finishes, whatever the outcome."""
    stack = CleanupStack(ledger=orphan_ledger)
    yield stack
    report = stack.run()
    if not report.all_ok:
        logger.error("Cleanup incomplete: %s", [o.name for o in report.failed])


def require_setting(harness_config: HarnessConfig, field_name: str) -> str:
    """Return a required setting or fail the calling test."""
    try:
        return harness_config.require(field_name)
    except MissingEnvironmentError as exc:
        pytest.fail(str(exc))


@pytest.fixture
def gcloud(harness_config: HarnessConfig) -> Gcloud:
    """gcloud wrapper bound to NEO4J_GKE_GCP_PROJECT_ID."""
    return Gcloud(
        require_setting(harness_config, "project_id"),
        binary=harness_config.gcloud_binary,
    )


@pytest.fixture
def unique_suffix() -> str:
    """Lower-case random suffix for resource names."""
    return unique_id()


@pytest.fixture
def module_stack(harness_config: HarnessConfig, cleanup: CleanupStack) -> Callable[..., TofuStack]:
    """Factory: copy a module to a temp workspace and return its TofuStack.

    The workspace removal and (unless ``destroy=False``) the destroy are
    registered immediately, so call the factory in dependency order: the
    last stack created is the first one destroyed.
    """

    def factory(
        module: str,
        vars: Optional[Dict[str, Any]] = None,
        kind: str = "modules",
        name: Optional[str] = None,
        env_vars: Optional[Dict[str, str]] = None,
        destroy: bool = True,
    ) -> TofuStack:
        workspace = copy_module_to_temp(module, kind=kind, root=harness_config.repo_root)
        cleanup.defer_workspace_removal(workspace)
        stack = TofuStack(StackOptions(
            workdir=workspace.module_dir,
            name=name or module,
            binary=harness_config.tofu_binary,
            vars=dict(vars or {}),
            env_vars=dict(env_vars or {}),
            max_retries=harness_config.max_retries,
            retry_interval_s=harness_config.retry_interval_s,
        ))
        if destroy:
            cleanup.defer_destroy(stack)
        return stack

    return factory
