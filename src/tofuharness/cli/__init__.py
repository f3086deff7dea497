"""
tofu-harness CLI — inspect the environment and clean up after failed runs.

Each command group lives in its own module and is attached to the main
Click group by a register function.

Entry point: tofuharness.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="tofu-harness")
@click.option("--verbose", "-v", is_flag=True, help="Log tofu/gcloud activity to stderr.")
def main(verbose: bool):
    """tofu-harness — lifecycle coordinator for OpenTofu integration tests.

    Preflight the tools, check whether a run timeout fits a test suite,
    and destroy stacks that a failed teardown left behind.
    """
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .preflight import register_preflight_commands
from .timeout import register_timeout_commands
from .orphans import register_orphans_commands

register_preflight_commands(main)
register_timeout_commands(main)
register_orphans_commands(main)
