"""Timeout commands: will a suite fit in the run deadline?"""

from __future__ import annotations

import json
from typing import Optional

import click
from rich.table import Table

from ._common import config_or_exit, console


def register_timeout_commands(main: click.Group) -> None:
    """Register the timeout command group."""

    @main.group()
    def timeout():
        """Run-deadline checks for long-running suites."""

    @timeout.command("check")
    @click.argument("minimum")
    @click.option("--timeout", "configured", default=None,
                  help="Run timeout to test against (default: TOFU_HARNESS_TIMEOUT, then 10m).")
    @click.option("--json-out", is_flag=True, help="Machine-readable output.")
    def timeout_check(minimum: str, configured: Optional[str], json_out: bool):
        """Check whether MINIMUM fits in the configured run timeout.

        MINIMUM is a profile (default, vpc, gke, e2e) or a duration.
        Exits 1 when a test needing MINIMUM would be skipped.

        Examples:

            tofu-harness timeout check gke --timeout 45m

            tofu-harness timeout check 20m
        """
        from ..timeouts import TimeoutGuard, resolve_configured_timeout

        config = config_or_exit()
        guard = TimeoutGuard(resolve_configured_timeout(configured, config.timeout))
        try:
            result = guard.check(minimum)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="MINIMUM")

        if json_out:
            click.echo(json.dumps(result.to_dict(), indent=2))
        elif result.sufficient:
            console.print(f"[green]OK[/] {result.message}")
        else:
            console.print(f"[yellow]{result.message}[/]")
        raise SystemExit(0 if result.sufficient else 1)

    @timeout.command("profiles")
    def timeout_profiles():
        """List the named minimum-timeout profiles."""
        from ..timeouts import PROFILES, format_duration

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Profile", style="cyan")
        table.add_column("Minimum", justify="right")
        for name, seconds in PROFILES.items():
            table.add_row(name, format_duration(seconds))
        console.print(table)
