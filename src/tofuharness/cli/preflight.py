"""Preflight command: are tofu, gcloud, curl and the project variables ready?"""

from __future__ import annotations

import json

import click
from rich.table import Table

from ._common import console, ok_icon


def register_preflight_commands(main: click.Group) -> None:
    """Register the preflight command."""

    @main.command()
    @click.option("--kubectl", "require_kubectl", is_flag=True,
                  help="Treat kubectl as required (end-to-end runs).")
    @click.option("--json-out", is_flag=True, help="Machine-readable output.")
    def preflight(require_kubectl: bool, json_out: bool):
        """Check the tools and variables live tests depend on.

        Exits 1 when anything required is missing.

        Examples:

            tofu-harness preflight

            tofu-harness preflight --kubectl --json-out
        """
        from ..preflight import run_preflight

        result = run_preflight(require_kubectl=require_kubectl)

        if json_out:
            click.echo(json.dumps(result.to_dict(), indent=2))
            raise SystemExit(0 if result.all_ok else 1)

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Check", style="cyan")
        table.add_column("Status")
        table.add_column("Detail", style="dim")

        for check in result.tools:
            detail = check.version or check.download_url
            table.add_row(check.name, ok_icon(check.installed, not check.required), detail)
        for check in result.env:
            detail = check.version or check.install_note
            table.add_row(check.name, ok_icon(check.installed, not check.required), detail)

        console.print()
        console.print(table)
        console.print()

        if result.all_ok:
            console.print("[green]Ready for live runs.[/]\n")
            return

        for check in result.required_missing:
            if check.install_note:
                console.print(f"  [red]{check.name}[/]: {check.install_note}")
        console.print()
        raise SystemExit(1)
