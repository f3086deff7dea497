"""Orphan commands: list, destroy and forget stacks left by failed teardowns."""

from __future__ import annotations

from typing import Optional

import click
from rich.table import Table

from ._common import console, resolve_home


def register_orphans_commands(main: click.Group) -> None:
    """Register the orphans command group."""

    @main.group()
    def orphans():
        """Stacks whose teardown failed.

        Their workspaces are kept so the state can still drive a destroy.
        """

    @orphans.command("list")
    @click.option("--home", default=None, type=click.Path(), help="Harness home directory.")
    def orphans_list(home: Optional[str]):
        """List recorded orphans."""
        from ..ledger import OrphanLedger

        records = OrphanLedger(resolve_home(home)).list()
        if not records:
            console.print("\n[dim]No orphaned stacks.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("ID", style="cyan")
        table.add_column("Recorded", style="dim")
        table.add_column("Workdir")
        table.add_column("Error", style="red")

        for r in records:
            table.add_row(r.record_id, r.recorded_at[:19], str(r.workdir), r.error[:60])

        console.print(f"\n[bold]{len(records)}[/] orphaned stack(s):\n")
        console.print(table)
        console.print()

    @orphans.command("destroy")
    @click.argument("record_id", required=False)
    @click.option("--all", "destroy_all", is_flag=True, help="Retry every recorded orphan.")
    @click.option("--home", default=None, type=click.Path(), help="Harness home directory.")
    def orphans_destroy(record_id: Optional[str], destroy_all: bool, home: Optional[str]):
        """Retry tofu destroy for one orphan (or --all).

        Examples:

            tofu-harness orphans destroy destroy-vpc-tofu-harness-vpc-k2j4

            tofu-harness orphans destroy --all
        """
        from ..ledger import OrphanLedger

        if bool(record_id) == destroy_all:
            raise click.UsageError("Give exactly one of RECORD_ID or --all.")

        ledger = OrphanLedger(resolve_home(home))
        if destroy_all:
            targets = ledger.list()
        else:
            record = ledger.get(record_id)
            if record is None:
                console.print(f"[red]No orphan with id {record_id}[/]")
                raise SystemExit(1)
            targets = [record]

        failed = 0
        for record in targets:
            console.print(f"[cyan]Destroying {record.name}[/] ({record.workdir})")
            if ledger.retry_destroy(record):
                console.print("  [green]destroyed[/]")
            else:
                console.print("  [red]still orphaned[/]")
                failed += 1

        if failed:
            raise SystemExit(1)

    @orphans.command("forget")
    @click.argument("record_id")
    @click.option("--home", default=None, type=click.Path(), help="Harness home directory.")
    def orphans_forget(record_id: str, home: Optional[str]):
        """Drop a record without destroying anything (cleaned up by hand)."""
        from ..ledger import OrphanLedger

        if OrphanLedger(resolve_home(home)).remove(record_id):
            console.print(f"[green]Forgot {record_id}[/]")
        else:
            console.print(f"[red]No orphan with id {record_id}[/]")
            raise SystemExit(1)
