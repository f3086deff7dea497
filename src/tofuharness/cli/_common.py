"""Shared utilities for the CLI command modules: console and status markup."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.console import Console

from ..config import HarnessConfig, load_config
from ..errors import ConfigError

console = Console()


def ok_icon(ok: bool, optional: bool = False) -> str:
    """Rich markup for a pass/fail cell.

    Args:
        ok: Whether the check passed.
        optional: Render a failure as a warning instead of an error.
    """
    if ok:
        return "[bold green]OK[/]"
    return "[bold yellow]MISSING[/]" if optional else "[bold red]MISSING[/]"


def config_or_exit() -> HarnessConfig:
    """Load the harness config, printing the error and exiting on failure."""
    try:
        return load_config()
    except ConfigError as exc:
        console.print(f"[red]Invalid configuration:[/] {exc}")
        raise SystemExit(2)


def resolve_home(home: Optional[str]) -> Path:
    """--home if given, else the configured harness home."""
    if home:
        return Path(home).expanduser()
    return config_or_exit().home_path
