"""dustbin status: tracking summary."""

from __future__ import annotations

import json
from collections import Counter

import click
from rich.console import Console
from rich.table import Table

from dustbin.cli._common import format_timestamp, load_config_or_exit, open_ledger


def cmd_status(as_json: bool, console: Console) -> None:
    config = load_config_or_exit(console)

    with open_ledger(config, console) as ledger:
        records = ledger.list_binaries()
        total = ledger.binary_count()
        dusty = ledger.dusty_count()
        since = ledger.tracking_since()

    daemon_running = _daemon_running()

    by_source: Counter[str] = Counter()
    dusty_by_source: Counter[str] = Counter()
    for record in records:
        if config.should_ignore_binary(record.name):
            continue
        source = record.source or "other"
        by_source[source] += 1
        if record.is_dusty:
            dusty_by_source[source] += 1

    data = {
        "daemon": "running" if daemon_running else "not_running",
        "db_path": str(config.db_path),
        "config_path": str(config.config_path),
        "tracking_since": since,
        "tracked": total,
        "dusty": dusty,
        "active": total - dusty,
        "sources": {
            name: {"tracked": count, "dusty": dusty_by_source[name]}
            for name, count in sorted(by_source.items())
        },
    }

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    console.print("[bold]Dustbin Status[/bold]\n")
    state = "[green]running[/green]" if daemon_running else "[yellow]not running[/yellow]"
    console.print(f"  Daemon:         {state}")
    console.print(f"  Tracking since: {format_timestamp(since)}")
    console.print(f"  Tracked:        {total}")
    console.print(f"  Dusty:          {dusty}")
    console.print(f"  Ledger:         {config.db_path}")
    console.print(f"  Config:         {config.config_path}")

    if by_source:
        table = Table(title="By source", show_edge=False)
        table.add_column("Source", style="cyan")
        table.add_column("Tracked", justify="right")
        table.add_column("Dusty", justify="right")
        for name, count in sorted(by_source.items()):
            table.add_row(name, str(count), str(dusty_by_source[name]))
        console.print()
        console.print(table)

    if not daemon_running:
        console.print("\n  Run [cyan]dustbin service install[/cyan] to start tracking.")


def _daemon_running() -> bool:
    from dustbin.core.exceptions import PlatformError
    from dustbin.os.platform import select_backends

    try:
        return select_backends().service.is_running()
    except PlatformError:
        return False
