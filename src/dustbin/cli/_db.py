"""Ledger inspection and management CLI commands."""

from __future__ import annotations

import json
import sqlite3
import sys

import click
from rich.console import Console

from dustbin.core.constants import ExitCode

console = Console()

_TABLES = ("binaries", "path_aliases", "dylib_deps", "lib_packages", "deps_analysis")


@click.group("db")
def db_group() -> None:
    """Ledger inspection and management."""


@db_group.command("info")
@click.option("--json", "as_json", is_flag=True, default=False)
def db_info(as_json: bool) -> None:
    """Show ledger path, schema version, and table stats."""
    from dustbin.cli._common import load_config_or_exit

    db_path = load_config_or_exit(console).db_path

    if not db_path.exists():
        if as_json:
            click.echo(json.dumps({"exists": False, "path": str(db_path)}))
        else:
            console.print(f"Ledger does not exist yet: {db_path}")
            console.print("It will be created on the first [cyan]dustbin status[/cyan].")
        return

    from dustbin.core.store.migrations import LATEST_SCHEMA_VERSION, get_user_version

    # Read-only: inspecting must not migrate.
    conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True, check_same_thread=False)
    try:
        version = get_user_version(conn)
        tables = {}
        for table in _TABLES:
            try:
                row = conn.execute(f"SELECT count(*) FROM {table}").fetchone()  # noqa: S608
                tables[table] = row[0] if row else 0
            except sqlite3.OperationalError:
                tables[table] = -1  # table missing

        size_kb = db_path.stat().st_size / 1024

        if as_json:
            click.echo(
                json.dumps(
                    {
                        "exists": True,
                        "path": str(db_path),
                        "schema_version": version,
                        "latest_version": LATEST_SCHEMA_VERSION,
                        "size_kb": round(size_kb, 1),
                        "tables": tables,
                    },
                    indent=2,
                )
            )
        else:
            console.print(f"[bold]Ledger[/bold]: {db_path}")
            console.print(f"Schema version: {version} (latest: {LATEST_SCHEMA_VERSION})")
            console.print(f"Size: {size_kb:.1f} KB")
            console.print("\nTable row counts:")
            for table, count in tables.items():
                status = f"{count}" if count >= 0 else "[red]missing[/red]"
                console.print(f"  {table:<16} {status}")
    finally:
        conn.close()


@db_group.command("migrate")
@click.option(
    "--dry-run", is_flag=True, default=False, help="Show the schema gap without applying it."
)
@click.option(
    "--json", "as_json", is_flag=True, default=False, help="Machine-readable JSON output."
)
def db_migrate(dry_run: bool, as_json: bool) -> None:
    """Upgrade the ledger schema to the latest version."""
    from dustbin.cli._common import load_config_or_exit
    from dustbin.core.exceptions import LedgerError
    from dustbin.core.store.ledger import Ledger
    from dustbin.core.store.migrations import LATEST_SCHEMA_VERSION, get_user_version

    db_path = load_config_or_exit(console).db_path

    if not db_path.exists():
        if as_json:
            click.echo(json.dumps({"status": "no_database", "path": str(db_path)}))
        else:
            console.print(f"Ledger does not exist yet: {db_path}")
        return

    conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True, check_same_thread=False)
    try:
        current = get_user_version(conn)
    finally:
        conn.close()

    if current > LATEST_SCHEMA_VERSION:
        message = (
            f"Ledger is at schema v{current}; this build only supports up to "
            f"v{LATEST_SCHEMA_VERSION}"
        )
        if as_json:
            click.echo(json.dumps({"status": "too_new", "current_version": current}))
        else:
            console.print(f"[red]{message}[/red]")
        sys.exit(ExitCode.LEDGER_ERROR)

    pending = current < LATEST_SCHEMA_VERSION
    if pending and not dry_run:
        ledger = Ledger(db_path)
        try:
            ledger.connect()
        except LedgerError as exc:
            console.print(f"[red]Migration failed:[/red] {exc}")
            sys.exit(ExitCode.LEDGER_ERROR)
        ledger.close()

    status = "up_to_date" if not pending else ("dry_run" if dry_run else "applied")
    if as_json:
        click.echo(
            json.dumps(
                {
                    "path": str(db_path),
                    "current_version": current,
                    "latest_version": LATEST_SCHEMA_VERSION,
                    "dry_run": dry_run,
                    "status": status,
                },
                indent=2,
            )
        )
        return

    if status == "up_to_date":
        console.print(f"[green]Ledger is up to date[/green] (v{current}).")
    elif status == "dry_run":
        console.print(f"[yellow]Pending upgrade:[/yellow] v{current} -> v{LATEST_SCHEMA_VERSION}")
        console.print("Run without [cyan]--dry-run[/cyan] to apply.")
    else:
        console.print(f"[green]Upgraded[/green] v{current} -> v{LATEST_SCHEMA_VERSION}")
