"""
Dustbin CLI entry point.

Commands:
  dustbin status                : tracking summary (counts, sources, daemon)
  dustbin deps                  : dependency analysis and orphaned libraries
  dustbin db info|migrate       : ledger inspection and schema upgrade
  dustbin service install       : install and start the daemon service
  dustbin service uninstall     : stop and remove the daemon service
  dustbin version               : show version information
  dustbin daemon                : run the exec tracker (used by the service)
"""

from __future__ import annotations

import click
from rich.console import Console

from dustbin import __version__
from dustbin.cli._db import db_group

console = Console()
err_console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-V", message="dustbin %(version)s")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log progress to stderr")
def cli(verbose: bool) -> None:
    """Dustbin: find the command-line tools you never use."""
    from dustbin.core.logging import configure_logging

    configure_logging("INFO" if verbose else "WARNING")


# ---------------------------------------------------------------------------
# daemon (hidden: started by the service manager)
# ---------------------------------------------------------------------------


@cli.command(hidden=True)
def daemon() -> None:
    """Run the exec tracker in the foreground."""
    from dustbin.cli._daemon import cmd_daemon

    cmd_daemon(console=err_console)


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False)
def status(as_json: bool) -> None:
    """Show what is tracked and whether the daemon is running."""
    from dustbin.cli._status import cmd_status

    cmd_status(as_json=as_json, console=console)


# ---------------------------------------------------------------------------
# deps
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--binary", default="", help="Analyze one binary (path or name on PATH)")
@click.option("--refresh", is_flag=True, default=False, help="Discard cached analysis first")
@click.option("--orphans", is_flag=True, default=False, help="List each orphan's dusty users")
@click.option("--json", "as_json", is_flag=True, default=False)
def deps(binary: str, refresh: bool, orphans: bool, as_json: bool) -> None:
    """Find library packages used only by binaries you never run."""
    from dustbin.cli._deps import cmd_deps

    cmd_deps(
        binary=binary, refresh=refresh, show_users=orphans, as_json=as_json, console=console
    )


# ---------------------------------------------------------------------------
# db
# ---------------------------------------------------------------------------

cli.add_command(db_group)


# ---------------------------------------------------------------------------
# service
# ---------------------------------------------------------------------------


@cli.group()
def service() -> None:
    """Daemon service management (systemd / launchd)."""


@service.command("install")
def service_install() -> None:
    """Install, enable and start the daemon service."""
    from dustbin.cli._daemon import cmd_service_install

    cmd_service_install(console=console)


@service.command("uninstall")
def service_uninstall() -> None:
    """Stop and remove the daemon service."""
    from dustbin.cli._daemon import cmd_service_uninstall

    cmd_service_uninstall(console=console)


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False)
def version(as_json: bool) -> None:
    """Show version information."""
    import platform
    import sqlite3
    import sys as _sys

    from dustbin.core.store.migrations import LATEST_SCHEMA_VERSION

    if as_json:
        import json

        click.echo(
            json.dumps(
                {
                    "dustbin": __version__,
                    "python": _sys.version.split()[0],
                    "platform": _sys.platform,
                    "arch": platform.machine(),
                    "sqlite": sqlite3.sqlite_version,
                    "schema_version": LATEST_SCHEMA_VERSION,
                },
                indent=2,
            )
        )
    else:
        console.print(f"dustbin {__version__}")
        console.print(f"Python {_sys.version.split()[0]}")
        console.print(f"Platform: {_sys.platform} {platform.machine()}")
        console.print(f"SQLite {sqlite3.sqlite_version} (ledger schema v{LATEST_SCHEMA_VERSION})")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
