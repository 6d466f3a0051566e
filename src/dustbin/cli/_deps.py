"""dustbin deps: dependency analysis and orphan libraries."""

from __future__ import annotations

import json
import os
import shutil
import sys
from dataclasses import asdict

import click
from rich.console import Console
from rich.progress import Progress
from rich.table import Table

from dustbin.cli._common import format_size, load_config_or_exit, open_ledger
from dustbin.core.constants import ExitCode
from dustbin.core.exceptions import PlatformError


def cmd_deps(
    binary: str, refresh: bool, show_users: bool, as_json: bool, console: Console
) -> None:
    from dustbin.os.platform import select_backends

    config = load_config_or_exit(console)
    try:
        backends = select_backends()
    except PlatformError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(ExitCode.ENV_ERROR)

    introspector = backends.introspector
    if not introspector.available():
        console.print(f"[red]{introspector.name} not found[/red]; cannot analyze dependencies.")
        sys.exit(ExitCode.DEPENDENCY_MISSING)

    with open_ledger(config, console) as ledger:
        if binary:
            _single_binary(ledger, introspector, binary, as_json, console)
            return

        from dustbin.core.deps.orphans import analyze_deps

        if as_json:
            report = analyze_deps(
                ledger, introspector, refresh=refresh, max_workers=config.deps.max_workers
            )
        else:
            with Progress(console=console, transient=True) as progress:
                task = progress.add_task("Analyzing binaries", total=None)

                def advance(done: int, total: int) -> None:
                    progress.update(task, completed=done, total=total)

                report = analyze_deps(
                    ledger,
                    introspector,
                    refresh=refresh,
                    progress=advance,
                    max_workers=config.deps.max_workers,
                )

    if as_json:
        click.echo(json.dumps(asdict(report), indent=2))
        return

    console.print(
        f"[bold]Dependencies[/bold]: {report.binaries_analyzed} binaries analyzed, "
        f"{report.total_lib_packages} library packages in use"
    )
    if not report.orphan_packages:
        console.print("[green]No orphaned library packages.[/green]")
        return

    table = Table(title="Orphaned library packages", show_edge=False)
    table.add_column("Manager", style="dim")
    table.add_column("Package", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Dusty users", justify="right")
    for orphan in report.orphan_packages:
        users = (
            "\n".join(orphan.dusty_users) if show_users else str(len(orphan.dusty_users))
        )
        table.add_row(orphan.manager, orphan.package_name, format_size(orphan.size_bytes), users)
    console.print(table)

    total = f"Total freeable: [bold]{format_size(report.total_freeable_bytes)}[/bold]"
    if report.unknown_size_count:
        total += f" (+{report.unknown_size_count} package(s) of unknown size)"
    console.print(total)


def _single_binary(ledger, introspector, binary: str, as_json: bool, console: Console) -> None:
    from dustbin.core.deps.graph import DependencyGraphBuilder

    path = binary if os.sep in binary else shutil.which(binary)
    if not path or not os.path.exists(path):
        console.print(f"[red]Binary not found:[/red] {binary}")
        sys.exit(ExitCode.ERROR)
    path = os.path.abspath(path)

    result = DependencyGraphBuilder(ledger, introspector).analyze_binary(path)

    if as_json:
        click.echo(json.dumps(asdict(result), indent=2))
        return

    console.print(f"[bold]{result.binary_path}[/bold] ({result.status.value})")
    if not result.libs:
        if result.status.value == "unknown":
            console.print("[yellow]Could not determine dependencies.[/yellow]")
        else:
            console.print("No dynamic library dependencies.")
        return
    for lib in result.libs:
        owner = f"{lib.manager}:{lib.package_name}" if lib.resolved else "[dim]unresolved[/dim]"
        console.print(f"  {lib.lib_path}  {owner}")
