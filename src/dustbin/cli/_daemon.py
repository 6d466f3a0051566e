"""dustbin daemon / service: run the tracker and manage its service unit."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sqlite3
import sys

from rich.console import Console

from dustbin.core.constants import ExitCode
from dustbin.core.exceptions import ConfigError, DustbinError, LedgerError, PlatformError

logger = logging.getLogger(__name__)


def cmd_daemon(console: Console) -> None:
    from dustbin.core.config import load_config
    from dustbin.core.daemon.manager import DaemonManager
    from dustbin.core.logging import configure_logging
    from dustbin.os.platform import select_backends

    try:
        config = load_config()
    except ConfigError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)

    configure_logging(config.logging.level, config.logging.format)

    try:
        backends = select_backends()
        manager = DaemonManager(config, backends.event_source)
        code = asyncio.run(manager.start())
    except LedgerError as exc:
        logger.error("Ledger error: %s", exc)
        sys.exit(ExitCode.LEDGER_ERROR)
    except PlatformError as exc:
        logger.error("%s", exc)
        sys.exit(ExitCode.ENV_ERROR)
    except (DustbinError, sqlite3.Error) as exc:
        logger.error("Daemon failed: %s", exc)
        sys.exit(ExitCode.ERROR)
    sys.exit(code)


def _exec_path() -> str:
    found = shutil.which("dustbin")
    if found:
        return os.path.realpath(found)
    return os.path.realpath(sys.argv[0])


def cmd_service_install(console: Console) -> None:
    from dustbin.os.platform import select_backends

    exec_path = _exec_path()
    try:
        service = select_backends().service
        unit_path = service.install(exec_path)
    except PlatformError as exc:
        console.print(f"[red]Service install failed:[/red] {exc}")
        sys.exit(ExitCode.ENV_ERROR)
    except OSError as exc:
        console.print(f"[red]Service install failed:[/red] {exc}")
        sys.exit(ExitCode.PERMISSION_ERROR)

    console.print(f"[green]Installed[/green] {service.name} service: {unit_path}")
    console.print(f"  Runs: {exec_path} daemon")
    hint = select_backends().event_source.setup_hint()
    if hint:
        console.print(f"\n[dim]{hint}[/dim]")


def cmd_service_uninstall(console: Console) -> None:
    from dustbin.os.platform import select_backends

    try:
        service = select_backends().service
        removed = service.uninstall()
    except PlatformError as exc:
        console.print(f"[red]Service uninstall failed:[/red] {exc}")
        sys.exit(ExitCode.ENV_ERROR)

    if removed:
        console.print(f"[green]Removed[/green] {service.name} service.")
    else:
        console.print("Service is not installed.")
