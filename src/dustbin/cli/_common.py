"""Helpers shared by the CLI command modules."""

from __future__ import annotations

import sqlite3
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from rich.console import Console

from dustbin.core.config import DustbinConfig, load_config
from dustbin.core.constants import ExitCode
from dustbin.core.exceptions import ConfigError, LedgerError
from dustbin.core.reconcile import sync
from dustbin.core.store.ledger import Ledger


def load_config_or_exit(console: Console) -> DustbinConfig:
    try:
        return load_config()
    except ConfigError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(ExitCode.CONFIG_ERROR)


@contextmanager
def open_ledger(config: DustbinConfig, console: Console, run_sync: bool = True) -> Iterator[Ledger]:
    """Connected ledger, reconciled against the filesystem unless *run_sync* is False."""
    ledger = Ledger(config.db_path)
    try:
        ledger.connect()
    except LedgerError as exc:
        console.print(f"[red]Ledger error:[/red] {exc}")
        sys.exit(ExitCode.LEDGER_ERROR)
    try:
        if run_sync:
            try:
                sync(ledger, config)
            except sqlite3.Error as exc:
                console.print(f"[red]Ledger error:[/red] sync failed: {exc}")
                sys.exit(ExitCode.LEDGER_ERROR)
        yield ledger
    finally:
        ledger.close()


def format_size(size: int | None) -> str:
    if size is None:
        return "unknown"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


def format_timestamp(ts: int | None) -> str:
    if ts is None:
        return "never"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")
