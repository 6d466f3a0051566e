"""
Ledger schema migrations.

Every step is self-guarding: it inspects the current shape and only changes
what is missing, so the whole list runs on every open. ``PRAGMA user_version``
records the newest layout written, which lets an older build refuse a ledger
written by a newer one instead of silently misreading it.

Steps run inside one ``BEGIN IMMEDIATE`` transaction, so a daemon and a CLI
opening the same file at the same moment migrate one after the other.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path

from dustbin.core.exceptions import SchemaVersionError

logger = logging.getLogger(__name__)

MigrationStep = Callable[[sqlite3.Connection], None]


def get_user_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def _column_names(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _add_column(conn: sqlite3.Connection, table: str, column: str, ddl: str) -> None:
    if column not in _column_names(conn, table):
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


def _create_core_tables(conn: sqlite3.Connection) -> None:
    """Usage table in its original shape, plus the key/value meta table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS binaries (
            path        TEXT PRIMARY KEY,
            count       INTEGER NOT NULL DEFAULT 0,
            first_seen  INTEGER,
            last_seen   INTEGER
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS meta (
            key    TEXT PRIMARY KEY,
            value  TEXT
        )
        """
    )


def _add_provenance_columns(conn: sqlite3.Connection) -> None:
    _add_column(conn, "binaries", "source", "TEXT")
    _add_column(conn, "binaries", "package_name", "TEXT")


def _fold_legacy_packages(conn: sqlite3.Connection) -> None:
    """Move rows out of the superseded ``packages`` table, then drop it."""
    if not _table_exists(conn, "packages"):
        return
    if {"manager", "name", "binary_path"} <= _column_names(conn, "packages"):
        conn.execute(
            """
            INSERT OR IGNORE INTO binaries (path, count)
            SELECT DISTINCT binary_path, 0 FROM packages
            """
        )
        conn.execute(
            """
            UPDATE binaries SET
                source = COALESCE(source, (
                    SELECT p.manager FROM packages p
                    WHERE p.binary_path = binaries.path LIMIT 1)),
                package_name = COALESCE(package_name, (
                    SELECT p.name FROM packages p
                    WHERE p.binary_path = binaries.path LIMIT 1))
            WHERE path IN (SELECT binary_path FROM packages)
            """
        )
    conn.execute("DROP TABLE packages")
    logger.info("Migrated legacy packages table into binaries")


def _create_alias_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS path_aliases (
            alias_path      TEXT PRIMARY KEY,
            canonical_path  TEXT NOT NULL
        )
        """
    )


def _create_deps_tables(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS dylib_deps (
            binary_path  TEXT NOT NULL,
            lib_path     TEXT NOT NULL,
            PRIMARY KEY (binary_path, lib_path)
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_dylib_deps_lib ON dylib_deps(lib_path)")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS lib_packages (
            lib_path      TEXT PRIMARY KEY,
            manager       TEXT NOT NULL,
            package_name  TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS deps_analysis (
            binary_path   TEXT PRIMARY KEY,
            analyzed_at   INTEGER NOT NULL,
            binary_mtime  INTEGER
        )
        """
    )


def _add_deps_status_column(conn: sqlite3.Connection) -> None:
    # Rows analyzed before the column existed cannot tell failure from "no deps".
    _add_column(conn, "deps_analysis", "status", "TEXT NOT NULL DEFAULT 'unknown'")


def _normalize_usage_rows(conn: sqlite3.Connection) -> None:
    """Restore count/timestamp consistency on rows written by older builds."""
    conn.execute("UPDATE binaries SET count = 0 WHERE count IS NULL OR count < 0")
    conn.execute(
        """
        UPDATE binaries SET first_seen = NULL, last_seen = NULL
        WHERE count = 0 AND (first_seen IS NOT NULL OR last_seen IS NOT NULL)
        """
    )
    conn.execute(
        """
        UPDATE binaries SET
            first_seen = COALESCE(first_seen, last_seen),
            last_seen = COALESCE(last_seen, first_seen)
        WHERE count > 0 AND (first_seen IS NULL OR last_seen IS NULL)
        """
    )
    conn.execute(
        "UPDATE binaries SET last_seen = first_seen WHERE count > 0 AND last_seen < first_seen"
    )


MIGRATIONS: tuple[tuple[str, MigrationStep], ...] = (
    ("create core tables", _create_core_tables),
    ("add provenance columns", _add_provenance_columns),
    ("fold legacy packages table", _fold_legacy_packages),
    ("create alias table", _create_alias_table),
    ("create dependency tables", _create_deps_tables),
    ("add dependency status column", _add_deps_status_column),
    ("normalize usage rows", _normalize_usage_rows),
)

LATEST_SCHEMA_VERSION = len(MIGRATIONS)


def run_migrations(conn: sqlite3.Connection, db_path: Path) -> None:
    """Bring the ledger at *db_path* up to ``LATEST_SCHEMA_VERSION``."""
    if conn.in_transaction:
        conn.commit()

    conn.execute("BEGIN IMMEDIATE")
    try:
        current = get_user_version(conn)
        if current > LATEST_SCHEMA_VERSION:
            raise SchemaVersionError(
                f"Ledger {db_path} is at schema v{current}; "
                f"this build only supports up to v{LATEST_SCHEMA_VERSION}"
            )
        for name, step in MIGRATIONS:
            logger.debug("Migration step: %s", name)
            step(conn)
        if current != LATEST_SCHEMA_VERSION:
            conn.execute(f"PRAGMA user_version = {LATEST_SCHEMA_VERSION}")
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise

    if current != LATEST_SCHEMA_VERSION:
        logger.info(
            "Ledger %s upgraded: v%d -> v%d", db_path, current, LATEST_SCHEMA_VERSION
        )
