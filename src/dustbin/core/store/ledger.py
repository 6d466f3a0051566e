"""
Usage ledger.

The ledger is the single source of truth shared by the long-running daemon
(which calls ``record_exec`` once per exec event) and every short-lived CLI
invocation (which calls the reconcile operations and the readers). The two
open the file independently, so every mutation that can race is a single
``INSERT ... ON CONFLICT DO UPDATE`` statement; sqlite serializes the writers.

Usage::

    ledger = Ledger(path)
    ledger.connect()          # creates / migrates the file
    ledger.record_exec("/opt/homebrew/bin/rg", "homebrew")
    ledger.close()
"""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from dustbin.core.constants import SQLITE_BUSY_TIMEOUT_MS, TRACKING_SINCE_KEY
from dustbin.core.exceptions import LedgerError, SchemaVersionError
from dustbin.core.store.migrations import get_user_version, run_migrations
from dustbin.core.store.models import BinaryRecord, DepsAnalysis, DepsStatus, LibPackage

logger = logging.getLogger(__name__)

Classifier = Callable[[str], tuple[str, str]]

_BINARY_COLUMNS = "path, count, first_seen, last_seen, source, package_name"


def _unix_now() -> int:
    return int(time.time())


class Ledger:
    """SQLite-backed store of binary usage, aliases, and dependency caches."""

    def __init__(self, db_path: Path, clock: Callable[[], int] = _unix_now) -> None:
        self.db_path = db_path
        self._clock = clock
        self._db: sqlite3.Connection | None = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the file, upgrade its schema, and stamp tracking-since."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=SQLITE_BUSY_TIMEOUT_MS / 1000,
                isolation_level=None,
                check_same_thread=False,
            )
        except (sqlite3.Error, OSError) as exc:
            raise LedgerError(f"Cannot open ledger {self.db_path}: {exc}") from exc

        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
            conn.execute("PRAGMA journal_mode=WAL")
            run_migrations(conn, self.db_path)
            conn.execute(
                "INSERT OR IGNORE INTO meta (key, value) VALUES (?, ?)",
                (TRACKING_SINCE_KEY, str(self._clock())),
            )
        except SchemaVersionError:
            conn.close()
            raise
        except sqlite3.Error as exc:
            conn.close()
            raise LedgerError(f"Cannot migrate ledger {self.db_path}: {exc}") from exc

        self._db = conn
        logger.debug("Ledger open: %s", self.db_path)

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None

    def __enter__(self) -> Ledger:
        if self._db is None:
            self.connect()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def connected(self) -> bool:
        return self._db is not None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._db is None:
            raise LedgerError("Ledger is not connected; call connect() first")
        return self._db

    @property
    def schema_version(self) -> int:
        return get_user_version(self.conn)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction; nested use joins the outer one."""
        conn = self.conn
        if conn.in_transaction:
            yield conn
            return
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Usage writes
    # ------------------------------------------------------------------

    def record_exec(self, path: str, source_hint: str | None = None) -> None:
        """
        Count one execution of *path*.

        A path present in the alias table is credited to its canonical path.
        Unknown paths are created with count=1; registered-but-unused ones get
        their first_seen stamped on this first exec.
        """
        now = self._clock()
        self.conn.execute(
            """
            INSERT INTO binaries (path, count, first_seen, last_seen, source)
            VALUES (
                COALESCE(
                    (SELECT canonical_path FROM path_aliases WHERE alias_path = :path),
                    :path),
                1, :now, :now, :source)
            ON CONFLICT(path) DO UPDATE SET
                count = binaries.count + 1,
                first_seen = COALESCE(binaries.first_seen, excluded.first_seen),
                last_seen = MAX(
                    excluded.last_seen,
                    COALESCE(binaries.last_seen, excluded.last_seen),
                    COALESCE(binaries.first_seen, excluded.last_seen)),
                source = COALESCE(binaries.source, excluded.source)
            """,
            {"path": path, "now": now, "source": source_hint},
        )

    def register_binary(self, path: str, package_name: str | None, source: str | None) -> None:
        """Ensure *path* is tracked; only fills provenance that is still unset."""
        self.conn.execute(
            """
            INSERT INTO binaries (path, count, source, package_name)
            VALUES (?, 0, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                source = COALESCE(binaries.source, excluded.source),
                package_name = COALESCE(binaries.package_name, excluded.package_name)
            """,
            (path, source, package_name),
        )

    def register_alias(self, alias_path: str, canonical_path: str) -> None:
        if alias_path == canonical_path:
            return
        self.conn.execute(
            "INSERT OR REPLACE INTO path_aliases (alias_path, canonical_path) VALUES (?, ?)",
            (alias_path, canonical_path),
        )

    def replace_aliases(self, aliases: Iterable[tuple[str, str]]) -> int:
        """Swap the whole alias table in one transaction; returns rows written."""
        rows = [(a, c) for a, c in aliases if a != c]
        with self.transaction() as conn:
            conn.execute("DELETE FROM path_aliases")
            conn.executemany(
                "INSERT OR REPLACE INTO path_aliases (alias_path, canonical_path) VALUES (?, ?)",
                rows,
            )
        return len(rows)

    def prune_missing(self, exists: Callable[[str], bool] = os.path.exists) -> int:
        """Delete records whose file is gone, with their aliases and dependency rows."""
        paths = [row[0] for row in self.conn.execute("SELECT path FROM binaries")]
        missing = [(p,) for p in paths if not exists(p)]
        if not missing:
            return 0

        with self.transaction() as conn:
            removed = conn.executemany("DELETE FROM binaries WHERE path = ?", missing).rowcount
            conn.execute(
                "DELETE FROM path_aliases WHERE canonical_path NOT IN (SELECT path FROM binaries)"
            )
            conn.execute(
                "DELETE FROM dylib_deps WHERE binary_path NOT IN (SELECT path FROM binaries)"
            )
            conn.execute(
                "DELETE FROM deps_analysis WHERE binary_path NOT IN (SELECT path FROM binaries)"
            )
        logger.info("Pruned %d missing binaries", removed)
        return removed

    def backfill_uncategorized(self, classify: Classifier) -> int:
        """Fill source/package_name for records that have no package yet."""
        paths = [
            row[0]
            for row in self.conn.execute("SELECT path FROM binaries WHERE package_name IS NULL")
        ]
        if not paths:
            return 0
        updates = []
        for path in paths:
            source, package_name = classify(path)
            updates.append((source, package_name, path))
        with self.transaction() as conn:
            conn.executemany(
                """
                UPDATE binaries SET
                    source = COALESCE(source, ?),
                    package_name = COALESCE(package_name, ?)
                WHERE path = ?
                """,
                updates,
            )
        return len(updates)

    # ------------------------------------------------------------------
    # Usage reads
    # ------------------------------------------------------------------

    def list_binaries(self) -> list[BinaryRecord]:
        rows = self.conn.execute(
            f"SELECT {_BINARY_COLUMNS} FROM binaries ORDER BY count DESC, path"  # noqa: S608
        ).fetchall()
        return [BinaryRecord.from_row(r) for r in rows]

    def get_binary(self, path: str) -> BinaryRecord | None:
        row = self.conn.execute(
            f"SELECT {_BINARY_COLUMNS} FROM binaries WHERE path = ?",  # noqa: S608
            (path,),
        ).fetchone()
        return BinaryRecord.from_row(row) if row else None

    def binary_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM binaries").fetchone()[0]

    def dusty_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM binaries WHERE count = 0").fetchone()[0]

    def tracking_since(self) -> int | None:
        row = self.conn.execute(
            "SELECT value FROM meta WHERE key = ?", (TRACKING_SINCE_KEY,)
        ).fetchone()
        if row is None:
            return None
        try:
            return int(row[0])
        except (TypeError, ValueError):
            return None

    def list_aliases(self) -> dict[str, str]:
        rows = self.conn.execute("SELECT alias_path, canonical_path FROM path_aliases").fetchall()
        return {r["alias_path"]: r["canonical_path"] for r in rows}

    def table_counts(self) -> dict[str, int]:
        counts = {}
        for table in (
            "binaries",
            "path_aliases",
            "dylib_deps",
            "lib_packages",
            "deps_analysis",
        ):
            counts[table] = self.conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]  # noqa: S608
        return counts

    # ------------------------------------------------------------------
    # Dependency cache
    # ------------------------------------------------------------------

    def store_dylib_deps(self, binary_path: str, lib_paths: Iterable[str]) -> None:
        """Replace the dependency edges of one binary with *lib_paths*."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM dylib_deps WHERE binary_path = ?", (binary_path,))
            conn.executemany(
                "INSERT OR IGNORE INTO dylib_deps (binary_path, lib_path) VALUES (?, ?)",
                [(binary_path, lib) for lib in lib_paths],
            )

    def mark_deps_analyzed(
        self, binary_path: str, binary_mtime: int | None, status: DepsStatus
    ) -> None:
        self.conn.execute(
            """
            INSERT OR REPLACE INTO deps_analysis (binary_path, analyzed_at, binary_mtime, status)
            VALUES (?, ?, ?, ?)
            """,
            (binary_path, self._clock(), binary_mtime, status.value),
        )

    def store_analysis(
        self,
        binary_path: str,
        lib_paths: Iterable[str],
        binary_mtime: int | None,
        status: DepsStatus,
    ) -> None:
        """Edges and analysis meta for one binary, committed together."""
        with self.transaction():
            self.store_dylib_deps(binary_path, lib_paths)
            self.mark_deps_analyzed(binary_path, binary_mtime, status)

    def get_deps_analysis(self, binary_path: str) -> DepsAnalysis | None:
        row = self.conn.execute(
            """
            SELECT binary_path, analyzed_at, binary_mtime, status
            FROM deps_analysis WHERE binary_path = ?
            """,
            (binary_path,),
        ).fetchone()
        if row is None:
            return None
        return DepsAnalysis(
            binary_path=row["binary_path"],
            analyzed_at=row["analyzed_at"],
            binary_mtime=row["binary_mtime"],
            status=DepsStatus(row["status"]),
        )

    def libs_for_binary(self, binary_path: str) -> list[str]:
        rows = self.conn.execute(
            "SELECT lib_path FROM dylib_deps WHERE binary_path = ? ORDER BY lib_path",
            (binary_path,),
        ).fetchall()
        return [r[0] for r in rows]

    def unresolved_libs(self) -> list[str]:
        rows = self.conn.execute(
            """
            SELECT DISTINCT lib_path FROM dylib_deps
            WHERE lib_path NOT IN (SELECT lib_path FROM lib_packages)
            ORDER BY lib_path
            """
        ).fetchall()
        return [r[0] for r in rows]

    def store_lib_packages(self, resolved: Iterable[LibPackage]) -> int:
        rows = [(p.lib_path, p.manager, p.package_name) for p in resolved]
        with self.transaction() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO lib_packages (lib_path, manager, package_name)
                VALUES (?, ?, ?)
                """,
                rows,
            )
        return len(rows)

    def lib_packages(self) -> dict[str, LibPackage]:
        rows = self.conn.execute(
            "SELECT lib_path, manager, package_name FROM lib_packages"
        ).fetchall()
        return {
            r["lib_path"]: LibPackage(r["lib_path"], r["manager"], r["package_name"]) for r in rows
        }

    def package_users(self) -> dict[tuple[str, str], set[str]]:
        """(manager, package) -> binaries depending on any of its library files."""
        rows = self.conn.execute(
            """
            SELECT lp.manager, lp.package_name, d.binary_path
            FROM dylib_deps d
            JOIN lib_packages lp ON lp.lib_path = d.lib_path
            """
        ).fetchall()
        users: dict[tuple[str, str], set[str]] = {}
        for r in rows:
            users.setdefault((r["manager"], r["package_name"]), set()).add(r["binary_path"])
        return users

    def clear_all_deps(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM dylib_deps")
            conn.execute("DELETE FROM lib_packages")
            conn.execute("DELETE FROM deps_analysis")
        logger.info("Cleared dependency caches")
