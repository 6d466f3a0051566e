"""Row types returned by the ledger."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath


@dataclass(frozen=True)
class BinaryRecord:
    path: str
    count: int = 0
    first_seen: int | None = None
    last_seen: int | None = None
    source: str | None = None
    package_name: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> BinaryRecord:
        return cls(
            path=row["path"],
            count=row["count"],
            first_seen=row["first_seen"],
            last_seen=row["last_seen"],
            source=row["source"],
            package_name=row["package_name"],
        )

    @property
    def name(self) -> str:
        return PurePath(self.path).name

    @property
    def is_dusty(self) -> bool:
        return self.count == 0


class DepsStatus(str, Enum):
    """Outcome of the last dependency introspection of a binary."""

    UNKNOWN = "unknown"  # introspection failed; the empty set means nothing
    NONE = "none"  # analyzed, no dynamic dependencies
    SOME = "some"


@dataclass(frozen=True)
class DepsAnalysis:
    binary_path: str
    analyzed_at: int
    binary_mtime: int | None
    status: DepsStatus


@dataclass(frozen=True)
class LibPackage:
    lib_path: str
    manager: str
    package_name: str
