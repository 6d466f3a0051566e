"""Result types for dependency analysis and orphan detection."""

from __future__ import annotations

from dataclasses import dataclass, field

from dustbin.core.store.models import DepsStatus


@dataclass(frozen=True)
class Introspection:
    """Direct dynamic dependencies of one binary, as reported by the platform tool."""

    status: DepsStatus
    libs: frozenset[str] = frozenset()

    @classmethod
    def failed(cls) -> Introspection:
        return cls(DepsStatus.UNKNOWN)

    @classmethod
    def of(cls, libs: set[str] | frozenset[str]) -> Introspection:
        return cls(DepsStatus.SOME if libs else DepsStatus.NONE, frozenset(libs))


@dataclass(frozen=True)
class ResolvedLib:
    lib_path: str
    manager: str | None = None
    package_name: str | None = None

    @property
    def resolved(self) -> bool:
        return self.package_name is not None


@dataclass(frozen=True)
class SingleBinaryDeps:
    binary_path: str
    status: DepsStatus
    libs: list[ResolvedLib] = field(default_factory=list)


@dataclass(frozen=True)
class OrphanPackage:
    manager: str
    package_name: str
    size_bytes: int | None  # None: size lookup failed
    dusty_users: list[str] = field(default_factory=list)

    @property
    def sort_size(self) -> int:
        return self.size_bytes or 0


@dataclass
class RefreshStats:
    analyzed: int = 0
    cached: int = 0
    failed: int = 0
    libs_resolved: int = 0


@dataclass
class DepsReport:
    binaries_analyzed: int
    total_lib_packages: int
    orphan_packages: list[OrphanPackage]
    total_freeable_bytes: int
    unknown_size_count: int
    refresh: RefreshStats = field(default_factory=RefreshStats)
