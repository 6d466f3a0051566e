"""
Dependency graph builder.

Fills the ledger's dependency cache: ``dylib_deps`` edges per binary,
``deps_analysis`` meta (mtime at analysis, tri-state status) and the
permanent ``lib_packages`` ownership cache.

A binary is re-introspected only when its modification time differs from
the one recorded at its last analysis. Introspection may run on a thread
pool; every ledger write stays on the calling thread.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor

from dustbin.core.deps.models import Introspection, RefreshStats, ResolvedLib, SingleBinaryDeps
from dustbin.core.store.ledger import Ledger
from dustbin.core.store.models import DepsStatus
from dustbin.os.deps.base import DylibIntrospector

logger = logging.getLogger(__name__)

Progress = Callable[[int, int], None]


def file_mtime(path: str) -> int | None:
    try:
        return os.stat(path).st_mtime_ns
    except OSError:
        return None


class DependencyGraphBuilder:
    def __init__(
        self,
        ledger: Ledger,
        introspector: DylibIntrospector,
        max_workers: int = 1,
        mtime: Callable[[str], int | None] = file_mtime,
    ) -> None:
        self._ledger = ledger
        self._introspector = introspector
        self._max_workers = max(1, max_workers)
        self._mtime = mtime

    def analyze(self, binary_path: str) -> set[str]:
        """Direct dependencies of *binary_path*; never raises for tool failures."""
        return self._introspector.analyze(binary_path)

    def needs_analysis(self, binary_path: str, mtime: int | None) -> bool:
        meta = self._ledger.get_deps_analysis(binary_path)
        if meta is None or mtime is None:
            return True
        return meta.binary_mtime != mtime

    # ------------------------------------------------------------------
    # Full refresh
    # ------------------------------------------------------------------

    def refresh(self, force: bool = False, progress: Progress | None = None) -> RefreshStats:
        """Analyze every tracked binary whose mtime changed (all of them with *force*)."""
        stats = RefreshStats()
        if force:
            self._ledger.clear_all_deps()

        pending: list[tuple[str, int | None]] = []
        for record in self._ledger.list_binaries():
            mtime = self._mtime(record.path)
            if self.needs_analysis(record.path, mtime):
                pending.append((record.path, mtime))
            else:
                stats.cached += 1

        total = len(pending)
        for done, (path, mtime, result) in enumerate(self._introspect_all(pending), start=1):
            self._ledger.store_analysis(path, result.libs, mtime, result.status)
            stats.analyzed += 1
            if result.status is DepsStatus.UNKNOWN:
                stats.failed += 1
            if progress is not None:
                progress(done, total)

        stats.libs_resolved = self.resolve_pending()
        logger.info(
            "Dependency refresh: %d analyzed (%d failed), %d cached, %d libraries resolved",
            stats.analyzed,
            stats.failed,
            stats.cached,
            stats.libs_resolved,
        )
        return stats

    def _introspect_all(
        self, pending: list[tuple[str, int | None]]
    ) -> Iterator[tuple[str, int | None, Introspection]]:
        if self._max_workers == 1 or len(pending) < 2:
            for path, mtime in pending:
                yield path, mtime, self._introspector.introspect(path)
            return
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            results = pool.map(self._introspector.introspect, [p for p, _ in pending])
            for (path, mtime), result in zip(pending, results):
                yield path, mtime, result

    def resolve_pending(self) -> int:
        """Query owners for libraries not yet in the ownership cache."""
        unresolved = self._ledger.unresolved_libs()
        if not unresolved:
            return 0
        resolved = self._introspector.resolve_lib_packages(unresolved)
        stored = self._ledger.store_lib_packages(resolved)
        if stored < len(unresolved):
            logger.debug("%d libraries left unresolved", len(unresolved) - stored)
        return stored

    # ------------------------------------------------------------------
    # Single binary
    # ------------------------------------------------------------------

    def analyze_binary(self, binary_path: str) -> SingleBinaryDeps:
        """Re-introspect one binary unconditionally and report its resolved libraries."""
        result: Introspection = self._introspector.introspect(binary_path)
        self._ledger.store_analysis(
            binary_path, result.libs, self._mtime(binary_path), result.status
        )
        self.resolve_pending()

        owners = self._ledger.lib_packages()
        libs = []
        for lib in sorted(result.libs):
            owner = owners.get(lib)
            if owner is None:
                libs.append(ResolvedLib(lib))
            else:
                libs.append(ResolvedLib(lib, owner.manager, owner.package_name))
        return SingleBinaryDeps(binary_path, result.status, libs)
