"""
Orphan detector.

A library package is an orphan when every tracked binary linking against
one of its files is dusty (never executed). Packages nothing links against
are not orphans; neither is a package with at least one active user.
"""

from __future__ import annotations

import logging

from dustbin.core.deps.graph import DependencyGraphBuilder, Progress
from dustbin.core.deps.models import DepsReport, OrphanPackage, RefreshStats
from dustbin.core.store.ledger import Ledger
from dustbin.os.deps.base import DylibIntrospector

logger = logging.getLogger(__name__)


def find_orphans(ledger: Ledger, introspector: DylibIntrospector) -> list[OrphanPackage]:
    """Orphan packages, largest known size first; unknown sizes sort as zero."""
    counts = {record.path: record.count for record in ledger.list_binaries()}
    orphans: list[OrphanPackage] = []

    for (manager, package), users in ledger.package_users().items():
        tracked = [u for u in users if u in counts]
        if not tracked or any(counts[u] > 0 for u in tracked):
            continue
        orphans.append(
            OrphanPackage(
                manager=manager,
                package_name=package,
                size_bytes=introspector.package_size(manager, package),
                dusty_users=sorted(tracked),
            )
        )

    orphans.sort(key=lambda o: (-o.sort_size, o.manager, o.package_name))
    return orphans


def build_report(
    ledger: Ledger,
    orphans: list[OrphanPackage],
    refresh: RefreshStats | None = None,
) -> DepsReport:
    return DepsReport(
        binaries_analyzed=ledger.table_counts()["deps_analysis"],
        total_lib_packages=len(ledger.package_users()),
        orphan_packages=orphans,
        total_freeable_bytes=sum(o.size_bytes for o in orphans if o.size_bytes is not None),
        unknown_size_count=sum(1 for o in orphans if o.size_bytes is None),
        refresh=refresh or RefreshStats(),
    )


def analyze_deps(
    ledger: Ledger,
    introspector: DylibIntrospector,
    refresh: bool = False,
    progress: Progress | None = None,
    max_workers: int = 1,
) -> DepsReport:
    """Bring the dependency cache up to date, then compute the orphan report."""
    builder = DependencyGraphBuilder(ledger, introspector, max_workers=max_workers)
    stats = builder.refresh(force=refresh, progress=progress)
    orphans = find_orphans(ledger, introspector)
    report = build_report(ledger, orphans, stats)
    logger.info(
        "%d orphan package(s), %d bytes freeable (%d with unknown size)",
        len(orphans),
        report.total_freeable_bytes,
        report.unknown_size_count,
    )
    return report
