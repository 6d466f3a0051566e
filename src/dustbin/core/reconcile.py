"""
Reconciler: keep the ledger aligned with what is installed.

``sync`` runs at the start of every CLI command (except ``daemon``, ``db``
and ``version``). It is the only place records are added for binaries that
have never run and removed for binaries that are gone.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from dustbin.core.config import DustbinConfig
from dustbin.core.scanner import ScannedBinary, classify_path, scan_binaries
from dustbin.core.store.ledger import Ledger

logger = logging.getLogger(__name__)

Scan = Callable[[DustbinConfig], list[ScannedBinary]]


@dataclass(frozen=True)
class SyncResult:
    scanned: int
    aliases: int
    pruned: int
    backfilled: int


def sync(ledger: Ledger, config: DustbinConfig, scan: Scan = scan_binaries) -> SyncResult:
    """Scan, register, alias, prune, backfill; in that order."""
    binaries = scan(config)

    with ledger.transaction():
        for binary in binaries:
            ledger.register_binary(binary.path, binary.package_name, binary.source)

    aliases = ledger.replace_aliases(
        (b.symlink_target, b.path) for b in binaries if b.symlink_target
    )
    pruned = ledger.prune_missing()
    backfilled = ledger.backfill_uncategorized(lambda path: classify_path(config, path))

    result = SyncResult(
        scanned=len(binaries), aliases=aliases, pruned=pruned, backfilled=backfilled
    )
    logger.debug("Sync: %s", result)
    return result
