"""Unit tests for dustbin.core.reconcile.sync."""

from __future__ import annotations

from pathlib import Path

from dustbin.core.config import DustbinConfig
from dustbin.core.reconcile import sync
from dustbin.core.scanner import ScannedBinary
from dustbin.core.store.ledger import Ledger


def _fixed_scan(*binaries: ScannedBinary):
    def scan(config: DustbinConfig) -> list[ScannedBinary]:
        return list(binaries)

    return scan


def _touch(path: Path) -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("")
    return str(path)


class TestSync:
    def test_registers_scanned_binaries(self, ledger: Ledger, tmp_path: Path) -> None:
        path = _touch(tmp_path / "opt" / "x" / "bin" / "y")
        result = sync(ledger, DustbinConfig(), _fixed_scan(ScannedBinary(path, "x", "opt")))

        assert result.scanned == 1
        r = ledger.get_binary(path)
        assert (r.count, r.package_name, r.source) == (0, "x", "opt")

    def test_symlinks_become_aliases(self, ledger: Ledger, tmp_path: Path) -> None:
        path = _touch(tmp_path / "bin" / "rg")
        target = "/cellar/ripgrep/bin/rg"
        result = sync(
            ledger,
            DustbinConfig(),
            _fixed_scan(ScannedBinary(path, "ripgrep", "homebrew", symlink_target=target)),
        )

        assert result.aliases == 1
        ledger.record_exec(target)
        assert ledger.get_binary(path).count == 1

    def test_stale_aliases_replaced(self, ledger: Ledger, tmp_path: Path) -> None:
        path = _touch(tmp_path / "bin" / "rg")
        ledger.register_alias("/old/target", path)
        sync(
            ledger,
            DustbinConfig(),
            _fixed_scan(ScannedBinary(path, "rg", "x", symlink_target="/new/target")),
        )
        assert ledger.list_aliases() == {"/new/target": path}

    def test_prunes_deleted_binaries(self, ledger: Ledger, tmp_path: Path) -> None:
        ledger.record_exec(str(tmp_path / "gone"))
        result = sync(ledger, DustbinConfig(), _fixed_scan())
        assert result.pruned == 1
        assert ledger.binary_count() == 0

    def test_usage_survives_sync(self, ledger: Ledger, tmp_path: Path) -> None:
        path = _touch(tmp_path / "bin" / "tool")
        for _ in range(3):
            ledger.record_exec(path)
        sync(ledger, DustbinConfig(), _fixed_scan(ScannedBinary(path, "tool", "local")))
        r = ledger.get_binary(path)
        assert r.count == 3
        assert r.package_name == "tool"

    def test_backfills_daemon_created_rows(self, ledger: Ledger, tmp_path: Path) -> None:
        path = _touch(tmp_path / "unscanned" / "tool")
        ledger.record_exec(path, "other")
        result = sync(ledger, DustbinConfig(), _fixed_scan())
        assert result.backfilled == 1
        assert ledger.get_binary(path).package_name == "tool"
