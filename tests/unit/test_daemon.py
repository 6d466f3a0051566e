"""Unit tests for dustbin.core.daemon.manager.DaemonManager."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sqlite3
import sys
from pathlib import Path

import pytest

from dustbin.core.config import DustbinConfig
from dustbin.core.constants import ExitCode
from dustbin.core.daemon.manager import DaemonManager
from dustbin.core.monitor.stream import EventStream
from dustbin.core.store.ledger import Ledger
from dustbin.os.monitor.base import EventSource

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class NullSource(EventSource):
    name = "null"

    def command(self) -> list[str]:
        return ["true"]

    def parse_line(self, line: str) -> str | None:
        return line


class FakeSupervisor:
    """Hands the daemon a stream the test feeds directly."""

    def __init__(self) -> None:
        self.stream = EventStream(64)
        self.stopped = False
        self.parse_errors = 0

    def start(self) -> EventStream:
        return self.stream

    async def stop(self) -> None:
        self.stopped = True
        self.stream.end()

    def take_parse_errors(self) -> int:
        count, self.parse_errors = self.parse_errors, 0
        return count


class FailingLedger(Ledger):
    def record_exec(self, path: str, source_hint: str | None = None) -> None:
        if path.endswith("/locked"):
            raise sqlite3.OperationalError("database is locked")
        super().record_exec(path, source_hint)


def _config(tmp_path: Path, **monitor) -> DustbinConfig:
    return DustbinConfig.model_validate(
        {
            "sources": [{"name": "opt", "path": "/opt"}],
            "database": {"path": str(tmp_path / "daemon.db")},
            "scan": {"skip_prefixes": ["/usr/libexec/"]},
            "monitor": monitor,
        }
    )


def _counts(db_path: Path) -> dict[str, tuple[int, str | None]]:
    with Ledger(db_path) as led:
        return {r.path: (r.count, r.source) for r in led.list_binaries()}


async def _wait_for(predicate, timeout: float = 10.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


# ---------------------------------------------------------------------------
# Event handling
# ---------------------------------------------------------------------------


class TestRecording:
    @pytest.mark.asyncio
    async def test_monitor_disconnect_exits_with_error(self, tmp_path: Path) -> None:
        cfg = _config(tmp_path)
        sup = FakeSupervisor()
        for path in ("/opt/x/bin/y", "/opt/x/bin/y", "/bin/sh", "/usr/libexec/helper"):
            await sup.stream.put(path)
        sup.stream.end()

        code = await DaemonManager(cfg, NullSource(), supervisor=sup).start()

        assert code == ExitCode.ERROR
        assert _counts(cfg.db_path) == {"/opt/x/bin/y": (2, "opt")}
        assert not cfg.pid_path.exists()

    @pytest.mark.asyncio
    async def test_graceful_stop(self, tmp_path: Path) -> None:
        cfg = _config(tmp_path)
        sup = FakeSupervisor()
        manager = DaemonManager(cfg, NullSource(), supervisor=sup)
        task = asyncio.create_task(manager.start())

        await sup.stream.put("/opt/a/bin/a")
        await _wait_for(lambda: manager.total_recorded == 1)
        assert cfg.pid_path.exists()

        await manager.stop()
        assert await asyncio.wait_for(task, timeout=10) == ExitCode.SUCCESS
        assert sup.stopped
        assert not cfg.pid_path.exists()

    @pytest.mark.asyncio
    async def test_sigterm_stops_daemon(self, tmp_path: Path) -> None:
        cfg = _config(tmp_path)
        sup = FakeSupervisor()
        manager = DaemonManager(cfg, NullSource(), supervisor=sup)
        task = asyncio.create_task(manager.start())
        await _wait_for(cfg.pid_path.exists)
        await asyncio.sleep(0.05)

        os.kill(os.getpid(), signal.SIGTERM)

        assert await asyncio.wait_for(task, timeout=10) == ExitCode.SUCCESS
        assert sup.stopped
        assert manager._stop_task is not None and manager._stop_task.done()

    @pytest.mark.asyncio
    async def test_write_errors_do_not_stop_daemon(self, tmp_path: Path) -> None:
        cfg = _config(tmp_path)
        sup = FakeSupervisor()
        for path in ("/opt/a/locked", "/opt/a/bin/a"):
            await sup.stream.put(path)
        sup.stream.end()

        manager = DaemonManager(cfg, NullSource(), ledger=FailingLedger(cfg.db_path), supervisor=sup)
        await manager.start()

        assert manager.total_recorded == 1
        assert _counts(cfg.db_path) == {"/opt/a/bin/a": (1, "opt")}

    @pytest.mark.asyncio
    async def test_heartbeat_logged(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.INFO, logger="dustbin")
        cfg = _config(tmp_path, heartbeat_seconds=0.05)
        sup = FakeSupervisor()
        sup.parse_errors = 3
        manager = DaemonManager(cfg, NullSource(), supervisor=sup)
        task = asyncio.create_task(manager.start())

        await sup.stream.put("/opt/a/bin/a")
        await _wait_for(lambda: any("heartbeat" in r.getMessage() for r in caplog.records))
        await manager.stop()
        await asyncio.wait_for(task, timeout=10)

        beats = [r.getMessage() for r in caplog.records if "heartbeat" in r.getMessage()]
        assert "1 recorded" in beats[0]
        assert "3 parse errors" in beats[0]


# ---------------------------------------------------------------------------
# With a real supervisor
# ---------------------------------------------------------------------------


class PrintingSource(EventSource):
    name = "printing"

    def command(self) -> list[str]:
        code = (
            "import time\n"
            "print('/opt/tool/bin/tool', flush=True)\n"
            "print('/opt/tool/bin/tool', flush=True)\n"
            "time.sleep(60)"
        )
        return [sys.executable, "-c", code]

    def parse_line(self, line: str) -> str | None:
        return line


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_child_events_reach_ledger(self, tmp_path: Path) -> None:
        cfg = _config(tmp_path, grace_period_seconds=2)
        manager = DaemonManager(cfg, PrintingSource())
        task = asyncio.create_task(manager.start())

        await _wait_for(lambda: manager.total_recorded == 2)
        await manager.stop()

        assert await asyncio.wait_for(task, timeout=10) == ExitCode.SUCCESS
        assert _counts(cfg.db_path) == {"/opt/tool/bin/tool": (2, "opt")}
