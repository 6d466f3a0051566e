"""
Daemon manager.

The DaemonManager runs one daemon process lifetime:
  - Connects to the ledger
  - Starts the monitor supervisor for the platform event source
  - Records every exec event that is not filtered out
  - Logs an hourly heartbeat with the period's counters
  - Handles graceful shutdown on SIGTERM/SIGINT

The daemon is a long-running asyncio process started by ``dustbin daemon``
and managed by launchd (macOS) or systemd (Linux).

PID file: <data dir>/dustbin.pid
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sqlite3
from dataclasses import dataclass

from dustbin.core.config import DustbinConfig
from dustbin.core.constants import ExitCode
from dustbin.core.monitor.stream import EventStream, StreamEnded
from dustbin.core.monitor.supervisor import MonitorSupervisor
from dustbin.core.store.ledger import Ledger
from dustbin.os.monitor.base import EventSource

logger = logging.getLogger(__name__)


@dataclass
class PeriodStats:
    recorded: int = 0
    skipped: int = 0
    errors: int = 0


class DaemonManager:
    """
    Top-level orchestrator for the Dustbin daemon.

    Lifecycle::

        manager = DaemonManager(config, FatraceSource())
        code = await manager.start()    # blocks until shutdown
    """

    def __init__(
        self,
        config: DustbinConfig,
        source: EventSource,
        ledger: Ledger | None = None,
        supervisor: MonitorSupervisor | None = None,
    ) -> None:
        self._config = config
        self._ledger = ledger
        self._supervisor = supervisor or MonitorSupervisor(
            source,
            queue_size=config.monitor.queue_size,
            initial_backoff=config.monitor.initial_backoff_seconds,
            max_backoff=config.monitor.max_backoff_seconds,
            grace_period=config.monitor.grace_period_seconds,
        )
        self._shutdown_event = asyncio.Event()
        self._stop_task: asyncio.Task[None] | None = None
        self.total_recorded = 0

    async def start(self) -> ExitCode:
        """Run until shutdown; returns the process exit code."""
        sources = ", ".join(s.name for s in self._config.sources) or "none"
        logger.info("Dustbin daemon starting (db: %s, sources: %s)", self._config.db_path, sources)
        self._write_pid_file()

        try:
            self._init_ledger()
            stream = self._supervisor.start()
            self._setup_signal_handlers()
            logger.info("Listening for exec events")
            return await self._run_loop(stream)
        finally:
            await self._cleanup()
            self._remove_pid_file()
            logger.info("Dustbin daemon stopped (total recorded: %d)", self.total_recorded)

    async def stop(self) -> None:
        """Request graceful shutdown."""
        if self._shutdown_event.is_set():
            return
        logger.info("Shutdown requested")
        self._shutdown_event.set()
        await self._supervisor.stop()

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def _init_ledger(self) -> None:
        if self._ledger is None:
            self._ledger = Ledger(self._config.db_path)
        if not self._ledger.connected:
            self._ledger.connect()
        logger.info("Ledger connected: %s", self._ledger.db_path)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def _run_loop(self, stream: EventStream) -> ExitCode:
        """One wait per iteration: the next event or the heartbeat deadline."""
        loop = asyncio.get_running_loop()
        interval = self._config.monitor.heartbeat_seconds
        stats = PeriodStats()
        next_heartbeat = loop.time() + interval

        while True:
            timeout = max(0.0, next_heartbeat - loop.time())
            try:
                path = await stream.next_event(timeout)
            except StreamEnded:
                if self._shutdown_event.is_set():
                    return ExitCode.SUCCESS
                logger.error(
                    "Monitor disconnected, shutting down (total recorded: %d)",
                    self.total_recorded,
                )
                return ExitCode.ERROR

            if path is not None:
                self._handle_event(path, stats)

            if loop.time() >= next_heartbeat:
                self._heartbeat(stats)
                stats = PeriodStats()
                next_heartbeat = loop.time() + interval

    def _handle_event(self, path: str, stats: PeriodStats) -> None:
        if self._config.should_skip_exec(path):
            stats.skipped += 1
            return
        assert self._ledger is not None
        try:
            self._ledger.record_exec(path, self._config.categorize_path(path))
        except sqlite3.Error as exc:
            stats.errors += 1
            logger.error("Error recording %s: %s", path, exc)
            return
        stats.recorded += 1
        self.total_recorded += 1

    def _heartbeat(self, stats: PeriodStats) -> None:
        logger.info(
            "heartbeat: %d recorded, %d skipped, %d parse errors, %d write errors this period "
            "(total: %d)",
            stats.recorded,
            stats.skipped,
            self._supervisor.take_parse_errors(),
            stats.errors,
            self.total_recorded,
        )

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._on_signal, sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s", sig.name)
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self.stop())

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    # ------------------------------------------------------------------
    # PID file
    # ------------------------------------------------------------------

    def _write_pid_file(self) -> None:
        pid_file = self._config.pid_path
        pid_file.parent.mkdir(parents=True, exist_ok=True)
        pid_file.write_text(str(os.getpid()))

    def _remove_pid_file(self) -> None:
        self._config.pid_path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def _cleanup(self) -> None:
        self._shutdown_event.set()
        await self._supervisor.stop()
        if self._stop_task is not None:
            await self._stop_task
        self._remove_signal_handlers()
        if self._ledger:
            self._ledger.close()
