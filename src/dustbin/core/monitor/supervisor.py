"""
Monitor supervisor.

Owns the event source's child process for the daemon's lifetime:

  - spawns it and forwards each parsed path into an ``EventStream``
  - counts malformed lines instead of failing (``take_parse_errors``)
  - restarts it after any exit or spawn failure, with a delay that starts at
    ``initial_backoff`` and doubles to ``max_backoff``
  - on ``stop()``: SIGTERM, a bounded grace period, then SIGKILL

The backoff returns to its initial value only after a stable run, meaning
the child forwarded at least one event or stayed up for ``stable_after``
seconds. A child that dies straight after spawning keeps escalating.

Lifecycle::

    supervisor = MonitorSupervisor(FatraceSource())
    stream = supervisor.start()
    async for path in stream:
        ...
    await supervisor.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable

from dustbin.core.constants import (
    EVENT_QUEUE_SIZE,
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    STABLE_RUN_SECONDS,
    STOP_GRACE_SECONDS,
)
from dustbin.core.exceptions import MonitorError
from dustbin.core.monitor.stream import EventStream
from dustbin.os.monitor.base import EventSource

logger = logging.getLogger(__name__)

# eslogger documents can exceed asyncio's 64 KiB default line limit
_READ_LIMIT = 1024 * 1024


class MonitorSupervisor:
    def __init__(
        self,
        source: EventSource,
        *,
        queue_size: int = EVENT_QUEUE_SIZE,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
        max_backoff: float = MAX_BACKOFF_SECONDS,
        grace_period: float = STOP_GRACE_SECONDS,
        stable_after: float = STABLE_RUN_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._queue_size = queue_size
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._grace_period = grace_period
        self._stable_after = stable_after
        self._sleep = sleep
        self._clock = clock

        self._stream: EventStream | None = None
        self._task: asyncio.Task[None] | None = None
        self._proc: asyncio.subprocess.Process | None = None
        self._stopping = False
        self._parse_errors = 0
        self._spawn_count = 0

    @property
    def spawn_count(self) -> int:
        """Number of spawn attempts so far, failed ones included."""
        return self._spawn_count

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def take_parse_errors(self) -> int:
        """Return the malformed-line count since the previous call and reset it."""
        count, self._parse_errors = self._parse_errors, 0
        return count

    def start(self) -> EventStream:
        """Start supervising; must be called from inside a running event loop."""
        if self._task is not None:
            raise MonitorError("Monitor supervisor already started")
        self._stream = EventStream(self._queue_size)
        self._task = asyncio.create_task(self._run(), name=f"monitor:{self._source.name}")
        return self._stream

    async def stop(self) -> None:
        """Terminate the child and end the stream; idempotent."""
        self._stopping = True
        proc = self._proc
        if proc is not None:
            await self._terminate(proc)
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        if self._stream is not None:
            self._stream.discard_pending()
            self._stream.end()

    # ------------------------------------------------------------------
    # Supervision loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        assert self._stream is not None
        stream = self._stream
        backoff = self._initial_backoff
        cmd = self._source.command()

        try:
            while not self._stopping:
                self._spawn_count += 1
                started = self._clock()
                forwarded = 0

                try:
                    proc = await asyncio.create_subprocess_exec(  # nosec B603
                        *cmd,
                        stdin=asyncio.subprocess.DEVNULL,
                        stdout=asyncio.subprocess.PIPE,
                        stderr=asyncio.subprocess.PIPE,
                        limit=_READ_LIMIT,
                    )
                except OSError as exc:
                    logger.error("%s spawn failed: %s", self._source.name, exc)
                    hint = self._source.setup_hint()
                    if hint and self._spawn_count == 1:
                        logger.error(hint)
                else:
                    self._proc = proc
                    logger.info("%s started (pid %d)", self._source.name, proc.pid)
                    stderr_task = asyncio.create_task(self._log_stderr(proc))
                    try:
                        forwarded, consumer_gone = await self._pump(proc, stream)
                        if consumer_gone:
                            logger.warning("Event consumer went away; stopping %s", self._source.name)
                            self._stopping = True
                            await self._terminate(proc)
                            break
                        returncode = await proc.wait()
                    finally:
                        stderr_task.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await stderr_task
                        self._proc = None

                    if self._stopping:
                        break
                    logger.warning(
                        "%s exited (status %s) after forwarding %d event(s)",
                        self._source.name,
                        returncode,
                        forwarded,
                    )

                if self._stopping:
                    break
                if forwarded > 0 or self._clock() - started >= self._stable_after:
                    backoff = self._initial_backoff
                delay = backoff
                logger.info("Restarting %s in %.0fs", self._source.name, delay)
                await self._sleep(delay)
                backoff = min(backoff * 2, self._max_backoff)
        finally:
            if self._proc is not None and self._proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    self._proc.kill()
            stream.end()

    async def _pump(self, proc: asyncio.subprocess.Process, stream: EventStream) -> tuple[int, bool]:
        """Forward parsed lines until EOF. Returns (forwarded, consumer_gone)."""
        assert proc.stdout is not None
        forwarded = 0
        while True:
            try:
                raw = await proc.stdout.readline()
            except ValueError:
                # line longer than the read limit; the reader skips past it
                self._parse_errors += 1
                continue
            if not raw:
                return forwarded, False
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            try:
                path = self._source.parse_line(line)
            except ValueError as exc:
                self._parse_errors += 1
                logger.debug("Unparseable %s line: %s", self._source.name, exc)
                continue
            if path is None:
                continue
            if not await stream.put(path):
                return forwarded, True
            forwarded += 1

    async def _log_stderr(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stderr is not None
        while True:
            try:
                raw = await proc.stderr.readline()
            except ValueError:
                continue
            if not raw:
                return
            logger.warning("[%s stderr] %s", self._source.name, raw.decode(errors="replace").rstrip())

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._grace_period)
        except asyncio.TimeoutError:
            logger.warning(
                "%s (pid %d) still running %.0fs after SIGTERM; killing",
                self._source.name,
                proc.pid,
                self._grace_period,
            )
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
