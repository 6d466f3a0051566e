"""Unit tests for dustbin.core.monitor.supervisor.MonitorSupervisor."""

from __future__ import annotations

import asyncio
import itertools
import sys

import pytest

from dustbin.core.exceptions import MonitorError
from dustbin.core.monitor.stream import StreamEnded
from dustbin.core.monitor.supervisor import MonitorSupervisor
from dustbin.os.monitor.base import EventSource

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class ScriptSource(EventSource):
    """Runs a Python one-liner; lines starting with ``/`` are exec paths."""

    name = "script"

    def __init__(self, code: str) -> None:
        self.code = code

    def command(self) -> list[str]:
        return [sys.executable, "-c", self.code]

    def parse_line(self, line: str) -> str | None:
        if line == "skip":
            return None
        if not line.startswith("/"):
            raise ValueError(line)
        return line


class MissingSource(ScriptSource):
    def __init__(self) -> None:
        super().__init__("")

    def command(self) -> list[str]:
        return ["/nonexistent/dustbin-test-monitor"]

    def setup_hint(self) -> str:
        return "install the monitor"


class RecordingSleep:
    """Records requested delays; parks forever once *limit* delays were seen."""

    def __init__(self, limit: int) -> None:
        self.delays: list[float] = []
        self.limit = limit
        self.reached = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) >= self.limit:
            self.reached.set()
            await asyncio.Event().wait()


_EXIT_AT_ONCE = "import sys; sys.exit(3)"
_PRINT_THEN_HANG = "import time; print('/opt/x/bin/y', flush=True); time.sleep(60)"


def _frozen_clock() -> float:
    return 0.0


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------


class TestBackoff:
    @pytest.mark.asyncio
    async def test_immediate_exits_escalate(self) -> None:
        sleep = RecordingSleep(limit=3)
        sup = MonitorSupervisor(ScriptSource(_EXIT_AT_ONCE), sleep=sleep, clock=_frozen_clock)
        sup.start()
        await asyncio.wait_for(sleep.reached.wait(), timeout=30)
        await sup.stop()

        assert sleep.delays == [2.0, 4.0, 8.0]
        assert sup.spawn_count == 3

    @pytest.mark.asyncio
    async def test_spawn_failures_cap_at_max(self) -> None:
        sleep = RecordingSleep(limit=7)
        sup = MonitorSupervisor(MissingSource(), sleep=sleep, clock=_frozen_clock)
        stream = sup.start()
        await asyncio.wait_for(sleep.reached.wait(), timeout=30)
        await sup.stop()

        assert sleep.delays == [2.0, 4.0, 8.0, 16.0, 32.0, 60.0, 60.0]
        with pytest.raises(StreamEnded):
            await stream.next_event(timeout=0.1)

    @pytest.mark.asyncio
    async def test_long_uptime_resets_backoff(self) -> None:
        ticks = itertools.count(step=100)
        sleep = RecordingSleep(limit=3)
        sup = MonitorSupervisor(
            ScriptSource(_EXIT_AT_ONCE), sleep=sleep, clock=lambda: float(next(ticks))
        )
        sup.start()
        await asyncio.wait_for(sleep.reached.wait(), timeout=30)
        await sup.stop()
        assert sleep.delays == [2.0, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_forwarding_resets_backoff(self) -> None:
        sleep = RecordingSleep(limit=3)
        sup = MonitorSupervisor(
            ScriptSource("print('/opt/x/bin/y')"), sleep=sleep, clock=_frozen_clock
        )
        stream = sup.start()
        await asyncio.wait_for(sleep.reached.wait(), timeout=30)
        assert stream.pending() == 3
        await sup.stop()
        assert sleep.delays == [2.0, 2.0, 2.0]


# ---------------------------------------------------------------------------
# Forwarding
# ---------------------------------------------------------------------------


class TestForwarding:
    @pytest.mark.asyncio
    async def test_forwards_paths_and_counts_bad_lines(self) -> None:
        code = "print('/a'); print('garbage'); print('skip'); print(''); print('/b')"
        sleep = RecordingSleep(limit=1)
        sup = MonitorSupervisor(ScriptSource(code), sleep=sleep, clock=_frozen_clock)
        stream = sup.start()

        assert await asyncio.wait_for(stream.next_event(), timeout=10) == "/a"
        assert await asyncio.wait_for(stream.next_event(), timeout=10) == "/b"
        await asyncio.wait_for(sleep.reached.wait(), timeout=10)
        assert sup.take_parse_errors() == 1
        assert sup.take_parse_errors() == 0
        await sup.stop()

    @pytest.mark.asyncio
    async def test_consumer_gone_stops_child(self) -> None:
        code = "import time\nwhile True:\n    print('/x', flush=True)\n    time.sleep(0.01)"
        sup = MonitorSupervisor(ScriptSource(code), grace_period=2)
        stream = sup.start()
        stream.close()

        for _ in range(500):
            if not sup.running:
                break
            await asyncio.sleep(0.01)
        assert not sup.running
        assert sup.spawn_count == 1
        assert stream.ended
        await sup.stop()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_twice_raises(self) -> None:
        sup = MonitorSupervisor(ScriptSource(_PRINT_THEN_HANG))
        sup.start()
        try:
            with pytest.raises(MonitorError):
                sup.start()
        finally:
            await sup.stop()

    @pytest.mark.asyncio
    async def test_stop_terminates_child_and_ends_stream(self) -> None:
        sup = MonitorSupervisor(ScriptSource(_PRINT_THEN_HANG), grace_period=2)
        stream = sup.start()
        assert await asyncio.wait_for(stream.next_event(), timeout=10) == "/opt/x/bin/y"

        await asyncio.wait_for(sup.stop(), timeout=10)

        assert not sup.running
        assert sup.spawn_count == 1
        with pytest.raises(StreamEnded):
            await stream.next_event(timeout=0.1)

    @pytest.mark.asyncio
    async def test_stop_kills_child_ignoring_sigterm(self) -> None:
        code = (
            "import signal, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "print('/ready', flush=True)\n"
            "time.sleep(60)"
        )
        sup = MonitorSupervisor(ScriptSource(code), grace_period=0.2)
        stream = sup.start()
        assert await asyncio.wait_for(stream.next_event(), timeout=10) == "/ready"

        await asyncio.wait_for(sup.stop(), timeout=10)
        assert not sup.running

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self) -> None:
        sup = MonitorSupervisor(ScriptSource(_PRINT_THEN_HANG), grace_period=2)
        sup.start()
        await sup.stop()
        await sup.stop()
        assert not sup.running

    @pytest.mark.asyncio
    async def test_stop_before_start(self) -> None:
        await MonitorSupervisor(ScriptSource(_PRINT_THEN_HANG)).stop()
