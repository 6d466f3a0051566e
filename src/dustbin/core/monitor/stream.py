"""
Bounded hand-off between the supervisor's reader task and the daemon loop.

The reader side calls ``put()``; the consumer side calls ``next_event()``
with a timeout so that one wait services both "next exec" and "heartbeat
due". Either side can end the stream: the supervisor calls ``end()`` when it
is stopped, the consumer calls ``close()`` when it goes away, which the
reader notices on its next ``put()``.
"""

from __future__ import annotations

import asyncio

_END = object()


class StreamEnded(Exception):
    """Raised by ``next_event`` once the stream has ended and is drained."""


class EventStream:
    def __init__(self, maxsize: int) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._ended = False
        self._closed = False

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, path: str) -> bool:
        """Queue *path*; returns False once the consumer has gone away."""
        if self._closed or self._ended:
            return False
        await self._queue.put(path)
        return not self._closed

    def end(self) -> None:
        """Producer side: no more events will follow."""
        if self._ended:
            return
        self._ended = True
        try:
            self._queue.put_nowait(_END)
        except asyncio.QueueFull:
            # next_event checks the flag before each wait, so a full queue
            # drains and then raises without the marker.
            pass

    def close(self) -> None:
        """Consumer side: stop accepting events and drop anything queued."""
        self._closed = True
        self.discard_pending()

    def discard_pending(self) -> int:
        dropped = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is not _END:
                dropped += 1
        if self._ended:
            self._queue.put_nowait(_END)
        return dropped

    def pending(self) -> int:
        return self._queue.qsize()

    async def next_event(self, timeout: float | None = None) -> str | None:
        """
        Return the next path, or None if *timeout* seconds pass without one.

        Raises:
            StreamEnded: the producer ended the stream and nothing is left.
        """
        if self._ended and self._queue.empty():
            raise StreamEnded
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            try:
                async with asyncio.timeout(timeout):
                    item = await self._queue.get()
            except TimeoutError:
                return None
        if item is _END:
            # Keep the marker in place for any later caller.
            self._queue.put_nowait(_END)
            raise StreamEnded
        return item  # type: ignore[return-value]

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> str:
        try:
            path = await self.next_event()
        except StreamEnded:
            raise StopAsyncIteration from None
        assert path is not None
        return path
