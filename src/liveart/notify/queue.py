from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

from liveart.utils.types import Transformation


@dataclass(slots=True)
class QueueStats:
    enq_ok: int = 0
    enq_drop: int = 0
    deq_ok: int = 0


class ChannelClosed(Exception):
    """Raised by NotifyQueue.get() once the channel is closed and drained."""


_CLOSED = object()


class NotifyQueue:
    """
    Bounded, non-blocking outbound channel for one subscriber.
    - try_put(tr) drops on full and increments a counter (hot path never blocks)
    - get() awaits like a normal queue; raises ChannelClosed after close()
    - async iteration yields until the channel is closed
    """
    def __init__(self, maxsize: int = 1000):
        self._q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.stats = QueueStats()
        self.closed = False
        self._cancel: Optional[Callable[[], None]] = None
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    def bind(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel

    def try_put(self, tr: Transformation) -> bool:
        if self.closed:
            return False
        if self._loop is not None and not self._on_loop():
            # producer on another thread; hop onto the consumer's loop
            self._loop.call_soon_threadsafe(self._put, tr)
            return True
        return self._put(tr)

    def _on_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _put(self, tr: Transformation) -> bool:
        try:
            self._q.put_nowait(tr)
            self.stats.enq_ok += 1
            return True
        except asyncio.QueueFull:
            self.stats.enq_drop += 1
            return False

    async def get(self) -> Transformation:
        if self.closed and self._q.empty():
            raise ChannelClosed()
        item = await self._q.get()
        if item is _CLOSED:
            raise ChannelClosed()
        self.stats.deq_ok += 1
        return item

    def close(self) -> None:
        """Stop receiving. Pending items stay readable, then get() raises."""
        if self.closed:
            return
        self.closed = True
        if self._cancel is not None:
            self._cancel()
            self._cancel = None
        try:
            self._q.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    def qsize(self) -> int:
        return self._q.qsize()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Transformation:
        try:
            return await self.get()
        except ChannelClosed:
            raise StopAsyncIteration from None
