"""Feed source contract and the queued dispatch base every adapter builds on."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import structlog

from liveart.errors import FeedError, FeedUnavailable, UnknownFeed
from liveart.utils.types import FeedValue

FeedCallback = Callable[[FeedValue], None]
ErrorCallback = Callable[[FeedError], None]
CancelFn = Callable[[], None]


class FeedSource(ABC):
    """Contract for external numeric feed providers.

    Lifecycle:
        source = HermesFeedSource(cfg)
        await source.start()
        value = await source.snapshot(feed_id)          # works without a subscription
        cancel = await source.subscribe(feed_id, on_value, on_error)
        ...
        cancel()                                         # only way to stop interest
        await source.stop()

    Per feed_id, callbacks see values in the source's observation order.
    No ordering is promised across different feed ids.
    """

    @abstractmethod
    async def start(self) -> None:
        """Start background work (connections, dispatch). Call once."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop background work. Safe to call multiple times."""

    @abstractmethod
    def serves(self, feed_id: str) -> bool:
        """Whether this source can, in principle, provide `feed_id`."""

    @abstractmethod
    async def snapshot(self, feed_id: str) -> FeedValue:
        """Latest value for `feed_id`.

        Raises FeedUnavailable (transient, retry later) or UnknownFeed (permanent).
        """

    @abstractmethod
    async def subscribe(
        self,
        feed_id: str,
        callback: FeedCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> CancelFn:
        """Deliver every new value for `feed_id` to `callback` until cancelled.

        `on_error` hears about a prolonged outage (FeedUnavailable) once per
        outage; delivery resumes on its own when the upstream recovers.
        """


@dataclass(slots=True)
class _Subscriber:
    callback: FeedCallback
    on_error: Optional[ErrorCallback] = None
    active: bool = True


class QueuedFeedSource(FeedSource):
    """
    Channel-based delivery shared by all adapters.

    Producers (websocket loop, simulator step, manual push) put FeedValues on
    one bounded inbound queue; a single dispatch task drains it and calls the
    subscribers of each value's feed in subscription order. On overflow the
    oldest queued value is dropped, since a newer observation supersedes it.
    """

    name = "feed"

    def __init__(self, *, queue_maxsize: int = 10_000):
        self.q_values: asyncio.Queue = asyncio.Queue(maxsize=queue_maxsize)
        self._subs: dict[str, list[_Subscriber]] = {}
        self._dispatch_task: Optional[asyncio.Task] = None
        self._log = structlog.get_logger(self.name)
        self.dropped: int = 0

    # ---------------------------- lifecycle ---------------------------- #

    async def start(self) -> None:
        if self._dispatch_task is None or self._dispatch_task.done():
            self._dispatch_task = asyncio.create_task(
                self._dispatch_loop(), name=f"{self.name}-dispatch"
            )

    async def stop(self) -> None:
        task, self._dispatch_task = self._dispatch_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def drain(self) -> None:
        """Wait until every value enqueued so far has been dispatched."""
        await self.q_values.join()

    # --------------------------- subscriptions ------------------------- #

    def normalize(self, feed_id: str) -> str:
        return feed_id

    async def subscribe(
        self,
        feed_id: str,
        callback: FeedCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> CancelFn:
        fid = self.normalize(feed_id)
        if not self.serves(fid):
            raise UnknownFeed(feed_id, f"not served by {self.name}")

        sub = _Subscriber(callback=callback, on_error=on_error)
        subs = self._subs.setdefault(fid, [])
        first = not subs
        subs.append(sub)
        if first:
            try:
                await self._on_first_subscriber(fid)
            except BaseException:
                self._detach(fid, sub)
                raise

        def cancel() -> None:
            if not sub.active:
                return
            self._detach(fid, sub)

        return cancel

    def _detach(self, fid: str, sub: _Subscriber) -> None:
        sub.active = False
        subs = self._subs.get(fid)
        if not subs:
            return
        if sub in subs:
            subs.remove(sub)
        if not subs:
            del self._subs[fid]
            self._on_last_unsubscribed(fid)

    def subscribed_feeds(self) -> list[str]:
        return list(self._subs)

    def is_subscribed(self, feed_id: str) -> bool:
        return bool(self._subs.get(self.normalize(feed_id)))

    async def _on_first_subscriber(self, feed_id: str) -> None:
        """Hook: upstream handshake for a newly watched feed (may await I/O)."""

    def _on_last_unsubscribed(self, feed_id: str) -> None:
        """Hook: upstream no longer needs `feed_id`. Must not block."""

    # ----------------------------- delivery ---------------------------- #

    def _enqueue(self, value: FeedValue) -> None:
        try:
            self.q_values.put_nowait(value)
            return
        except asyncio.QueueFull:
            pass
        try:
            stale = self.q_values.get_nowait()
            self.q_values.task_done()
            self.dropped += 1
            self._log.info("values_queue_full_drop_oldest", feed_id=stale.feed_id)
        except asyncio.QueueEmpty:
            pass
        self.q_values.put_nowait(value)

    async def _dispatch_loop(self) -> None:
        try:
            while True:
                value = await self.q_values.get()
                try:
                    self._dispatch(value)
                finally:
                    self.q_values.task_done()
        except asyncio.CancelledError:
            return

    def _dispatch(self, value: FeedValue) -> None:
        for sub in list(self._subs.get(value.feed_id, ())):
            if not sub.active:
                continue
            try:
                sub.callback(value)
            except Exception as e:
                self._log.warning("subscriber_callback_failed", feed_id=value.feed_id, err=str(e))

    def _report_unavailable(self, feed_ids: Optional[Iterable[str]] = None, reason: str = "") -> None:
        """Tell subscribers (once per outage, caller's responsibility) that feeds are down."""
        targets = list(feed_ids) if feed_ids is not None else list(self._subs)
        for fid in targets:
            for sub in list(self._subs.get(fid, ())):
                if not sub.active or sub.on_error is None:
                    continue
                try:
                    sub.on_error(FeedUnavailable(fid, reason))
                except Exception as e:
                    self._log.warning("subscriber_on_error_failed", feed_id=fid, err=str(e))
