from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Callable, Literal, Optional, Sequence

import structlog

from liveart.errors import FeedError, FeedUnavailable, UnknownFeed
from liveart.feeds.interface import CancelFn, FeedSource
from liveart.utils.types import FeedValue

FeedHandler = Callable[[FeedValue], None]
FeedHealth = Literal["ok", "degraded", "unknown"]

log = structlog.get_logger("feed_registry")


@dataclass(slots=True)
class _FeedEntry:
    source: FeedSource
    refs: int = 0
    cancel: Optional[CancelFn] = None
    latest: Optional[FeedValue] = None
    health: FeedHealth = "unknown"
    handlers: list[tuple[int, FeedHandler]] = field(default_factory=list)


class FeedRegistry:
    """
    Owns the live subscriptions: exactly one per distinct feed_id, shared by
    every asset that references it (reference counted).

    - latest(feed_id) never blocks; None until a first value arrives.
    - Handlers run on the delivering task, in registration order. They must be
      fast; an exception in one is logged and the rest still run.

    An explicit instance, never a module global, so separate engines (tests)
    never share subscriptions.
    """

    def __init__(self, sources: Sequence[FeedSource]):
        if not sources:
            raise ValueError("FeedRegistry needs at least one FeedSource")
        self.sources: list[FeedSource] = list(sources)
        self._feeds: dict[str, _FeedEntry] = {}
        self._lock = threading.Lock()      # guards _feeds, _sub_locks and entry fields
        self._sub_locks: dict[str, asyncio.Lock] = {}   # per-feed subscribe/release handshakes
        self._next_handler_id = 0

    # --------------------------- subscriptions ------------------------- #

    def source_for(self, feed_id: str) -> FeedSource:
        for src in self.sources:
            if src.serves(feed_id):
                return src
        raise UnknownFeed(feed_id, "no source serves this feed")

    def _sub_lock(self, feed_id: str) -> asyncio.Lock:
        # one handshake at a time per feed; a slow snapshot never blocks other feeds
        with self._lock:
            lock = self._sub_locks.get(feed_id)
            if lock is None:
                lock = self._sub_locks[feed_id] = asyncio.Lock()
            return lock

    async def ensure_subscription(self, feed_id: str) -> None:
        """
        Take one reference on `feed_id`, subscribing upstream on the first one.

        The cold-start snapshot seeds latest(); UnknownFeed is raised to the
        caller, FeedUnavailable is tolerated (values arrive once it recovers).
        """
        async with self._sub_lock(feed_id):
            with self._lock:
                entry = self._feeds.get(feed_id)
                if entry is not None and entry.refs > 0:
                    entry.refs += 1
                    return

            src = self.source_for(feed_id)
            entry = _FeedEntry(source=src)

            try:
                snap = await src.snapshot(feed_id)
            except FeedUnavailable as e:
                log.warning("snapshot_unavailable", feed_id=feed_id, err=str(e))
                snap = None

            cancel = await src.subscribe(
                feed_id,
                lambda v, fid=feed_id: self._deliver(fid, v),
                lambda err, fid=feed_id: self._on_feed_error(fid, err),
            )

            with self._lock:
                # handlers registered before the first reference are kept
                prev = self._feeds.get(feed_id)
                if prev is not None:
                    entry.handlers = prev.handlers
                    entry.latest = prev.latest
                entry.refs = 1
                entry.cancel = cancel
                self._feeds[feed_id] = entry
            if snap is not None:
                self._deliver(feed_id, snap)
            log.info("feed_subscribed", feed_id=feed_id, source=getattr(src, "name", type(src).__name__))

    async def release(self, feed_id: str) -> None:
        """
        Drop one reference; the last one cancels the upstream subscription.

        Handlers registered for a pending ensure_subscription() survive: the
        entry stays as a placeholder, without a value, until they are removed
        or the feed is subscribed again.
        """
        async with self._sub_lock(feed_id):
            with self._lock:
                entry = self._feeds.get(feed_id)
                if entry is None or entry.refs <= 0:
                    return
                entry.refs -= 1
                if entry.refs > 0:
                    return
                cancel, entry.cancel = entry.cancel, None
                if entry.handlers:
                    entry.latest = None
                    entry.health = "unknown"
                else:
                    del self._feeds[feed_id]
            if cancel is not None:
                cancel()
            log.info("feed_released", feed_id=feed_id)

    def refcount(self, feed_id: str) -> int:
        with self._lock:
            entry = self._feeds.get(feed_id)
            return entry.refs if entry is not None else 0

    def active_feeds(self) -> list[str]:
        with self._lock:
            return [fid for fid, e in self._feeds.items() if e.refs > 0]

    # ------------------------------ reads ------------------------------ #

    def latest(self, feed_id: str) -> Optional[FeedValue]:
        with self._lock:
            entry = self._feeds.get(feed_id)
            return entry.latest if entry is not None else None

    def health(self, feed_id: str) -> FeedHealth:
        with self._lock:
            entry = self._feeds.get(feed_id)
            return entry.health if entry is not None else "unknown"

    # ----------------------------- handlers ---------------------------- #

    def on_update(self, feed_id: str, handler: FeedHandler) -> Callable[[], None]:
        """
        Register `handler` for every value of `feed_id`. Returns a remover.
        Registering does not take a subscription reference.
        """
        with self._lock:
            entry = self._feeds.get(feed_id)
            if entry is None:
                # placeholder until ensure_subscription() fills in the source
                entry = _FeedEntry(source=self.source_for(feed_id))
                self._feeds[feed_id] = entry
            hid = self._next_handler_id
            self._next_handler_id += 1
            entry.handlers.append((hid, handler))

        def remove() -> None:
            with self._lock:
                e = self._feeds.get(feed_id)
                if e is None:
                    return
                e.handlers = [(i, h) for i, h in e.handlers if i != hid]
                if e.refs <= 0 and not e.handlers:
                    del self._feeds[feed_id]

        return remove

    # ----------------------------- delivery ---------------------------- #

    def _deliver(self, feed_id: str, value: FeedValue) -> None:
        with self._lock:
            entry = self._feeds.get(feed_id)
            if entry is None or entry.refs <= 0:
                return
            if entry.latest is None or value.observed_at >= entry.latest.observed_at:
                entry.latest = value
            if entry.health != "ok":
                if entry.health == "degraded":
                    log.info("feed_recovered", feed_id=feed_id)
                entry.health = "ok"
            handlers = [h for _, h in entry.handlers]

        for h in handlers:
            try:
                h(value)
            except Exception:
                log.exception("feed_handler_failed", feed_id=feed_id)

    def _on_feed_error(self, feed_id: str, err: FeedError) -> None:
        with self._lock:
            entry = self._feeds.get(feed_id)
            if entry is None:
                return
            entry.health = "degraded"
        log.warning("feed_degraded", feed_id=feed_id, err=str(err))
