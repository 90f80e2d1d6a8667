from __future__ import annotations

import math
from typing import Iterable, Optional

from liveart.errors import FeedUnavailable, UnknownFeed
from liveart.feeds.interface import QueuedFeedSource
from liveart.utils.time import utc_now_s
from liveart.utils.types import FeedValue


class ManualFeedSource(QueuedFeedSource):
    """
    Feed source driven by explicit push() calls: creator previews, replay, tests.

    With strict=True only declared feeds are served; anything else is an
    UnknownFeed, mirroring how a real provider rejects bad ids.
    """

    name = "manual_feed"

    def __init__(self, feeds: Iterable[str] = (), *, strict: bool = True, queue_maxsize: int = 10_000):
        super().__init__(queue_maxsize=queue_maxsize)
        self.strict = strict
        self._declared: set[str] = set(feeds)
        self._last: dict[str, FeedValue] = {}

    def declare(self, feed_id: str) -> None:
        self._declared.add(feed_id)

    def serves(self, feed_id: str) -> bool:
        return (not self.strict) or feed_id in self._declared

    async def snapshot(self, feed_id: str) -> FeedValue:
        if not self.serves(feed_id):
            raise UnknownFeed(feed_id)
        v = self._last.get(feed_id)
        if v is None:
            raise FeedUnavailable(feed_id, "no value pushed yet")
        return v

    def push(
        self,
        feed_id: str,
        value: float,
        observed_at: Optional[float] = None,
        confidence: Optional[float] = None,
    ) -> FeedValue:
        if not self.serves(feed_id):
            raise UnknownFeed(feed_id)
        if not math.isfinite(value):
            raise ValueError(f"non-finite feed value: {value!r}")
        fv = FeedValue(
            feed_id=feed_id,
            value=float(value),
            observed_at=float(observed_at) if observed_at is not None else utc_now_s(),
            confidence=confidence,
        )
        prev = self._last.get(feed_id)
        if prev is None or fv.observed_at >= prev.observed_at:
            self._last[feed_id] = fv
        self._enqueue(fv)
        return fv

    def fail(self, feed_id: str, reason: str = "upstream down") -> None:
        """Simulate a prolonged outage report for `feed_id`."""
        self._report_unavailable([feed_id], reason)
