"""Random-walk feed simulator for demos and offline development."""

from __future__ import annotations

import asyncio
import math
from typing import Optional

import numpy as np

from liveart.config import SimulatorConfig
from liveart.errors import UnknownFeed
from liveart.feeds.interface import QueuedFeedSource
from liveart.utils.time import utc_now_s
from liveart.utils.types import FeedValue


class SimulatedFeedSource(QueuedFeedSource):
    """FeedSource backed by a geometric random walk per feed.

    Math (per step, per feed):
        S(t+1) = S(t) * exp(sigma * Z - sigma^2 / 2),   Z ~ N(0, 1)

    Only subscribed feeds are pushed to the inbound queue; snapshot() works for
    every seeded feed regardless.
    """

    name = "simulated_feed"

    def __init__(self, cfg: Optional[SimulatorConfig] = None):
        self.cfg = cfg or SimulatorConfig()
        super().__init__()
        self._feeds: list[str] = list(self.cfg.seeds)
        self._prices = np.array([self.cfg.seeds[f] for f in self._feeds], dtype=np.float64)
        self._rng = np.random.default_rng(self.cfg.seed)
        self._task: Optional[asyncio.Task] = None

    def serves(self, feed_id: str) -> bool:
        return feed_id in self.cfg.seeds

    def _value(self, i: int, ts: float) -> FeedValue:
        px = float(self._prices[i])
        return FeedValue(
            feed_id=self._feeds[i],
            value=px,
            observed_at=ts,
            confidence=px * self.cfg.confidence_ratio if self.cfg.confidence_ratio else None,
        )

    async def snapshot(self, feed_id: str) -> FeedValue:
        if not self.serves(feed_id):
            raise UnknownFeed(feed_id, "not simulated")
        return self._value(self._feeds.index(feed_id), utc_now_s())

    def step(self) -> list[FeedValue]:
        """Advance every feed by one step. Returns the new values."""
        n = len(self._feeds)
        if n == 0:
            return []
        sigma = self.cfg.sigma
        z = self._rng.standard_normal(n)
        self._prices *= np.exp(sigma * z - 0.5 * sigma * sigma)
        ts = utc_now_s()
        return [self._value(i, ts) for i in range(n) if math.isfinite(self._prices[i])]

    async def start(self) -> None:
        await super().start()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run_loop(), name="simulated-feed-loop")
        self._log.info("simulator_started", feeds=self._feeds, interval_s=self.cfg.update_interval_s)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await super().stop()
        self._log.info("simulator_stopped")

    async def _run_loop(self) -> None:
        """Core loop: step, enqueue subscribed feeds, sleep."""
        while True:
            try:
                for v in self.step():
                    if self.is_subscribed(v.feed_id):
                        self._enqueue(v)
            except Exception:
                self._log.exception("simulator_step_failed")
            await asyncio.sleep(self.cfg.update_interval_s)
