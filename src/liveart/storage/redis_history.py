from __future__ import annotations

import asyncio
import json
from typing import Optional

import redis.asyncio as redis
import structlog

from liveart.utils.types import Transformation

KEY_PREFIX = "liveart:history"


def history_key(asset_id: str) -> str:
    # liveart:history:{asset_id}
    return f"{KEY_PREFIX}:{asset_id}"


class RedisHistoryMirror:
    """
    Optional Redis mirror of transformation history. Non-blocking best-effort writes.

    Each record is LPUSHed as JSON onto liveart:history:{asset_id} and the list
    is LTRIMmed to `retention` entries, so LRANGE 0 N-1 reads newest first like
    Engine.history(). The in-memory log stays authoritative.
    """
    def __init__(self, url: str, retention: int = 200, enabled: bool = False, queue_maxsize: int = 5000):
        self.enabled = enabled
        self.url = url
        self.retention = retention
        self.dropped = 0
        self._r: Optional[redis.Redis] = None
        self._q: asyncio.Queue = asyncio.Queue(maxsize=queue_maxsize)
        self._task: Optional[asyncio.Task] = None
        self._log = structlog.get_logger("redis_history")

    async def start(self):
        if not self.enabled:
            return
        self._r = redis.from_url(self.url, decode_responses=True)
        self._task = asyncio.create_task(self._writer_loop(), name="redis-history")
        self._log.info("redis_history_started", url=self.url, retention=self.retention)

    async def stop(self):
        if not self.enabled:
            return
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._r:
            await self._r.close()
            self._r = None

    def write(self, tr: Transformation) -> None:
        """Enqueue LPUSH + LTRIM for one transformation."""
        if not self.enabled:
            return
        self._put(("push", tr.asset_id, json.dumps(tr.to_dict(), separators=(",", ":"))))

    def forget(self, asset_id: str) -> None:
        """Enqueue DEL of the asset's history list (asset removed)."""
        if not self.enabled:
            return
        self._put(("del", asset_id, None))

    def _put(self, item: tuple) -> None:
        try:
            self._q.put_nowait(item)
        except asyncio.QueueFull:
            # drop under pressure
            self.dropped += 1

    async def _writer_loop(self):
        assert self._r is not None
        r = self._r
        try:
            while True:
                op, asset_id, payload = await self._q.get()
                key = history_key(asset_id)
                p = r.pipeline()
                if op == "push":
                    p.execute_command("LPUSH", key, payload)
                    p.execute_command("LTRIM", key, 0, self.retention - 1)
                else:
                    p.execute_command("DEL", key)
                try:
                    await p.execute()
                except Exception as e:
                    # it's a mirror; the in-memory log is the source of truth
                    self._log.warning("redis_history_write_failed", asset_id=asset_id, op=op, err=str(e))
        except asyncio.CancelledError:
            return
