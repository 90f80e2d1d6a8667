from __future__ import annotations

import threading
from typing import Optional

import structlog

from liveart.history.ring_buffer import RingBuffer
from liveart.utils.types import Transformation

log = structlog.get_logger("history")

DEFAULT_HISTORY_CAP = 200


class _AssetHistory:
    __slots__ = ("ring", "lock")

    def __init__(self, cap: int):
        self.ring: RingBuffer[Transformation] = RingBuffer(cap)
        self.lock = threading.Lock()


class TransformationLog:
    """
    Append-only, bounded history of state changes, one ring per asset.

    Only call record() after AssetStateStore.apply() returned True, so every
    entry corresponds to a change that was actually observed.
    """

    def __init__(self, cap: int = DEFAULT_HISTORY_CAP):
        if cap < 1:
            raise ValueError("cap must be >= 1")
        self.cap = cap
        self._assets: dict[str, _AssetHistory] = {}
        self._map_lock = threading.Lock()

    def _ensure(self, asset_id: str) -> _AssetHistory:
        with self._map_lock:
            h = self._assets.get(asset_id)
            if h is None:
                h = _AssetHistory(self.cap)
                self._assets[asset_id] = h
            return h

    def record(self, tr: Transformation) -> None:
        h = self._ensure(tr.asset_id)
        with h.lock:
            last = h.ring.last()
            if last is not None and tr.timestamp <= last.timestamp:
                raise ValueError(
                    f"non-monotonic transformation for {tr.asset_id}: "
                    f"{tr.timestamp} <= {last.timestamp}"
                )
            evicted = h.ring.append(tr)
        if evicted is not None:
            log.debug("history_evicted", asset_id=tr.asset_id, ts=evicted.timestamp)

    def history(self, asset_id: str, limit: Optional[int] = None) -> list[Transformation]:
        """Most-recent-first. limit=None returns everything retained."""
        with self._map_lock:
            h = self._assets.get(asset_id)
        if h is None:
            return []
        with h.lock:
            n = h.ring.size if limit is None else limit
            items = h.ring.view_last(n)
        items.reverse()
        return items

    def last(self, asset_id: str) -> Optional[Transformation]:
        with self._map_lock:
            h = self._assets.get(asset_id)
        if h is None:
            return None
        with h.lock:
            return h.ring.last()

    def count(self, asset_id: str) -> int:
        with self._map_lock:
            h = self._assets.get(asset_id)
        if h is None:
            return 0
        with h.lock:
            return h.ring.size

    def clear(self, asset_id: str) -> None:
        with self._map_lock:
            self._assets.pop(asset_id, None)
