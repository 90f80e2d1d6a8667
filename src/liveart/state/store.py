from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Literal, Optional

from liveart.errors import DuplicateAsset
from liveart.rules.rules import AssetDefinition, Rule
from liveart.utils.types import VisualState

Phase = Literal["uninitialized", "base", "triggered"]


@dataclass(slots=True)
class AssetRecord:
    """
    Live, mutable per-asset slot. Only touched while holding `lock`.
    """
    definition: AssetDefinition
    state: Optional[VisualState] = None
    phase: Phase = "uninitialized"
    active_rule_id: Optional[str] = None
    last_observed_at: Optional[float] = None    # newest accepted feed observation
    last_transition_at: Optional[float] = None  # timestamp of the newest Transformation
    removed: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class AssetStatus:
    """Read-only copy of an AssetRecord for callers outside the lock."""
    asset_id: str
    feed_id: str
    phase: Phase
    active_rule_id: Optional[str]
    state: Optional[VisualState]
    last_observed_at: Optional[float]
    last_transition_at: Optional[float]


class AssetStateStore:
    """
    Concurrency-safe map asset_id -> current VisualState + metadata.

    The map itself is guarded by a short-held lock used only for insert/remove
    and lookups; everything about one asset happens under that asset's own
    reentrant lock, so different assets never contend.
    """

    def __init__(self) -> None:
        self._records: dict[str, AssetRecord] = {}
        self._map_lock = threading.Lock()

    # --- membership ---

    def add(self, defn: AssetDefinition) -> AssetRecord:
        with self._map_lock:
            if defn.id in self._records:
                raise DuplicateAsset(defn.id)
            rec = AssetRecord(definition=defn)
            self._records[defn.id] = rec
            return rec

    def remove(self, asset_id: str) -> bool:
        """
        Drop an asset. Waits for an in-flight update on it to finish; any update
        that acquires the asset afterwards sees `removed` and discards itself.
        """
        with self._map_lock:
            rec = self._records.pop(asset_id, None)
        if rec is None:
            return False
        with rec.lock:
            rec.removed = True
            rec.state = None
        return True

    def _get(self, asset_id: str) -> Optional[AssetRecord]:
        with self._map_lock:
            return self._records.get(asset_id)

    def __contains__(self, asset_id: str) -> bool:
        with self._map_lock:
            return asset_id in self._records

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._records)

    def ids(self) -> list[str]:
        with self._map_lock:
            return list(self._records)

    # --- per-asset serialization ---

    @contextmanager
    def locked(self, asset_id: str) -> Iterator[Optional[AssetRecord]]:
        """
        Hold the asset's lock for a whole read-modify-write sequence.
        Yields None if the asset is unknown or was removed meanwhile.
        """
        rec = self._get(asset_id)
        if rec is None:
            yield None
            return
        with rec.lock:
            yield None if rec.removed else rec

    # --- reads ---

    def current_state(self, asset_id: str) -> Optional[VisualState]:
        with self.locked(asset_id) as rec:
            return rec.state if rec is not None else None

    def definition(self, asset_id: str) -> Optional[AssetDefinition]:
        with self.locked(asset_id) as rec:
            return rec.definition if rec is not None else None

    def status(self, asset_id: str) -> Optional[AssetStatus]:
        with self.locked(asset_id) as rec:
            if rec is None:
                return None
            return AssetStatus(
                asset_id=asset_id,
                feed_id=rec.definition.feed_id,
                phase=rec.phase,
                active_rule_id=rec.active_rule_id,
                state=rec.state,
                last_observed_at=rec.last_observed_at,
                last_transition_at=rec.last_transition_at,
            )

    # --- writes ---

    def apply(
        self,
        asset_id: str,
        new_state: VisualState,
        *,
        rule_id: Optional[str] = None,
        observed_at: Optional[float] = None,
    ) -> bool:
        """
        Compare-and-set. Returns True only if the stored state actually changed.
        Phase / rule / observed_at metadata is refreshed either way.
        """
        with self.locked(asset_id) as rec:
            if rec is None:
                return False
            rec.phase = "triggered" if rule_id is not None else "base"
            rec.active_rule_id = rule_id
            if observed_at is not None:
                rec.last_observed_at = observed_at
            if rec.state == new_state:
                return False
            rec.state = new_state
            return True

    def replace_rules(self, asset_id: str, rules: tuple[Rule, ...]) -> bool:
        with self.locked(asset_id) as rec:
            if rec is None:
                return False
            rec.definition = rec.definition.with_rules(rules)
            return True
