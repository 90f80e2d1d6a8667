from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence, Union

import structlog

from liveart.config import EngineConfig
from liveart.errors import AssetNotFound
from liveart.feeds.interface import FeedSource
from liveart.feeds.registry import FeedHealth, FeedRegistry
from liveart.history.log import TransformationLog
from liveart.notify.queue import NotifyQueue
from liveart.rules.evaluator import evaluate
from liveart.rules.rules import AssetDefinition, Rule, validate_rules
from liveart.state.computer import StateComputer
from liveart.state.store import AssetStateStore, AssetStatus
from liveart.utils.time import strictly_after, utc_now_s
from liveart.utils.types import FeedValue, Transformation, VisualState

TransformationCallback = Callable[[Transformation], None]

log = structlog.get_logger("engine")


class TransformationSink(Protocol):
    def write(self, tr: Transformation) -> None: ...


@dataclass(slots=True)
class _AssetHooks:
    feed_id: str
    remove_handler: Optional[Callable[[], None]] = None
    subscribed: bool = False
    removed: bool = False
    subscribers: list[tuple[int, TransformationCallback]] = field(default_factory=list)
    channels: list[NotifyQueue] = field(default_factory=list)


class Engine:
    """
    Data-driven state-transition engine.

    For every value a feed delivers, each asset on that feed runs
    evaluate -> compute -> apply -> record -> notify while holding its own
    lock. Assets never wait on each other; there is no global lock.

    Usage:
        registry = FeedRegistry([HermesFeedSource(cfg)])
        engine = Engine(registry)
        await engine.start()
        await engine.register_asset(defn)
        q = engine.channel(defn.id)
        async for tr in q: ...
    """

    def __init__(
        self,
        registry: FeedRegistry,
        cfg: Optional[EngineConfig] = None,
        *,
        sinks: Sequence[TransformationSink] = (),
    ):
        self.registry = registry
        self.cfg = cfg or EngineConfig()
        self.store = AssetStateStore()
        self.transformations = TransformationLog(cap=self.cfg.history_cap)
        self.computer = StateComputer(self.cfg)
        self._sinks = list(sinks)
        self._hooks: dict[str, _AssetHooks] = {}
        self._hooks_lock = threading.Lock()
        self._next_sub_id = 0

    @classmethod
    def from_sources(
        cls,
        sources: Sequence[FeedSource],
        cfg: Optional[EngineConfig] = None,
        **kw,
    ) -> "Engine":
        return cls(FeedRegistry(sources), cfg, **kw)

    # ---------------------------- lifecycle ---------------------------- #

    async def start(self) -> None:
        for src in self.registry.sources:
            await src.start()
        for sink in self._sinks:
            start = getattr(sink, "start", None)
            if start is not None:
                await start()
        log.info("engine_started", sources=len(self.registry.sources))

    async def stop(self) -> None:
        for sink in self._sinks:
            stop = getattr(sink, "stop", None)
            if stop is not None:
                await stop()
        for src in reversed(self.registry.sources):
            await src.stop()
        log.info("engine_stopped", assets=len(self.store))

    # ---------------------------- registration ------------------------- #

    async def register_asset(self, defn: Union[AssetDefinition, dict]) -> None:
        """
        Raises DuplicateAsset, InvalidRule or UnknownFeed. If the feed already
        has a value, the asset resolves its first state before returning.
        """
        if isinstance(defn, dict):
            defn = AssetDefinition.from_dict(defn)
        defn = defn.with_rules(validate_rules(defn.rules))

        self.store.add(defn)
        hooks = _AssetHooks(feed_id=defn.feed_id)
        with self._hooks_lock:
            self._hooks[defn.id] = hooks
        try:
            hooks.remove_handler = self.registry.on_update(
                defn.feed_id, lambda v, aid=defn.id: self._on_feed_value(aid, v)
            )
            await self.registry.ensure_subscription(defn.feed_id)
            hooks.subscribed = True
        except BaseException:
            self._discard(defn.id, hooks)
            raise

        if hooks.removed:
            # removed while we were subscribing
            await self.registry.release(defn.feed_id)
            raise AssetNotFound(defn.id)

        latest = self.registry.latest(defn.feed_id)
        if latest is not None:
            self.process(defn.id, latest)
        log.info("asset_registered", asset_id=defn.id, feed_id=defn.feed_id, rules=len(defn.rules))

    def _discard(self, asset_id: str, hooks: _AssetHooks) -> None:
        if hooks.remove_handler is not None:
            hooks.remove_handler()
            hooks.remove_handler = None
        with self._hooks_lock:
            if self._hooks.get(asset_id) is hooks:
                del self._hooks[asset_id]
        self.store.remove(asset_id)

    def update_rules(self, asset_id: str, rules: Sequence[Union[Rule, dict]]) -> None:
        """Atomically swap the rule set; the next feed update uses it."""
        validated = validate_rules(rules)
        if not self.store.replace_rules(asset_id, validated):
            raise AssetNotFound(asset_id)
        log.info("asset_rules_updated", asset_id=asset_id, rules=len(validated))

    async def remove_asset(self, asset_id: str) -> None:
        """
        Deregister an asset. An update racing this call either finishes
        completely first or is discarded; nothing is applied afterwards.
        """
        with self._hooks_lock:
            hooks = self._hooks.pop(asset_id, None)
        if hooks is None:
            raise AssetNotFound(asset_id)
        hooks.removed = True
        if hooks.remove_handler is not None:
            hooks.remove_handler()
            hooks.remove_handler = None

        self.store.remove(asset_id)
        self.transformations.clear(asset_id)
        for ch in hooks.channels:
            ch.close()
        hooks.subscribers.clear()
        for sink in self._sinks:
            forget = getattr(sink, "forget", None)
            if forget is not None:
                forget(asset_id)
        if hooks.subscribed:
            await self.registry.release(hooks.feed_id)
        log.info("asset_removed", asset_id=asset_id)

    # ------------------------------ queries ---------------------------- #

    def assets(self) -> list[str]:
        return self.store.ids()

    def current_state(self, asset_id: str) -> Optional[VisualState]:
        """
        Current state; None while the asset is still uninitialized (no feed
        value yet). Raises AssetNotFound if unregistered.
        """
        st = self.store.status(asset_id)
        if st is None:
            raise AssetNotFound(asset_id)
        return st.state

    def status(self, asset_id: str) -> AssetStatus:
        st = self.store.status(asset_id)
        if st is None:
            raise AssetNotFound(asset_id)
        return st

    def history(self, asset_id: str, limit: Optional[int] = None) -> list[Transformation]:
        """Most-recent-first, at most `limit` entries (None = all retained)."""
        if asset_id not in self.store:
            raise AssetNotFound(asset_id)
        if limit is not None and limit < 0:
            raise ValueError("limit must be >= 0")
        return self.transformations.history(asset_id, limit)

    def feed_health(self, asset_id: str) -> FeedHealth:
        defn = self.store.definition(asset_id)
        if defn is None:
            raise AssetNotFound(asset_id)
        return self.registry.health(defn.feed_id)

    # --------------------------- notifications ------------------------- #

    def subscribe(self, asset_id: str, callback: TransformationCallback) -> Callable[[], None]:
        """
        Call `callback` with every accepted Transformation of `asset_id`, in
        order, on the thread/task that processed the update. Keep it fast.
        """
        with self._hooks_lock:
            hooks = self._hooks.get(asset_id)
            if hooks is None:
                raise AssetNotFound(asset_id)
            sid = self._next_sub_id
            self._next_sub_id += 1
            hooks.subscribers.append((sid, callback))

        def cancel() -> None:
            with self._hooks_lock:
                hooks.subscribers[:] = [(i, cb) for i, cb in hooks.subscribers if i != sid]

        return cancel

    def channel(self, asset_id: str, maxsize: Optional[int] = None) -> NotifyQueue:
        """Queue-based subscription for async consumers. Closed on removal."""
        q = NotifyQueue(maxsize=maxsize or self.cfg.notify_queue_maxsize)
        q.bind(self.subscribe(asset_id, q.try_put))
        with self._hooks_lock:
            hooks = self._hooks.get(asset_id)
            if hooks is not None:
                hooks.channels.append(q)
        if hooks is None:
            q.close()
        return q

    def _notify(self, asset_id: str, tr: Transformation) -> None:
        with self._hooks_lock:
            hooks = self._hooks.get(asset_id)
            callbacks = [cb for _, cb in hooks.subscribers] if hooks is not None else []
        for cb in callbacks:
            try:
                cb(tr)
            except Exception:
                log.exception("subscriber_failed", asset_id=asset_id)
        for sink in self._sinks:
            try:
                sink.write(tr)
            except Exception:
                log.exception("sink_write_failed", asset_id=asset_id)

    # ------------------------------ pipeline --------------------------- #

    def _on_feed_value(self, asset_id: str, value: FeedValue) -> None:
        try:
            self.process(asset_id, value)
        except Exception:
            # one misbehaving asset must not take the feed down
            log.exception("asset_update_failed", asset_id=asset_id, feed_id=value.feed_id)

    def process(self, asset_id: str, value: FeedValue) -> bool:
        """
        Run one update for one asset under its lock. Returns True if the state
        changed (and a Transformation was recorded). Values observed before
        the newest accepted one are discarded.
        """
        with self.store.locked(asset_id) as rec:
            if rec is None:
                return False
            if rec.last_observed_at is not None and value.observed_at < rec.last_observed_at:
                log.debug(
                    "stale_value_dropped",
                    asset_id=asset_id,
                    observed_at=value.observed_at,
                    newest=rec.last_observed_at,
                )
                return False

            defn = rec.definition
            rule = evaluate(defn, value, use_confidence=self.cfg.use_confidence)
            previous = rec.state
            new_state = self.computer.compute(defn, rule, value, previous)
            rule_id = rule.id if rule is not None else None

            if not self.store.apply(asset_id, new_state, rule_id=rule_id, observed_at=value.observed_at):
                return False

            ts = strictly_after(rec.last_transition_at, utc_now_s())
            rec.last_transition_at = ts
            tr = Transformation(
                timestamp=ts,
                asset_id=asset_id,
                trigger_rule_id=rule_id,
                previous_state=previous,
                new_state=new_state,
                source_feed_value=value,
            )
            self.transformations.record(tr)
            self._notify(asset_id, tr)
            return True
