import asyncio
import random
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from liveart.engine import Engine
from liveart.feeds.manual import ManualFeedSource
from liveart.feeds.registry import FeedRegistry
from tests.helpers.builders import asset, fv, rule


def _engine():
    return Engine(FeedRegistry([ManualFeedSource(["ETH/USD"])]))


@pytest.mark.asyncio
async def test_concurrent_updates_converge_on_latest_observation():
    eng = _engine()
    await eng.register_asset(asset("orb", rules=[rule("hot", "gt", 500, target="red")]))

    values = [fv(float(i), observed_at=float(i)) for i in range(1, 1001)]
    random.Random(42).shuffle(values)
    chunks = [values[i::8] for i in range(8)]
    barrier = threading.Barrier(8)

    def worker(chunk):
        barrier.wait()
        return sum(eng.process("orb", v) for v in chunk)

    with ThreadPoolExecutor(max_workers=8) as pool:
        applied = sum(pool.map(worker, chunks))

    st = eng.current_state("orb")
    assert st.derived_value == 1000.0
    assert st.color_scheme == "red"
    assert eng.status("orb").last_observed_at == 1000.0
    assert 1 <= applied <= len(values)

    h = eng.history("orb")
    ts = [t.timestamp for t in h]
    assert ts == sorted(ts, reverse=True)
    assert len(set(ts)) == len(ts)
    # observations in the log only ever move forward
    obs = [t.source_feed_value.observed_at for t in h]
    assert obs == sorted(obs, reverse=True)


@pytest.mark.asyncio
async def test_assets_do_not_block_each_other():
    eng = _engine()
    await eng.register_asset(asset("a"))
    await eng.register_asset(asset("b"))

    with eng.store.locked("a"):
        # "a" is held by this thread; "b" must still be updatable from another
        t = threading.Thread(target=eng.process, args=("b", fv(1.0)))
        t.start()
        t.join(2.0)
        assert not t.is_alive()
    assert eng.current_state("b").derived_value == 1.0


@pytest.mark.asyncio
async def test_remove_races_with_updates():
    eng = _engine()
    await eng.register_asset(asset("orb"))
    stop = threading.Event()
    counter = iter(range(1, 10_000_000))
    lock = threading.Lock()

    def pump():
        while not stop.is_set():
            with lock:
                i = next(counter)
            eng.process("orb", fv(float(i), observed_at=float(i)))

    threads = [threading.Thread(target=pump) for _ in range(4)]
    for t in threads:
        t.start()
    try:
        await eng.remove_asset("orb")
    finally:
        stop.set()
        for t in threads:
            t.join(2.0)

    assert eng.assets() == []
    assert eng.process("orb", fv(1.0, observed_at=1e12)) is False
    assert eng.transformations.count("orb") == 0


class _SlowSnapshotSource(ManualFeedSource):
    async def snapshot(self, feed_id):
        if feed_id == "SLOW":
            await asyncio.sleep(0.05)
        return await super().snapshot(feed_id)


@pytest.mark.asyncio
async def test_register_racing_remove_on_shared_feed():
    src = _SlowSnapshotSource(["ETH/USD", "SLOW"])
    eng = Engine(FeedRegistry([src]))
    await eng.start()
    await eng.register_asset(asset("b"))

    await asyncio.gather(
        eng.register_asset(asset("c", feed_id="SLOW")),
        eng.remove_asset("b"),
        eng.register_asset(asset("a")),
    )
    assert sorted(eng.assets()) == ["a", "c"]
    assert eng.registry.refcount("ETH/USD") == 1
    assert src.is_subscribed("ETH/USD")

    src.push("ETH/USD", 42.0)
    await src.drain()
    st = eng.current_state("a")
    assert st is not None and st.derived_value == 42.0
    await eng.stop()
