import asyncio

import pytest

from liveart.errors import UnknownFeed
from liveart.feeds.manual import ManualFeedSource
from liveart.feeds.registry import FeedRegistry


@pytest.mark.asyncio
async def test_one_upstream_subscription_per_feed():
    src = ManualFeedSource(["ETH/USD"])
    reg = FeedRegistry([src])

    await reg.ensure_subscription("ETH/USD")
    await reg.ensure_subscription("ETH/USD")
    assert reg.refcount("ETH/USD") == 2
    assert src.subscribed_feeds() == ["ETH/USD"]
    assert len(src._subs["ETH/USD"]) == 1

    await reg.release("ETH/USD")
    assert src.is_subscribed("ETH/USD")
    await reg.release("ETH/USD")
    assert not src.is_subscribed("ETH/USD")
    assert reg.active_feeds() == []
    await reg.release("ETH/USD")  # extra release is a no-op
    assert reg.refcount("ETH/USD") == 0


@pytest.mark.asyncio
async def test_unknown_feed_rejected():
    reg = FeedRegistry([ManualFeedSource(["ETH/USD"])])
    with pytest.raises(UnknownFeed):
        await reg.ensure_subscription("DOGE/USD")
    with pytest.raises(UnknownFeed):
        reg.on_update("DOGE/USD", lambda v: None)
    assert reg.refcount("DOGE/USD") == 0


def test_needs_a_source():
    with pytest.raises(ValueError):
        FeedRegistry([])


@pytest.mark.asyncio
async def test_snapshot_seeds_latest_and_handlers():
    src = ManualFeedSource(["ETH/USD"])
    src.push("ETH/USD", 3000.0, observed_at=1)
    reg = FeedRegistry([src])
    seen = []
    reg.on_update("ETH/USD", seen.append)
    assert reg.latest("ETH/USD") is None
    assert reg.health("ETH/USD") == "unknown"

    await reg.ensure_subscription("ETH/USD")
    assert reg.latest("ETH/USD").value == 3000.0
    assert [v.value for v in seen] == [3000.0]
    assert reg.health("ETH/USD") == "ok"


@pytest.mark.asyncio
async def test_unavailable_snapshot_is_tolerated():
    src = ManualFeedSource(["ETH/USD"])
    reg = FeedRegistry([src])
    await reg.ensure_subscription("ETH/USD")
    assert reg.refcount("ETH/USD") == 1
    assert reg.latest("ETH/USD") is None


@pytest.mark.asyncio
async def test_handlers_run_in_registration_order_and_isolated():
    src = ManualFeedSource(["ETH/USD"])
    await src.start()
    reg = FeedRegistry([src])
    order = []

    def boom(v):
        order.append("boom")
        raise RuntimeError("handler failed")

    reg.on_update("ETH/USD", lambda v: order.append("first"))
    reg.on_update("ETH/USD", boom)
    remove_last = reg.on_update("ETH/USD", lambda v: order.append("last"))
    await reg.ensure_subscription("ETH/USD")

    src.push("ETH/USD", 1.0, observed_at=1)
    await src.drain()
    assert order == ["first", "boom", "last"]

    remove_last()
    order.clear()
    src.push("ETH/USD", 2.0, observed_at=2)
    await src.drain()
    assert order == ["first", "boom"]
    await src.stop()


@pytest.mark.asyncio
async def test_latest_keeps_newest_observation():
    src = ManualFeedSource(["ETH/USD"])
    await src.start()
    reg = FeedRegistry([src])
    await reg.ensure_subscription("ETH/USD")
    src.push("ETH/USD", 2.0, observed_at=20)
    src.push("ETH/USD", 1.0, observed_at=10)
    await src.drain()
    assert reg.latest("ETH/USD").value == 2.0
    await src.stop()


@pytest.mark.asyncio
async def test_outage_marks_degraded_then_recovers():
    src = ManualFeedSource(["ETH/USD"])
    await src.start()
    reg = FeedRegistry([src])
    await reg.ensure_subscription("ETH/USD")
    src.fail("ETH/USD")
    assert reg.health("ETH/USD") == "degraded"
    src.push("ETH/USD", 1.0)
    await src.drain()
    assert reg.health("ETH/USD") == "ok"
    await src.stop()


@pytest.mark.asyncio
async def test_first_serving_source_wins():
    a = ManualFeedSource(["X"])
    b = ManualFeedSource(["X", "Y"])
    reg = FeedRegistry([a, b])
    assert reg.source_for("X") is a
    assert reg.source_for("Y") is b


class _GatedSource(ManualFeedSource):
    """Snapshots of "SLOW" hang until `gate` is set."""

    def __init__(self, feeds):
        super().__init__(feeds)
        self.gate = asyncio.Event()

    async def snapshot(self, feed_id):
        if feed_id == "SLOW":
            await self.gate.wait()
        return await super().snapshot(feed_id)


@pytest.mark.asyncio
async def test_release_keeps_handlers_of_a_pending_subscriber():
    src = ManualFeedSource(["ETH/USD"])
    await src.start()
    reg = FeedRegistry([src])
    await reg.ensure_subscription("ETH/USD")
    src.push("ETH/USD", 1.0, observed_at=1)
    await src.drain()

    # a second asset hooks in, then the first one lets go before it subscribes
    seen = []
    reg.on_update("ETH/USD", seen.append)
    await reg.release("ETH/USD")
    assert not src.is_subscribed("ETH/USD")
    assert reg.refcount("ETH/USD") == 0
    assert reg.latest("ETH/USD") is None
    assert reg.health("ETH/USD") == "unknown"

    await reg.ensure_subscription("ETH/USD")
    src.push("ETH/USD", 2.0, observed_at=2)
    await src.drain()
    assert [v.value for v in seen] == [1.0, 2.0]
    await src.stop()


@pytest.mark.asyncio
async def test_slow_snapshot_does_not_block_other_feeds():
    src = _GatedSource(["ETH/USD", "SLOW"])
    reg = FeedRegistry([src])
    slow = asyncio.create_task(reg.ensure_subscription("SLOW"))
    await asyncio.sleep(0)

    await asyncio.wait_for(reg.ensure_subscription("ETH/USD"), timeout=1.0)
    await asyncio.wait_for(reg.release("ETH/USD"), timeout=1.0)
    assert not slow.done()

    src.gate.set()
    await asyncio.wait_for(slow, timeout=1.0)
    assert reg.refcount("SLOW") == 1
