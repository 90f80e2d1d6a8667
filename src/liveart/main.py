# src/liveart/main.py
import os
import json
import asyncio
import signal
import structlog
from dotenv import load_dotenv

from liveart.config import (
    SimulatorConfig,
    config_from_env,
    hermes_config_from_env,
)
from liveart.engine import Engine
from liveart.feeds.hermes_ws import HermesFeedSource
from liveart.feeds.interface import FeedSource
from liveart.feeds.registry import FeedRegistry
from liveart.feeds.simulator import SimulatedFeedSource
from liveart.formatting import format_transformation_pretty
from liveart.notify.queue import NotifyQueue
from liveart.storage.redis_history import RedisHistoryMirror

load_dotenv()
log = structlog.get_logger()

# Pyth BTC/USD price id, used by the demo asset when running against Hermes
BTC_USD_PRICE_ID = "e62df6c8b4a85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43"


# ---------------------------
# Utilities
# ---------------------------

def demo_asset(feed_id: str = "BTC/USD") -> dict:
    """A single orb that heats up as the price climbs."""
    return {
        "id": "btc-orb",
        "name": "BTC Orb",
        "feed_id": feed_id,
        "base_state": {"color_scheme": "blue", "animation_speed": 1.0, "opacity": 1.0},
        "rules": [
            {"id": "hot", "field": "price", "operator": "greater_than", "threshold": 70_000,
             "target_property": "color_scheme", "target_value": "red", "priority": 2},
            {"id": "fast", "field": "price", "operator": "greater_than", "threshold": 66_000,
             "target_property": "animation_speed", "target_value": 2.5, "priority": 1},
            {"id": "cold", "field": "price", "operator": "less_than", "threshold": 60_000,
             "target_property": "opacity", "target_value": 0.4, "priority": 1},
        ],
    }


def load_assets(path: str | None, default_feed: str) -> list[dict]:
    """Asset definitions from a JSON file (a list, or {"assets": [...]}), else the demo."""
    if not path:
        return [demo_asset(default_feed)]
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("assets", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of asset definitions")
    return data


def build_source() -> tuple[FeedSource, str]:
    """LIVEART_FEED=simulator (default) | hermes. Returns (source, demo feed id)."""
    kind = os.getenv("LIVEART_FEED", "simulator").strip().lower()
    if kind == "hermes":
        cfg = hermes_config_from_env()
        cfg.aliases.setdefault("BTC/USD", BTC_USD_PRICE_ID)
        return HermesFeedSource(cfg), "BTC/USD"
    if kind != "simulator":
        raise ValueError(f"unknown LIVEART_FEED: {kind!r}")
    seed = os.getenv("LIVEART_SIM_SEED")
    sim_cfg = SimulatorConfig(
        update_interval_s=float(os.getenv("LIVEART_SIM_INTERVAL_S", "1.0")),
        seed=int(seed) if seed else None,
    )
    return SimulatedFeedSource(sim_cfg), "BTC/USD"


async def printer_loop(asset_id: str, q: NotifyQueue, tz_name: str):
    """Print every transformation of one asset until its channel closes."""
    async for tr in q:
        print(format_transformation_pretty(tr, tz_name))
    log.info("printer_exit", asset_id=asset_id, dropped=q.stats.enq_drop)


# ---------------------------
# Main
# ---------------------------

async def main():
    cfg = config_from_env()
    source, demo_feed = build_source()

    sinks = []
    if os.getenv("LIVEART_REDIS_HISTORY", "0").lower() in ("1", "true", "yes"):
        sinks.append(RedisHistoryMirror(
            url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            retention=cfg.history_cap,
            enabled=True,
        ))

    engine = Engine(FeedRegistry([source]), cfg, sinks=sinks)
    await engine.start()

    tz_name = os.getenv("LIVEART_TZ", "UTC")
    printers: list[asyncio.Task] = []
    channels: list[NotifyQueue] = []

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # not supported on this platform; Ctrl-C still raises KeyboardInterrupt
            pass

    try:
        for raw in load_assets(os.getenv("LIVEART_ASSETS"), demo_feed):
            await engine.register_asset(raw)
            asset_id = str(raw["id"])
            q = engine.channel(asset_id)
            channels.append(q)
            printers.append(asyncio.create_task(printer_loop(asset_id, q, tz_name)))
            st = engine.current_state(asset_id)
            if st is not None:
                log.info("asset_initial_state", asset_id=asset_id, **st.to_dict())

        log.info("liveart_running", assets=engine.assets(), feed=getattr(source, "name", "?"))
        await stop.wait()
    finally:
        # graceful shutdown: close channels first so printers drain and exit;
        # assets stay registered so the Redis mirror keeps their history
        for q in channels:
            q.close()
        for t in printers:
            try:
                await asyncio.wait_for(t, timeout=2.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                t.cancel()
        await engine.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
