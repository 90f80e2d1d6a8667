import pytest
import pytest_asyncio

from liveart.config import EngineConfig
from liveart.engine import Engine
from liveart.feeds.manual import ManualFeedSource
from liveart.feeds.registry import FeedRegistry


@pytest.fixture
def manual():
    return ManualFeedSource(["ETH/USD", "BTC/USD"])


@pytest_asyncio.fixture
async def engine(manual):
    """Engine over a started ManualFeedSource; stopped after the test."""
    eng = Engine(FeedRegistry([manual]), EngineConfig())
    await eng.start()
    try:
        yield eng
    finally:
        await eng.stop()
