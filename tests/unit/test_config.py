import pytest

from liveart.config import EngineConfig, config_from_env, hermes_config_from_env


def test_defaults():
    c = EngineConfig()
    assert c.history_cap == 200
    assert (c.animation_speed_min, c.animation_speed_max) == (0.5, 3.0)
    assert c.use_confidence is True


@pytest.mark.parametrize("kw", [
    {"history_cap": 0},
    {"animation_speed_min": 4.0, "animation_speed_max": 1.0},
    {"trend_epsilon": -1.0},
])
def test_invalid_engine_config(kw):
    with pytest.raises(ValueError):
        EngineConfig(**kw)


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("LIVEART_HISTORY_CAP", "50")
    monkeypatch.setenv("LIVEART_USE_CONFIDENCE", "no")
    monkeypatch.setenv("LIVEART_ANIM_SPEED_MAX", "5")
    c = config_from_env()
    assert c.history_cap == 50
    assert c.use_confidence is False
    assert c.animation_speed_max == 5.0
    assert c.trend_epsilon == 0.0


def test_hermes_aliases_from_env(monkeypatch):
    monkeypatch.setenv("LIVEART_FEED_ALIASES", "BTC/USD=0xabc, ETH/USD=def,broken,=x")
    monkeypatch.setenv("LIVEART_HERMES_WS_URL", "wss://local/ws")
    c = hermes_config_from_env()
    assert c.aliases == {"BTC/USD": "0xabc", "ETH/USD": "def"}
    assert c.ws_url == "wss://local/ws"
