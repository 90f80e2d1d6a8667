from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass(slots=True)
class EngineConfig:
    """
    Engine-wide knobs.

    history_cap:          transformations kept per asset (FIFO eviction)
    animation_speed_*:    clamp range applied to every computed state
    use_confidence:       confidence-adjust gt/lt/between tests (eq is always exact)
    trend_epsilon:        |delta| at or below this reads as "neutral"
    notify_queue_maxsize: default capacity of Engine.channel() queues
    """
    history_cap: int = 200
    animation_speed_min: float = 0.5
    animation_speed_max: float = 3.0
    use_confidence: bool = True
    trend_epsilon: float = 0.0
    notify_queue_maxsize: int = 1000

    def __post_init__(self) -> None:
        if self.history_cap < 1:
            raise ValueError("history_cap must be >= 1")
        if self.animation_speed_min > self.animation_speed_max:
            raise ValueError("animation_speed_min must be <= animation_speed_max")
        if self.trend_epsilon < 0:
            raise ValueError("trend_epsilon must be >= 0")


@dataclass(slots=True)
class HermesConfig:
    ws_url: str = "wss://hermes.pyth.network/ws"
    http_url: str = "https://hermes.pyth.network"
    # symbol -> hex price id, e.g. {"BTC/USD": "e62df6c8..."}
    aliases: dict[str, str] = field(default_factory=dict)
    # reconnect behavior
    initial_backoff_s: float = 0.25
    max_backoff_s: float = 30.0
    unavailable_after_s: float = 30.0   # outage length before subscribers hear about it
    # timeouts
    open_timeout_s: float = 5.0
    ping_interval_s: float = 20.0
    http_timeout_s: float = 8.0
    recv_timeout_s: float = 5.0
    # snapshots older than this are treated as unavailable
    max_staleness_s: float = 60.0
    values_queue_maxsize: int = 10_000


@dataclass(slots=True)
class SimulatorConfig:
    seeds: dict[str, float] = field(default_factory=lambda: {
        "BTC/USD": 65_000.0,
        "ETH/USD": 3_200.0,
        "SUI/USD": 1.80,
        "SOL/USD": 150.0,
    })
    update_interval_s: float = 1.0
    sigma: float = 0.002          # per-step stdev of log returns
    confidence_ratio: float = 0.0005
    seed: Optional[int] = None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def config_from_env() -> EngineConfig:
    """Build EngineConfig from LIVEART_* env vars (call load_dotenv() first)."""
    d = EngineConfig()
    return EngineConfig(
        history_cap=int(os.getenv("LIVEART_HISTORY_CAP", d.history_cap)),
        animation_speed_min=float(os.getenv("LIVEART_ANIM_SPEED_MIN", d.animation_speed_min)),
        animation_speed_max=float(os.getenv("LIVEART_ANIM_SPEED_MAX", d.animation_speed_max)),
        use_confidence=_env_bool("LIVEART_USE_CONFIDENCE", d.use_confidence),
        trend_epsilon=float(os.getenv("LIVEART_TREND_EPSILON", d.trend_epsilon)),
        notify_queue_maxsize=int(os.getenv("LIVEART_NOTIFY_QUEUE_MAXSIZE", d.notify_queue_maxsize)),
    )


def hermes_config_from_env() -> HermesConfig:
    """
    LIVEART_HERMES_WS_URL / LIVEART_HERMES_HTTP_URL override endpoints;
    LIVEART_FEED_ALIASES="BTC/USD=e62d...,ETH/USD=ff61..." adds symbol aliases.
    """
    d = HermesConfig()
    aliases: dict[str, str] = {}
    for part in os.getenv("LIVEART_FEED_ALIASES", "").split(","):
        if "=" not in part:
            continue
        sym, _, pid = part.partition("=")
        if sym.strip() and pid.strip():
            aliases[sym.strip()] = pid.strip()
    return HermesConfig(
        ws_url=os.getenv("LIVEART_HERMES_WS_URL", d.ws_url),
        http_url=os.getenv("LIVEART_HERMES_HTTP_URL", d.http_url),
        aliases=aliases,
        max_staleness_s=float(os.getenv("LIVEART_MAX_STALENESS_S", d.max_staleness_s)),
    )
