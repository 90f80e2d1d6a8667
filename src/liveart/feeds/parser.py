from __future__ import annotations

import math
from typing import Optional

from liveart.utils.time import normalize_epoch_s, utc_now_s
from liveart.utils.types import FeedValue


def normalize_price_id(raw: str) -> str:
    """Hermes ids are hex; accept "0x"-prefixed and mixed-case spellings."""
    s = str(raw).strip().lower()
    return s[2:] if s.startswith("0x") else s


def is_price_id(raw: str) -> bool:
    s = normalize_price_id(raw)
    if len(s) != 64:
        return False
    try:
        int(s, 16)
    except ValueError:
        return False
    return True


def _scaled(raw, expo: int) -> Optional[float]:
    if raw is None:
        return None
    v = float(int(raw) if isinstance(raw, str) else raw) * (10.0 ** int(expo))
    return v if math.isfinite(v) else None


def parse_price_feed(feed: dict) -> Optional[FeedValue]:
    """
    Decode one Hermes price feed object into a FeedValue.

      {"id": "e62d...",
       "price": {"price": "6140993501000", "conf": "3287352800",
                 "expo": -8, "publish_time": 1700000000},
       "ema_price": {...}}

    price and conf are integer mantissas (often as strings) scaled by 10**expo.
    Returns None when the object is missing pieces or decodes to a non-finite value.
    """
    pid = feed.get("id")
    px = feed.get("price")
    if pid is None or not isinstance(px, dict):
        return None

    expo = px.get("expo", 0)
    value = _scaled(px.get("price"), expo)
    if value is None:
        return None
    conf = _scaled(px.get("conf"), expo)

    ts = px.get("publish_time")
    if ts is None:
        ts = utc_now_s()
    return FeedValue(
        feed_id=normalize_price_id(pid),
        value=value,
        observed_at=normalize_epoch_s(ts),
        confidence=abs(conf) if conf is not None else None,
    )


def parse_price_update(m: dict) -> Optional[FeedValue]:
    """
    Return a FeedValue if `m` is a websocket price update; else None.

      {"type": "price_update", "price_feed": {...}}
    """
    if m.get("type") != "price_update":
        return None
    feed = m.get("price_feed")
    if not isinstance(feed, dict):
        return None
    return parse_price_feed(feed)
