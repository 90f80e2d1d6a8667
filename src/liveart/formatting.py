from __future__ import annotations
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from liveart.utils.types import Transformation, VisualState

_TREND_ARROWS = {"bullish": "↑", "bearish": "↓", "neutral": "→"}


def _fmt_ts(ts_s: float, tz_name: str) -> str:
    tz = ZoneInfo(tz_name)
    return datetime.fromtimestamp(ts_s, tz).strftime("%H:%M:%S %Z")  # e.g., 16:28:30 UTC


def _fmt_state(st: Optional[VisualState]) -> str:
    if st is None:
        return "(uninitialized)"
    return f"{st.color_scheme} x{st.animation_speed:.2f} a={st.opacity:.2f}"


def format_transformation_pretty(tr: Transformation, tz_name: str = "UTC") -> str:
    """
    One-line console rendering of a state transition:

      [btc-orb] 16:28:30 UTC ↑ BTC/USD=65123.45 ±12.30 | rule=hot | blue x1.00 a=1.00 → red x2.50 a=1.00
    """
    v = tr.source_feed_value
    st = tr.new_state
    arrow = _TREND_ARROWS.get(st.trend, "?")
    conf = f" ±{v.confidence:.2f}" if v.confidence else ""
    rule = tr.trigger_rule_id or "base"
    return (
        f"[{tr.asset_id}] {_fmt_ts(tr.timestamp, tz_name)} {arrow} "
        f"{v.feed_id}={v.value:.2f}{conf}  |  rule={rule}  |  "
        f"{_fmt_state(tr.previous_state)} → {_fmt_state(st)}"
    )
