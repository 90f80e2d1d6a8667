from __future__ import annotations

from dataclasses import replace
from typing import Optional

from liveart.config import EngineConfig
from liveart.rules.rules import AssetDefinition, Rule
from liveart.utils.types import FeedValue, Trend, VisualState


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


class StateComputer:
    """
    Derives the VisualState for (definition, winning rule, feed value).

    Reads the previous state only to compute trend; never mutates it.
    Out-of-range creator input is clamped, never rejected.
    """
    def __init__(self, cfg: Optional[EngineConfig] = None):
        self.cfg = cfg or EngineConfig()

    def trend(self, previous: Optional[VisualState], value: float) -> Trend:
        if previous is None:
            return "neutral"
        delta = value - previous.derived_value
        if abs(delta) <= self.cfg.trend_epsilon:
            return "neutral"
        return "bullish" if delta > 0 else "bearish"

    def clamp(self, st: VisualState) -> VisualState:
        opacity = _clamp(st.opacity, 0.0, 1.0)
        speed = _clamp(st.animation_speed, self.cfg.animation_speed_min, self.cfg.animation_speed_max)
        if opacity == st.opacity and speed == st.animation_speed:
            return st
        return replace(st, opacity=opacity, animation_speed=speed)

    def compute(
        self,
        defn: AssetDefinition,
        rule: Optional[Rule],
        value: FeedValue,
        previous: Optional[VisualState] = None,
    ) -> VisualState:
        st = defn.base_state
        if rule is not None:
            st = st.with_property(rule.target_property, rule.target_value)
        st = replace(st, derived_value=float(value.value), trend=self.trend(previous, value.value))
        return self.clamp(st)
