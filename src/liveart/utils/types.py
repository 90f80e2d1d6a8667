from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Literal, Optional

# ---- feed-level primitives ----

PRIMARY_FIELDS = ("value", "price")


@dataclass(frozen=True, slots=True)
class FeedValue:
    """
    One observation of an external numeric feed. Immutable once observed.
    """
    feed_id: str
    value: float
    observed_at: float                   # epoch seconds, source observation time
    confidence: Optional[float] = None   # absolute +/- band in value units

    def field(self, name: str) -> Optional[float]:
        """
        Value of a named field on this snapshot, or None if the feed doesn't
        supply it. The primary value answers to both "value" and "price".
        """
        if name in PRIMARY_FIELDS:
            return self.value
        if name == "confidence":
            return self.confidence
        return None

    def to_dict(self) -> dict:
        return {
            "feed_id": self.feed_id,
            "value": self.value,
            "observed_at": self.observed_at,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "FeedValue":
        conf = d.get("confidence")
        return cls(
            feed_id=str(d["feed_id"]),
            value=float(d["value"]),
            observed_at=float(d["observed_at"]),
            confidence=float(conf) if conf is not None else None,
        )


# ---- visual state ----

Trend = Literal["bullish", "bearish", "neutral"]
TRENDS: tuple[str, ...] = ("bullish", "bearish", "neutral")

# properties a rule is allowed to override
VISUAL_PROPERTIES: tuple[str, ...] = ("color_scheme", "animation_speed", "opacity")


@dataclass(frozen=True, slots=True)
class VisualState:
    color_scheme: str
    animation_speed: float = 1.0
    opacity: float = 1.0
    derived_value: float = 0.0
    trend: Trend = "neutral"

    def with_property(self, name: str, value: Any) -> "VisualState":
        if name == "color_scheme":
            return replace(self, color_scheme=str(value))
        if name == "animation_speed":
            return replace(self, animation_speed=float(value))
        if name == "opacity":
            return replace(self, opacity=float(value))
        raise ValueError(f"not an overridable visual property: {name}")

    def to_dict(self) -> dict:
        return {
            "color_scheme": self.color_scheme,
            "animation_speed": self.animation_speed,
            "opacity": self.opacity,
            "derived_value": self.derived_value,
            "trend": self.trend,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "VisualState":
        trend = d.get("trend", "neutral")
        if trend not in TRENDS:
            raise ValueError(f"unknown trend: {trend!r}")
        return cls(
            color_scheme=str(d["color_scheme"]),
            animation_speed=float(d.get("animation_speed", 1.0)),
            opacity=float(d.get("opacity", 1.0)),
            derived_value=float(d.get("derived_value", 0.0)),
            trend=trend,
        )


# ---- audit trail ----

@dataclass(frozen=True, slots=True)
class Transformation:
    timestamp: float
    asset_id: str
    trigger_rule_id: Optional[str]
    previous_state: Optional[VisualState]   # None on the very first state
    new_state: VisualState
    source_feed_value: FeedValue

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "asset_id": self.asset_id,
            "trigger_rule_id": self.trigger_rule_id,
            "previous_state": self.previous_state.to_dict() if self.previous_state else None,
            "new_state": self.new_state.to_dict(),
            "source_feed_value": self.source_feed_value.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Transformation":
        prev = d.get("previous_state")
        return cls(
            timestamp=float(d["timestamp"]),
            asset_id=str(d["asset_id"]),
            trigger_rule_id=d.get("trigger_rule_id"),
            previous_state=VisualState.from_dict(prev) if prev else None,
            new_state=VisualState.from_dict(d["new_state"]),
            source_feed_value=FeedValue.from_dict(d["source_feed_value"]),
        )


def is_finite_number(x: Any) -> bool:
    # bools are ints in Python; creator input "true" is never a number
    return isinstance(x, (int, float)) and not isinstance(x, bool) and math.isfinite(x)
