from liveart.rules.rules import AssetDefinition, make_rule
from liveart.utils.types import FeedValue, VisualState

BASE = VisualState(color_scheme="blue", animation_speed=1.0, opacity=1.0)


def fv(value, observed_at=1_700_000_000.0, *, feed_id="ETH/USD", confidence=None):
    return FeedValue(feed_id=feed_id, value=float(value), observed_at=float(observed_at), confidence=confidence)


def rule(id, operator, threshold, prop="color_scheme", target="red", priority=0, field="price", is_active=True):
    return make_rule(id, field, operator, threshold, prop, target, priority, is_active)


def asset(id="orb", feed_id="ETH/USD", rules=(), base=BASE):
    return AssetDefinition(id=id, feed_id=feed_id, base_state=base, rules=tuple(rules))
