from dataclasses import replace

from liveart.formatting import format_transformation_pretty
from liveart.utils.types import Transformation
from tests.helpers.builders import BASE, fv


def test_format_transformation_pretty():
    prev = replace(BASE, derived_value=2999.0)
    new = replace(BASE, color_scheme="red", derived_value=3050.0, trend="bullish")
    tr = Transformation(
        timestamp=0.0, asset_id="orb", trigger_rule_id="hot",
        previous_state=prev, new_state=new,
        source_feed_value=fv(3050.0, observed_at=0.0, confidence=1.5),
    )
    s = format_transformation_pretty(tr, "UTC")
    assert s.startswith("[orb] 00:00:00 UTC ↑ ETH/USD=3050.00 ±1.50")
    assert "rule=hot" in s
    assert s.endswith("blue x1.00 a=1.00 → red x1.00 a=1.00")


def test_format_first_transition():
    tr = Transformation(0.0, "orb", None, None, BASE, fv(10.0, observed_at=0.0))
    s = format_transformation_pretty(tr)
    assert "rule=base" in s and "(uninitialized) →" in s
    assert "±" not in s
