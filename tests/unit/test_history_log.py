import pytest

from liveart.history.log import TransformationLog
from liveart.utils.types import Transformation
from tests.helpers.builders import BASE, fv


def _tr(ts, asset_id="orb"):
    return Transformation(
        timestamp=ts, asset_id=asset_id, trigger_rule_id=None,
        previous_state=None, new_state=BASE, source_feed_value=fv(ts, observed_at=ts),
    )


def test_history_is_most_recent_first_and_limited():
    log = TransformationLog(cap=10)
    for ts in (1.0, 2.0, 3.0):
        log.record(_tr(ts))
    assert [t.timestamp for t in log.history("orb")] == [3.0, 2.0, 1.0]
    assert [t.timestamp for t in log.history("orb", limit=2)] == [3.0, 2.0]
    assert log.history("orb", limit=0) == []
    assert log.last("orb").timestamp == 3.0


def test_fifo_eviction_at_cap():
    log = TransformationLog(cap=3)
    for ts in range(1, 6):
        log.record(_tr(float(ts)))
    assert log.count("orb") == 3
    assert [t.timestamp for t in log.history("orb")] == [5.0, 4.0, 3.0]


def test_timestamps_must_increase():
    log = TransformationLog()
    log.record(_tr(2.0))
    with pytest.raises(ValueError):
        log.record(_tr(2.0))
    with pytest.raises(ValueError):
        log.record(_tr(1.0))


def test_assets_are_independent_and_clearable():
    log = TransformationLog()
    log.record(_tr(5.0, "a"))
    log.record(_tr(1.0, "b"))
    assert log.count("a") == 1 and log.count("b") == 1
    log.clear("a")
    assert log.history("a") == [] and log.last("a") is None
    assert log.count("b") == 1
    assert log.history("unknown") == []
