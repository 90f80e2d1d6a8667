import pytest

from liveart.utils.backoff import Backoff, OutageTracker, backoff_iter, jitter, next_backoff


def test_next_backoff_caps():
    assert next_backoff(1, 4) == 2
    assert next_backoff(2, 4) == 4
    assert next_backoff(4, 4) == 4


def test_backoff_iter_progression():
    it = backoff_iter(0.25, 2.0)
    vals = [next(it) for _ in range(5)]
    assert vals == [0.25, 0.5, 1.0, 2.0, 2.0]


def test_jitter_bounds():
    for _ in range(100):
        assert 0.8 <= jitter(1.0, ratio=0.2) <= 1.2


def test_stateful_backoff_grows_and_resets():
    b = Backoff(0.25, 1.0, ratio=0)
    assert [b.next_delay() for _ in range(4)] == [0.25, 0.5, 1.0, 1.0]
    assert b.attempts == 4
    b.reset()
    assert b.next_delay() == 0.25


def test_backoff_rejects_bad_bounds():
    with pytest.raises(ValueError):
        Backoff(0, 1)
    with pytest.raises(ValueError):
        Backoff(2, 1)


def test_outage_reported_once_after_window():
    now = [100.0]
    t = OutageTracker(30.0, clock=lambda: now[0])
    assert t.failed() is False          # outage starts
    now[0] = 120.0
    assert t.failed() is False
    now[0] = 131.0
    assert t.failed() is True
    now[0] = 200.0
    assert t.failed() is False          # already reported
    assert t.reported

    t.recovered()
    assert not t.reported and t.down_since is None
    assert t.failed() is False
    now[0] = 231.0
    assert t.failed() is True
