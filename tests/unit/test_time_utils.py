from liveart.utils.time import TIMESTAMP_EPSILON, normalize_epoch_s, strictly_after


def test_normalize_epoch_units():
    assert normalize_epoch_s(1_700_000_000) == 1_700_000_000
    assert normalize_epoch_s(1_700_000_000_000) == 1_700_000_000
    assert normalize_epoch_s(1_700_000_000_000_000) == 1_700_000_000
    assert normalize_epoch_s(1_700_000_000_000_000_000) == 1_700_000_000


def test_strictly_after():
    assert strictly_after(None, 5.0) == 5.0
    assert strictly_after(4.0, 5.0) == 5.0
    assert strictly_after(5.0, 5.0) == 5.0 + TIMESTAMP_EPSILON
    assert strictly_after(6.0, 5.0) > 6.0
