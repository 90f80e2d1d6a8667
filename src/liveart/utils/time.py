from __future__ import annotations

import time

# smallest step used to keep per-asset timestamps strictly increasing
TIMESTAMP_EPSILON = 1e-6


def utc_now_s() -> float:
    """Unix epoch seconds (float)."""
    return time.time()


def normalize_epoch_s(ts: float | int) -> float:
    """
    Best-effort epoch normalization: ns / us / ms inputs are scaled to seconds.
    """
    ts = float(ts)
    if ts > 1e17:    # ns
        return ts / 1e9
    if ts > 1e14:    # us
        return ts / 1e6
    if ts > 1e11:    # ms
        return ts / 1e3
    return ts


def strictly_after(prev: float | None, now: float) -> float:
    """`now`, nudged forward if needed so it is strictly greater than `prev`."""
    if prev is None or now > prev:
        return now
    return prev + TIMESTAMP_EPSILON

