# livedetect/utils/stats.py
import math
import time
from typing import Sequence

def now_ms() -> float:
    """Wall-clock time in epoch milliseconds, the unit every timestamp on the wire uses."""
    return time.time() * 1000.0

def percentile(sorted_values: Sequence[float], p: float) -> float:
    """
    Nearest-rank percentile over an already sorted sequence.
    Index is round-half-up of p * (n - 1), clamped to the valid range; empty input gives 0.
    """
    n = len(sorted_values)
    if n == 0:
        return 0
    idx = int(math.floor(p * (n - 1) + 0.5))
    idx = min(n - 1, max(0, idx))
    return sorted_values[idx]

def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
