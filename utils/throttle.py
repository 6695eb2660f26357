"""Pacing between requests to the same site."""

from __future__ import annotations

import random
import time
from typing import Callable, Tuple


def polite_sleep(delay_range: Tuple[float, float], sleep: Callable[[float], None] = time.sleep) -> float:
    """Sleep for a random interval within ``delay_range``.

    Parameters
    ----------
    delay_range:
        ``(min_seconds, max_seconds)``, in either order. ``(0, 0)`` disables
        the pause.

    Returns
    -------
    float
        The number of seconds slept.
    """
    low, high = sorted(delay_range)
    if high <= 0:
        return 0.0
    delay = random.uniform(max(low, 0.0), high)
    sleep(delay)
    return delay


def retry_delay(attempt: int, base: float) -> float:
    """Linear backoff after the ``attempt``-th failed try."""
    return base * max(attempt, 1)
