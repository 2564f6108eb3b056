"""Exponential backoff for the fetch-stage retry loop.

Kept free of any timer so delays can be asserted directly.
"""

import random
from typing import Callable

BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 30.0
JITTER_RATIO = 0.1


def retry_delay(attempt: int, jitter: Callable[[], float] = random.random) -> float:
    """Delay before the retry that follows a failed attempt.

    ``min(1s * 2^(attempt-1), 30s)`` plus up to 10% random jitter on top.

    :param attempt: 1-based number of the attempt that just failed.
    :param jitter: Source of uniform values in [0, 1).
    :returns: Delay in seconds.

    .. code-block:: python

        >>> retry_delay(1, jitter=lambda: 0.0)
        1.0
        >>> retry_delay(3, jitter=lambda: 0.0)
        4.0
        >>> retry_delay(10, jitter=lambda: 0.0)
        30.0
    """
    if attempt < 1:
        raise ValueError("attempt must be at least 1")
    delay = min(BASE_DELAY_SECONDS * (2 ** (attempt - 1)), MAX_DELAY_SECONDS)
    return delay + jitter() * JITTER_RATIO * delay
