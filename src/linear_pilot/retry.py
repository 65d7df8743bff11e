"""Retry timing shared by the GitHub and Linear HTTP clients."""

import random

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def jittered_backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff with full jitter.

    Args:
        attempt: The retry attempt that just failed (0-indexed).
        base_delay: Delay before the first retry, before jitter.
        max_delay: Cap on the un-jittered delay.

    Returns:
        Seconds to sleep, uniformly drawn from ``[0, min(base * 2**attempt, max)]``.
    """
    return random.uniform(0, min(base_delay * (2 ** attempt), max_delay))
