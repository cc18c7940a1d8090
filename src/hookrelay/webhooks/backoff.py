"""Retry backoff schedule.

The wait after failed attempt N (1-based) is ``base * 2**N``: 2, 4, 8, ...
units. There is no jitter and no cap, so total wall-clock time of a
sequence grows exponentially with the retry budget.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from hookrelay.models import utc_now


def backoff_seconds(attempt: int, base: float = 1.0) -> float:
    """Seconds to wait after the given failed attempt."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return base * (2**attempt)


def next_retry_at(attempt: int, base: float = 1.0, now: datetime | None = None) -> datetime:
    """When the attempt after ``attempt`` becomes due."""
    return (now or utc_now()) + timedelta(seconds=backoff_seconds(attempt, base))


def total_backoff_seconds(max_retries: int, base: float = 1.0) -> float:
    """Worst-case time spent waiting across a full sequence."""
    return sum(backoff_seconds(attempt, base) for attempt in range(1, max_retries + 1))


__all__ = ["backoff_seconds", "next_retry_at", "total_backoff_seconds"]
